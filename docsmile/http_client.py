"""HTTP client for the clinic REST backend.

Purpose: One place for timeouts, auth headers, request ids and error mapping.

Pattern: requests.Session with connection pooling; tenacity retries wrap GET
only (idempotent loads). POST/PUT/PATCH/DELETE are sent exactly once: a failed
mutation is reported to the user, who re-submits.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from docsmile import config
from docsmile.errors import ApiError, AuthenticationError, NotFoundError
from docsmile.logging_config import REQUEST_ID_HEADER, generate_request_id, get_logger

logger = logging.getLogger(__name__)
log = get_logger(__name__)


def create_http_session(
    max_retries: Optional[int] = None,
    timeout: Optional[int] = None
) -> requests.Session:
    """
    Create HTTP session with connection pooling and default timeouts.

    Args:
        max_retries: Extra attempts for GET on connection errors/timeouts
                     (default: DOCSMILE_GET_RETRIES, 0 = single attempt)
        timeout: Request timeout in seconds (default: DOCSMILE_REQUEST_TIMEOUT)

    Returns:
        Configured requests.Session
    """
    if max_retries is None:
        max_retries = config.GET_RETRIES
    if timeout is None:
        timeout = config.REQUEST_TIMEOUT

    session = requests.Session()

    adapter = HTTPAdapter(
        max_retries=0,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    original_get = session.get

    @retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout
        )),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def get_with_retry(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        return original_get(*args, **kwargs)

    def with_timeout(method):
        def send_once(*args, **kwargs):
            kwargs.setdefault('timeout', timeout)
            return method(*args, **kwargs)
        return send_once

    session.get = get_with_retry
    session.post = with_timeout(session.post)
    session.put = with_timeout(session.put)
    session.patch = with_timeout(session.patch)
    session.delete = with_timeout(session.delete)

    return session


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return value.value
    return value


def build_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty filters ("", None, "all") and encode booleans/enums."""
    return {
        key: _query_value(value)
        for key, value in (params or {}).items()
        if value is not None and value != "" and value != "all"
    }


class ApiClient:
    """
    Thin REST client: envelope in, envelope out.

    Every call attaches ``Authorization: Bearer <token>`` when a session is
    active, plus a fresh ``X-Request-ID``. Non-2xx responses raise ApiError
    with the backend's message (or the per-operation default).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth=None,
        http: Optional[requests.Session] = None
    ):
        """
        Args:
            base_url: API root (default: DOCSMILE_API_BASE_URL)
            auth: ClinicSession providing auth headers (optional)
            http: Preconfigured session (default: create_http_session())
        """
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.auth = auth
        self.http = http or create_http_session()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            REQUEST_ID_HEADER: generate_request_id(),
        }
        if self.auth is not None:
            headers.update(self.auth.auth_headers())
        return headers

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        error_message: str = "Request failed"
    ) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON envelope.

        Raises:
            NotFoundError: 404
            AuthenticationError: 401
            ApiError: any other non-2xx, or the backend is unreachable
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self._headers()
        call_log = log.bind(
            method=method.upper(),
            path=path,
            request_id=headers[REQUEST_ID_HEADER]
        )

        send = getattr(self.http, method.lower(), None)
        if send is None:
            raise ValueError(f"Unsupported HTTP method: {method}")

        kwargs: Dict[str, Any] = {"headers": headers}
        query = build_params(params)
        if query:
            kwargs["params"] = query
        if json is not None:
            kwargs["json"] = json

        try:
            response = send(url, **kwargs)
        except requests.exceptions.RequestException as e:
            call_log.error("backend_unreachable", error=str(e))
            raise ApiError(f"{error_message}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            call_log.warning("unexpected_response_shape", type=type(data).__name__)
            data = {"data": data}

        if not response.ok:
            message = data.get("message") or data.get("error") or error_message
            call_log.warning(
                "backend_error",
                status=response.status_code,
                message=message
            )
            if response.status_code == 404:
                raise NotFoundError(message)
            if response.status_code == 401:
                raise AuthenticationError(message)
            raise ApiError(message, status_code=response.status_code)

        call_log.info("backend_call", status=response.status_code)
        return data

    def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> Dict[str, Any]:
        return self.request("POST", path, json=json if json is not None else {}, **kwargs)

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> Dict[str, Any]:
        return self.request("PUT", path, json=json if json is not None else {}, **kwargs)

    def patch(self, path: str, json: Optional[Any] = None, **kwargs) -> Dict[str, Any]:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("DELETE", path, **kwargs)
