"""Fixtures wiring the REST client to the mock API in-process."""
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

import mock_api
from docsmile.backends.live import LiveBackend
from docsmile.backends.static import StaticBackend
from docsmile.http_client import ApiClient, create_http_session
from docsmile.services import ClinicClient
from docsmile.session import ClinicSession

BASE_URL = "http://clinic.test/api"


class FlaskAdapter(BaseAdapter):
    """Transport adapter that hands requests to a Flask test client."""

    def __init__(self, app):
        super().__init__()
        self.client = app.test_client()

    def send(self, request, **kwargs):
        parts = urlsplit(request.url)
        headers = {k: v for k, v in request.headers.items() if k.lower() != "content-length"}
        result = self.client.open(
            parts.path,
            method=request.method,
            query_string=parts.query,
            headers=headers,
            data=request.body,
        )

        response = requests.Response()
        response.status_code = result.status_code
        response._content = result.get_data()
        response.headers = CaseInsensitiveDict(result.headers)
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


@pytest.fixture
def mock_backend(clock):
    """Fresh data behind the mock API for each test."""
    return mock_api.reset_backend(StaticBackend(clock=clock, tz="America/Lima"))


@pytest.fixture
def api(mock_backend):
    """Flask test client for direct endpoint checks."""
    return mock_api.app.test_client()


@pytest.fixture
def live_session():
    return ClinicSession()


@pytest.fixture
def live_backend(mock_backend, live_session):
    http = create_http_session(max_retries=0)
    http.mount("http://clinic.test", FlaskAdapter(mock_api.app))
    return LiveBackend(client=ApiClient(base_url=BASE_URL, auth=live_session, http=http))


@pytest.fixture
def live_clinic(live_backend, live_session, clock):
    """Client in live mode, signed in as the demo dentist."""
    clinic = ClinicClient(backend=live_backend, session=live_session, clock=clock, tz="America/Lima")
    clinic.auth.login("doctor", "doctor123")
    return clinic
