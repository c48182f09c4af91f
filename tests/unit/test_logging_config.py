"""Test request-id handling in the WSGI middleware."""
import structlog

from docsmile.logging_config import RequestIDMiddleware


def run(middleware, environ):
    sent = {}

    def start_response(status, headers, exc_info=None):
        sent["headers"] = dict(headers)

    middleware(environ, start_response)
    return sent["headers"]


def test_request_id_bound_for_log_lines():
    seen = {}

    def app(environ, start_response):
        seen.update(structlog.contextvars.get_contextvars())
        start_response("200 OK", [])
        return [b""]

    headers = run(RequestIDMiddleware(app), {"HTTP_X_REQUEST_ID": "req-abc123"})

    assert seen == {"request_id": "req-abc123"}
    assert headers["X-Request-ID"] == "req-abc123"
    structlog.contextvars.clear_contextvars()


def test_previous_request_context_is_cleared():
    structlog.contextvars.bind_contextvars(request_id="req-stale", user="admin")
    seen = {}

    def app(environ, start_response):
        seen.update(structlog.contextvars.get_contextvars())
        start_response("200 OK", [])
        return [b""]

    run(RequestIDMiddleware(app), {})

    assert "user" not in seen
    assert seen["request_id"].startswith("req-")
    assert seen["request_id"] != "req-stale"
    structlog.contextvars.clear_contextvars()
