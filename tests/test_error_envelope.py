"""Tests for the error envelope format and error handling.

Error responses follow the stable API envelope format:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<fixed message>",
        "details": null
    },
    "request_id": "<correlation id>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from inboxauth.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from inboxauth.api.schemas import Envelope, ErrorBody
from inboxauth.service.errors import (
    BadRequestError,
    NotFoundError,
    RequestFailedError,
    ServerError,
    UnauthorizedError,
)


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Unauthorized")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_missing_code_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(message="Error occurred")

    def test_error_body_rejects_unknown_code(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="no")

    def test_request_failed_is_a_valid_code(self):
        assert ErrorBody(code="request_failed", message="Request failed").code == "request_failed"


class TestEnvelope:
    """Tests for the Envelope model."""

    def test_envelope_ok_status(self):
        envelope = Envelope(status="ok", data={"session": "abc"})
        assert envelope.data == {"session": "abc"}
        assert envelope.error is None

    def test_envelope_request_id_auto_generated(self):
        assert len(Envelope(status="ok").request_id) == 36  # UUID format

    def test_envelope_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="success")


class TestErrorCodeMapping:
    """Tests for HTTP status to error code mapping."""

    @pytest.mark.parametrize(
        "status_code,code",
        [(400, "validation_error"), (401, "unauthorized"), (404, "not_found"), (500, "server_error")],
    )
    def test_known_statuses(self, status_code, code):
        assert _error_code_for_status(status_code) == code

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_codes_are_valid_error_body_codes(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="x")


class TestErrorResponseFactory:
    def test_error_response_basic(self):
        response = _error_response(401, "Unauthorized")
        data = json.loads(response.body.decode())
        assert response.status_code == 401
        assert data["status"] == "error"
        assert data["error"] == {"code": "unauthorized", "message": "Unauthorized", "details": None}
        assert "request_id" in data

    def test_error_response_custom_code(self):
        response = _error_response(400, "Request failed", code="request_failed")
        assert json.loads(response.body.decode())["error"]["code"] == "request_failed"


class TestServiceErrors:
    """Each error kind pins status, code and a fixed client message."""

    @pytest.mark.parametrize(
        "error_cls,status_code,code,message",
        [
            (BadRequestError, 400, "validation_error", "Bad request"),
            (RequestFailedError, 400, "request_failed", "Request failed"),
            (UnauthorizedError, 401, "unauthorized", "Unauthorized"),
            (NotFoundError, 404, "not_found", "Email not found"),
            (ServerError, 500, "server_error", "Internal Server Error"),
        ],
    )
    def test_error_kinds(self, error_cls, status_code, code, message):
        error = error_cls("internal detail")
        assert error.status_code == status_code
        assert error.error_code == code
        assert error.public_message == message
        assert error.message == "internal detail"

    def test_default_message_is_public_message(self):
        assert RequestFailedError().message == "Request failed"

    def test_status_fixed_by_error_kind(self):
        with pytest.raises(TypeError):
            RequestFailedError("x", status_code=500)


@pytest.fixture
def error_app():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/fails/{kind}")
    async def fails(kind: str):
        errors = {
            "request_failed": RequestFailedError("CodeMismatchException from platform"),
            "server": ServerError("AdminGetUser timed out after 10s"),
        }
        if kind in errors:
            raise errors[kind]
        raise RuntimeError("secret internal state")

    return app


class TestHandlers:
    def test_internal_detail_never_returned(self, error_app):
        response = TestClient(error_app).get("/fails/request_failed")
        assert response.status_code == 400
        assert "CodeMismatch" not in response.text
        assert response.json()["error"]["message"] == "Request failed"

    def test_server_error(self, error_app):
        response = TestClient(error_app).get("/fails/server")
        assert response.status_code == 500
        assert "timed out" not in response.text

    def test_uncaught_exception_is_generic_500(self, error_app):
        response = TestClient(error_app, raise_server_exceptions=False).get("/fails/other")
        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Internal Server Error"
        assert "secret" not in response.text

    def test_unknown_route_uses_envelope(self, error_app):
        response = TestClient(error_app).get("/missing")
        assert response.status_code == 404
        assert response.json()["status"] == "error"
