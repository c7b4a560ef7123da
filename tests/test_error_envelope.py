"""Tests for the error envelope format and error handling.

Error responses share one shape:
{
    "status": "error",
    "message": "<human_readable>",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from sugarrush.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from sugarrush.api.schemas import Envelope, ErrorBody
from sugarrush.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    ServiceError,
)
from sugarrush.storage.errors import ConstraintViolation


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Authorization header missing.")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_with_details_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Validation failed",
            details=[{"loc": ["body", "phone_number"]}],
        )
        assert len(error.details) == 1

    def test_error_body_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")

    @pytest.mark.parametrize("code", ["token_blacklisted", "invalid_token", "forbidden"])
    def test_auth_codes_are_accepted(self, code):
        assert ErrorBody(code=code, message="x").code == code

    def test_unknown_code_is_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="x")


class TestEnvelope:
    def test_request_id_is_generated(self):
        envelope = Envelope(status="ok")
        assert envelope.request_id

    def test_status_must_be_ok_or_error(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status_code,expected",
        [(400, "validation_error"), (401, "unauthorized"), (403, "forbidden"),
         (404, "not_found"), (409, "conflict"), (422, "validation_error"), (500, "server_error")],
    )
    def test_known_statuses(self, status_code, expected):
        assert _STATUS_TO_CODE[status_code] == expected
        assert _error_code_for_status(status_code) == expected

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_error_response_body(self):
        response = _error_response(403, "Invalid token. Access denied.", code="invalid_token")
        body = json.loads(response.body)

        assert response.status_code == 403
        assert body["status"] == "error"
        assert body["message"] == "Invalid token. Access denied."
        assert body["error"] == {
            "code": "invalid_token",
            "message": "Invalid token. Access denied.",
            "details": None,
        }
        assert body["request_id"]


class TestServiceErrors:
    @pytest.mark.parametrize(
        "error_cls,status_code,code",
        [
            (BadRequestError, 400, "validation_error"),
            (AuthenticationError, 401, "unauthorized"),
            (ForbiddenError, 403, "forbidden"),
            (NotFoundError, 404, "not_found"),
            (ConflictError, 409, "conflict"),
            (ServerError, 500, "server_error"),
        ],
    )
    def test_defaults(self, error_cls, status_code, code):
        exc = error_cls("boom")
        assert isinstance(exc, ServiceError)
        assert exc.status_code == status_code
        assert exc.error_code == code
        assert exc.message == "boom"

    def test_error_code_override(self):
        exc = ForbiddenError("nope", error_code="token_blacklisted")
        assert exc.status_code == 403
        assert exc.error_code == "token_blacklisted"


@pytest.fixture
def failing_app(app):
    @app.get("/boom")
    async def boom():
        raise RuntimeError("database exploded")

    @app.get("/conflict")
    async def conflict():
        raise ConstraintViolation("email already exists", {"field": "email"})

    return app


class TestHandlers:
    def test_unhandled_exception_is_generic_500(self, failing_app):
        client = TestClient(failing_app, raise_server_exceptions=False)

        response = client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "error"
        assert body["message"] == "Internal server error"
        assert body["error"]["code"] == "server_error"
        assert "exploded" not in response.text

    def test_constraint_violation_is_409(self, failing_app):
        client = TestClient(failing_app)

        response = client.get("/conflict")

        assert response.status_code == 409
        assert response.json()["error"] == {
            "code": "conflict",
            "message": "email already exists",
            "details": {"field": "email"},
        }

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/no-such-route")

        assert response.status_code == 404
        assert response.json()["status"] == "error"
        assert response.json()["error"]["code"] == "not_found"

    def test_request_id_is_echoed(self, client):
        response = client.get("/users", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_request_id_generated_when_absent(self, client):
        response = client.get("/users")

        assert response.headers["X-Request-ID"]
        assert response.json()["request_id"] == response.headers["X-Request-ID"]
