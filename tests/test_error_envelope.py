"""Tests for the error envelope format and exception handlers.

Error responses share one shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<human_readable>", "details": ...},
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from talenthub.api.error_handling import (
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from talenthub.api.schemas import Envelope, ErrorBody
from talenthub.service.errors import (
    AuthenticationError,
    NotFoundError,
    ServiceError,
)
from talenthub.storage.errors import ConstraintViolation


class TestErrorBody:
    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Invalid credentials")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_with_details_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_unknown_code_rejected(self):
        """Only the stable codes are accepted."""
        with pytest.raises(ValidationError):
            ErrorBody(code="rate_limited", message="Too many requests")

    def test_error_body_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")


class TestEnvelope:
    def test_envelope_request_id_auto_generated(self):
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36

    def test_envelope_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="success")

    def test_envelope_error_serialization(self):
        envelope = Envelope(
            status="error",
            error=ErrorBody(code="conflict", message="Email already registered", details={"field": "email"}),
            request_id="test-req-123",
        )
        dumped = envelope.model_dump()
        assert dumped["error"]["details"] == {"field": "email"}
        assert dumped["request_id"] == "test-req-123"
        assert dumped["data"] is None


class TestErrorCodeMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (404, "not_found"),
            (405, "validation_error"),
            (422, "validation_error"),
            (500, "server_error"),
            (503, "server_error"),
        ],
    )
    def test_status_maps_to_stable_code(self, status, code):
        assert _error_code_for_status(status) == code

    def test_error_response_with_details(self):
        response = _error_response(400, "Validation failed", details={"field": "email"})
        data = json.loads(response.body.decode())
        assert response.status_code == 400
        assert data["status"] == "error"
        assert data["error"] == {
            "code": "validation_error",
            "message": "Validation failed",
            "details": {"field": "email"},
        }
        assert data["request_id"]


class Payload(BaseModel):
    email: str


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/service/{kind}")
    async def raise_service(kind: str):
        errors = {
            "auth": AuthenticationError("Invalid or expired token"),
            "missing": NotFoundError("User not found"),
            "conflict": ServiceError(
                "Email already registered", error_code="conflict", detail={"field": "email"}
            ),
            "custom": ServiceError("teapot", status_code=400),
        }
        raise errors[kind]

    @app.get("/constraint")
    async def raise_constraint():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database exploded")

    @app.post("/validate")
    async def validate(body: Payload):
        return {"ok": True}

    return TestClient(app, raise_server_exceptions=False)


class TestExceptionHandlers:
    @pytest.mark.parametrize(
        "kind,status,code",
        [
            ("auth", 401, "unauthorized"),
            ("missing", 404, "not_found"),
            ("conflict", 400, "conflict"),
            ("custom", 400, "validation_error"),
        ],
    )
    def test_service_errors(self, client, kind, status, code):
        response = client.get(f"/service/{kind}")
        assert response.status_code == status
        assert response.json()["error"]["code"] == code

    def test_constraint_violation_is_conflict(self, client):
        response = client.get("/constraint")
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "conflict"
        assert error["details"] == {"field": "email"}

    def test_request_validation_names_field(self, client):
        response = client.post("/validate", json={})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"][0]["field"] == "email"

    def test_uncaught_exception_hides_internals(self, client):
        response = client.get("/boom")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "server_error"
        assert error["message"] == "Operation failed"
        assert "exploded" not in response.text
