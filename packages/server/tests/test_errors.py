"""Tests for the error taxonomy and its JSON envelope."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, ProgrammingError

from app.core.errors import (
    AlreadyMember,
    Conflict,
    InvitationNotFound,
    NotFound,
    PermissionDenied,
    SlugConflict,
    StorageUnavailable,
    UnknownError,
    classify_storage_error,
    register_exception_handlers,
)


class TestClassifyStorageError:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (IntegrityError("INSERT", {}, Exception("duplicate key")), Conflict),
            (OperationalError("SELECT", {}, Exception("could not connect")), StorageUnavailable),
            (InterfaceError("SELECT", {}, Exception("connection closed")), StorageUnavailable),
            (ProgrammingError("SELECT", {}, Exception("syntax error")), UnknownError),
        ],
    )
    def test_mapping(self, exc, expected):
        assert type(classify_storage_error(exc, action="test")) is expected


class TestHierarchy:
    def test_specific_kinds(self):
        assert issubclass(SlugConflict, Conflict)
        assert issubclass(AlreadyMember, Conflict)
        assert issubclass(InvitationNotFound, NotFound)

    def test_envelope(self):
        assert PermissionDenied("nope").to_dict() == {
            "error": {"code": "permission_denied", "message": "nope", "status": 403}
        }


class _Body(BaseModel):
    name: str


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict():
        raise SlugConflict()

    @app.post("/validate")
    async def validate(body: _Body):
        return body

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return app


class TestHandlers:
    def test_app_error(self):
        resp = TestClient(_app()).get("/conflict")
        assert resp.status_code == 409
        assert resp.json()["error"] == {
            "code": "conflict",
            "message": "An organization with this slug already exists",
            "status": 409,
        }

    def test_request_validation(self):
        resp = TestClient(_app()).post("/validate", json={})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_failed"
        assert error["message"].startswith("name:")

    def test_unknown_route(self):
        resp = TestClient(_app()).get("/missing")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_unhandled_exception_hides_details(self):
        resp = TestClient(_app(), raise_server_exceptions=False).get("/boom")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"]["code"] == "unknown"
        assert "secret" not in body["error"]["message"]
