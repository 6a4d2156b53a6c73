"""
Shared fixtures: a temp-file SQLite database per test and the app wired to it.
"""

import os
import tempfile

os.environ.setdefault("ORGBOARD_STORAGE_DIR", tempfile.mkdtemp(prefix="orgboard-storage-"))
os.environ.setdefault("ORGBOARD_LOG_FORMAT", "text")

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.auth import create_jwt
from app.core.database import get_session
from app.core.storage import LocalObjectStore, get_object_store
from app.main import app as fastapi_app
from app.models.profile import Profile


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "storage", "http://test/storage")


@pytest.fixture
def make_user(session_factory):
    """Insert a profile in its own committed transaction; returns its id."""

    async def _make(email: str | None = None, full_name: str | None = None) -> uuid.UUID:
        async with session_factory() as s:
            profile = Profile(
                email=email or f"{uuid.uuid4().hex[:10]}@example.com",
                full_name=full_name,
            )
            s.add(profile)
            await s.commit()
            return profile.id

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers carrying a freshly signed session JWT for a user id."""

    def _headers(user_id: uuid.UUID) -> dict:
        token, _jti = create_jwt(user_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def client(session_factory, store):
    async def _session_override():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = _session_override
    fastapi_app.dependency_overrides[get_object_store] = lambda: store
    with patch("app.core.auth.is_jwt_revoked", AsyncMock(return_value=False)):
        async with AsyncClient(
            transport=ASGITransport(app=fastapi_app), base_url="http://test"
        ) as ac:
            yield ac
    fastapi_app.dependency_overrides.clear()
