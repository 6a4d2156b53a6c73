"""
Shared fixtures: the real Orgboard app on a temp SQLite database, reached
through an in-process ASGI transport.
"""

import os
import tempfile

os.environ.setdefault("ORGBOARD_STORAGE_DIR", tempfile.mkdtemp(prefix="orgboard-storage-"))
os.environ.setdefault("ORGBOARD_LOG_FORMAT", "text")

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.database import get_session
from app.core.storage import LocalObjectStore, get_object_store
from app.main import app as server_app

from orgboard_client.api import OrgboardApi

BASE_URL = "http://orgboard.test"


@pytest.fixture
async def server(tmp_path):
    """Wire the app to a fresh database; yields the ASGI transport."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'server.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _session_override():
        async with factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    store = LocalObjectStore(tmp_path / "storage", f"{BASE_URL}/storage")
    server_app.dependency_overrides[get_session] = _session_override
    server_app.dependency_overrides[get_object_store] = lambda: store
    with patch("app.core.auth.is_jwt_revoked", AsyncMock(return_value=False)):
        yield httpx.ASGITransport(app=server_app)
    server_app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def make_api(server):
    """Factory for API clients, each with its own httpx client (one per user)."""
    opened: list[httpx.AsyncClient] = []

    def _make() -> OrgboardApi:
        http = httpx.AsyncClient(transport=server, base_url=BASE_URL)
        opened.append(http)
        return OrgboardApi(BASE_URL, client=http)

    yield _make
    for http in opened:
        await http.aclose()


@pytest.fixture
async def signed_in(make_api):
    """Factory: register a fresh user and return their API client."""
    counter = 0

    async def _signed_in(full_name: str = "User") -> OrgboardApi:
        nonlocal counter
        counter += 1
        api = make_api()
        await api.register(f"user{counter}@example.com", "correct-horse", full_name)
        return api

    return _signed_in
