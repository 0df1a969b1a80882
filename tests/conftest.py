"""Shared pytest fixtures for API, service and recorder tests.

Each test gets its own SQLite file database, a fakeredis resolution cache and
a fully initialized ``ServiceManager`` (scan recorder running).
"""

import uuid
from pathlib import Path
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from qrlinks.config import Settings
from qrlinks.dependencies import RequestContext, ServiceManager
from qrlinks.main import app

PUBLIC_BASE_URL = "http://qr.test"


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, uploads_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/qrlinks.db",
        REDIS_URL="redis://localhost:6379/15",
        PUBLIC_BASE_URL=PUBLIC_BASE_URL,
        UPLOADS_DIR=str(uploads_dir),
        LOGO_FETCH_REMOTE=False,
        SCAN_SHUTDOWN_FLUSH_SECONDS=2.0,
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture(scope="function")
async def services(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings, cache_client=fakeredis.FakeAsyncRedis(decode_responses=True))
    await manager.initialize()
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def db_session(services: ServiceManager) -> AsyncGenerator[AsyncSession, None]:
    async with services.session_factory() as session:
        yield session


@pytest.fixture
def context(db_session: AsyncSession, services: ServiceManager) -> RequestContext:
    return RequestContext(database=db_session, service_manager=services)


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture(scope="function")
async def client(services: ServiceManager, owner_id: uuid.UUID) -> AsyncGenerator[AsyncClient, None]:
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Owner-Id": str(owner_id)},
    ) as ac:
        yield ac

    app.state.services = None


@pytest_asyncio.fixture(scope="function")
async def anonymous_client(services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.services = None
