import os

# Settings() runs at import time and DATABASE_URL has no default
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from analytics_engine.core.config import Settings
from analytics_engine.core.database import Base, build_session_factory
from analytics_engine.core.engine.blobs import LocalBlobStore
from analytics_engine.core.engine.routing import ResultRouter
from analytics_engine.core.engine.store import JobStore
from analytics_engine.core.services import build_services, get_services
from analytics_engine.main import create_app
from tests.helpers import RecordingNotifier

# Tests run against in-memory SQLite; one shared connection keeps the tables alive
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# Create tables in a fresh in-memory database for every test
@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def job_store(db_engine):
    return JobStore(build_session_factory(db_engine))


@pytest_asyncio.fixture(scope="function")
async def result_router(tmp_path):
    return ResultRouter(LocalBlobStore(tmp_path / "results"), row_threshold=5, byte_threshold=10_000)


@pytest_asyncio.fixture(scope="function")
async def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def test_settings(tmp_path):
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        RESULTS_DIR=str(tmp_path / "results"),
        WORKFLOW_DRIVER="inline",
        JOB_RETRY_BASE_DELAY=0,
        JOB_RETRY_MAX_DELAY=0,
        RUN_MIGRATIONS=False,
    )


@pytest_asyncio.fixture(scope="function")
async def services(test_settings, db_engine, notifier):
    built = build_services(test_settings, db_engine, notifier=notifier)
    yield built
    await built.aclose()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(test_settings, services):
    app = create_app(test_settings)
    app.dependency_overrides[get_services] = lambda: services

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
