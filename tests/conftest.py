"""
Shared test fixtures and configuration for the TaskFlow test suite.
"""

# noqa: E402 (Standard for test configuration)
import os
import shutil
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import tests.test_env_setup as env_setup  # noqa: F401
from taskflow.core.config import settings
from taskflow.core.engine import WorkflowEngine, build_engine, get_engine, set_engine
from taskflow.core.lease import MemoryLeaseStore
from taskflow.main import app as fastapi_app
from tests.fakes import FakeClock, RecordingChannel
from tests.test_env_setup import TEST_DB_DIR, TEST_DB_PATH

# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
async def session_factory() -> AsyncGenerator[sessionmaker, None]:
    """Provide a fresh file-based SQLite database for each test."""
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)

    engine = create_async_engine(f"sqlite+aiosqlite:///{TEST_DB_PATH}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        try:
            os.remove(TEST_DB_PATH)
        except PermissionError:
            pass


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lease_store() -> MemoryLeaseStore:
    return MemoryLeaseStore()


@pytest.fixture
def push_channel() -> RecordingChannel:
    return RecordingChannel("push")


@pytest.fixture
def inapp_channel() -> RecordingChannel:
    return RecordingChannel("inapp")


@pytest.fixture
def engine(session_factory, clock, lease_store, push_channel, inapp_channel) -> WorkflowEngine:
    """Fully wired engine over the test database and fakes."""
    wf_engine = build_engine(
        settings,
        session_factory=session_factory,
        clock=clock,
        lease_store=lease_store,
        channels=[push_channel, inapp_channel],
    )
    set_engine(wf_engine)
    yield wf_engine
    set_engine(None)


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
async def api_client(engine: WorkflowEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test engine injected (no lifespan)."""
    fastapi_app.dependency_overrides[get_engine] = lambda: engine
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    fastapi_app.dependency_overrides.clear()


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def test_env():
    """Cleanup test directories after session."""
    yield
    if os.path.exists(TEST_DB_DIR):
        shutil.rmtree(TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def mock_background_services(mocker):
    """Prevent background services from starting during tests."""
    mocker.patch("taskflow.main.run_telegram_bot", return_value=None)
    mocker.patch("taskflow.core.scheduler.SchedulerService.start", return_value=None)
    mocker.patch("taskflow.core.scheduler.SchedulerService.stop", return_value=None)
