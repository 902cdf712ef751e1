# tests/conftest.py
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.clock import utcnow
from app.core.config import Settings
from app.database import create_engine, create_session_factory, init_db
from app.jobs.dispatcher import JobDispatcher
from app.realtime.events import RealtimeNotifier
from app.services.inventory import InventoryDeductionEngine, InventoryScanner
from app.services.notifications import MockNotificationService
from tests.helpers.fakes import FakeClock, RecordingPublisher
from tests.helpers.seed import Seeder


# ==========================
# Settings: one SQLite file per test
# ==========================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        env_mode="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'core.db'}",
        redis_url="redis://127.0.0.1:6399/0",
        report_directory=str(tmp_path / "reports"),
        queue_poll_interval_seconds=0.05,
        queue_lease_grace_seconds=5.0,
        inventory_backoff_seconds=0.01,
        scheduled_backoff_seconds=0.01,
        scheduled_timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def engine(settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings.database_url)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


# ==========================
# Collaborators
# ==========================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def notifier(publisher) -> RealtimeNotifier:
    return RealtimeNotifier(publisher)


@pytest.fixture
def notifications() -> MockNotificationService:
    return MockNotificationService(failure_rate=0, latency=(0, 0))


@pytest.fixture
def dispatcher(session_factory, settings, clock) -> JobDispatcher:
    """Dispatcher on the fake clock: time only moves when a test advances it."""
    return JobDispatcher(session_factory, settings, clock=clock)


@pytest.fixture
def live_dispatcher(session_factory, settings) -> JobDispatcher:
    """Dispatcher on wall-clock time, for tests that run worker pools."""
    return JobDispatcher(session_factory, settings, clock=utcnow)


@pytest.fixture
def scanner(session_factory, notifier, clock) -> InventoryScanner:
    return InventoryScanner(session_factory, notifier, expiry_threshold_days=7, clock=clock)


@pytest.fixture
def deduction(session_factory, notifier, scanner, clock) -> InventoryDeductionEngine:
    return InventoryDeductionEngine(session_factory, notifier, scanner, clock=clock)
