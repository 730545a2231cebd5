from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from regionaccess_api import models  # noqa: F401
from regionaccess_api.api.dependencies.grants import get_audit_emitter, get_clock, get_pair_locks
from regionaccess_api.app import create_app
from regionaccess_api.core.clock import ManualClock
from regionaccess_api.db.base import Base
from regionaccess_api.db.session import get_session
from regionaccess_api.observability.grants import get_grant_store
from regionaccess_api.observability.scheduler import get_scheduler_store
from regionaccess_api.services.access_grants import GrantAuditEvent, PairLockRegistry

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingAuditEmitter:
    """Audit sink that keeps every event in memory."""

    def __init__(self, *, fail: bool = False) -> None:
        self.events: list[GrantAuditEvent] = []
        self.fail = fail

    async def emit(self, event: GrantAuditEvent) -> None:
        if self.fail:
            raise RuntimeError("audit collector unavailable")
        self.events.append(event)

    def actions(self) -> list[str]:
        return [event.action.value for event in self.events]


@pytest.fixture(autouse=True)
def reset_observability():
    get_grant_store().reset()
    get_scheduler_store().reset()
    yield
    get_grant_store().reset()
    get_scheduler_store().reset()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=START)


@pytest.fixture
def audit() -> RecordingAuditEmitter:
    return RecordingAuditEmitter()


@pytest.fixture
def locks() -> PairLockRegistry:
    return PairLockRegistry()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory, clock, audit, locks):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_audit_emitter] = lambda: audit
    app.dependency_overrides[get_pair_locks] = lambda: locks

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
