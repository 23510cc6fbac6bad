"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from congregate.app.audit.notary import ActivityNotary
from congregate.app.audit.sinks import InMemoryActivitySink
from congregate.app.db.context import AccessContext, Role
from congregate.app.db.models import AttendanceWindow, Base, Group, Member
from congregate.app.db.unit_of_work import ContextScopedUnitOfWork, UnitOfWork
from congregate.app.services.attendance_recorder import AttendanceRecorder
from congregate.app.services.attendance_windows import AttendanceWindowManager
from congregate.app.services.distribution import DistributionAllocationEngine
from congregate.app.utils.clock import FixedClock

# A Sunday, mid-morning
NOW = datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)

WindowFactory = Callable[..., Awaitable[uuid.UUID]]


@dataclass
class Seed:
    """Groups and members created for a test."""

    group_a: uuid.UUID
    group_b: uuid.UUID
    members_a: list[uuid.UUID]
    members_b: list[uuid.UUID]


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite file database with the schema created.

    A file (not :memory:) is used because NullPool hands every unit of work
    a fresh connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'congregate.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def uow(engine: AsyncEngine) -> ContextScopedUnitOfWork:
    return ContextScopedUnitOfWork(engine)


@pytest.fixture
def sink() -> InMemoryActivitySink:
    return InMemoryActivitySink()


@pytest.fixture
def notary(sink: InMemoryActivitySink, clock: FixedClock) -> ActivityNotary:
    """Notary without a worker; tests call flush() to deliver."""
    return ActivityNotary(sink=sink, clock=clock)


@pytest.fixture
def windows(
    uow: ContextScopedUnitOfWork, notary: ActivityNotary, clock: FixedClock
) -> AttendanceWindowManager:
    return AttendanceWindowManager(uow, notary, clock)


@pytest.fixture
def recorder(
    uow: ContextScopedUnitOfWork, notary: ActivityNotary, clock: FixedClock
) -> AttendanceRecorder:
    return AttendanceRecorder(uow, notary, clock)


@pytest.fixture
def distribution(
    uow: ContextScopedUnitOfWork, notary: ActivityNotary, clock: FixedClock
) -> DistributionAllocationEngine:
    return DistributionAllocationEngine(uow, notary, clock)


@pytest.fixture
def admin() -> AccessContext:
    return AccessContext(actor_id=uuid.uuid4(), role=Role.admin)


@pytest.fixture
def distributor() -> AccessContext:
    return AccessContext(actor_id=uuid.uuid4(), role=Role.distribution)


@pytest.fixture
def leader_a(seed: Seed) -> AccessContext:
    """Platoon leader scoped to group A only."""
    return AccessContext(
        actor_id=uuid.uuid4(), role=Role.platoon_leader, scope_ids=frozenset({seed.group_a})
    )


@pytest_asyncio.fixture
async def seed(uow: ContextScopedUnitOfWork, admin: AccessContext) -> Seed:
    """Two groups: A with three members, B with one."""

    async def op(tx: UnitOfWork) -> Seed:
        group_a = Group(name="Alpha", kind="adult", created_at=NOW)
        group_b = Group(name="Bravo", kind="youth", created_at=NOW)
        tx.session.add_all([group_a, group_b])
        await tx.session.flush()

        members_a = [
            Member(first_name=first, last_name=last, current_group_id=group_a.id, created_at=NOW)
            for first, last in [("Ada", "Adams"), ("Ben", "Brown"), ("Cal", "Clark")]
        ]
        members_b = [
            Member(first_name="Dee", last_name="Davis", current_group_id=group_b.id, created_at=NOW)
        ]
        tx.session.add_all(members_a + members_b)
        await tx.session.flush()

        return Seed(
            group_a=group_a.id,
            group_b=group_b.id,
            members_a=[m.id for m in members_a],
            members_b=[m.id for m in members_b],
        )

    return await uow.run(admin, op)


async def insert_window(
    uow: ContextScopedUnitOfWork,
    admin: AccessContext,
    opens_at: datetime,
    closes_at: datetime,
    cycle_date: date | None = None,
    created_at: datetime = NOW,
) -> uuid.UUID:
    """Insert a window row directly, bypassing range validation."""

    async def op(tx: UnitOfWork) -> uuid.UUID:
        window = AttendanceWindow(
            cycle_date=cycle_date or opens_at.date(),
            opens_at=opens_at,
            closes_at=closes_at,
            created_by=admin.actor_id,
            created_at=created_at,
        )
        tx.session.add(window)
        await tx.session.flush()
        return window.id

    return await uow.run(admin, op)


@pytest.fixture
def make_window(uow: ContextScopedUnitOfWork, admin: AccessContext) -> WindowFactory:
    """Insert window rows directly, bypassing range validation."""

    async def make(
        opens_at: datetime,
        closes_at: datetime,
        cycle_date: date | None = None,
        created_at: datetime = NOW,
    ) -> uuid.UUID:
        return await insert_window(uow, admin, opens_at, closes_at, cycle_date, created_at)

    return make


@pytest_asyncio.fixture
async def open_window(uow: ContextScopedUnitOfWork, admin: AccessContext) -> uuid.UUID:
    """Window open from one hour before NOW to two hours after."""
    return await insert_window(
        uow,
        admin,
        NOW - timedelta(hours=1),
        NOW + timedelta(hours=2),
        cycle_date=date(2025, 6, 15),
    )


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
