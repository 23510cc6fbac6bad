"""Integration tests for distribution batches and allocations."""

import logging
import uuid
from datetime import date, timedelta
from typing import Any

import pytest

from congregate.app.audit.notary import ActivityNotary
from congregate.app.audit.sinks import InMemoryActivitySink
from congregate.app.db.context import AccessContext
from congregate.app.errors import (
    AllocationNotFound,
    BatchNotFound,
    Forbidden,
    GroupNotFound,
    InvalidInput,
    WindowNotFound,
)
from congregate.app.models.common import AllocationType
from congregate.app.services.attendance_recorder import AttendanceRecorder
from congregate.app.services.distribution import DistributionAllocationEngine
from congregate.app.utils.clock import FixedClock


@pytest.mark.asyncio
async def test_over_allocation_reports_negative_remaining(
    distribution: DistributionAllocationEngine,
    open_window: uuid.UUID,
    distributor: AccessContext,
    seed: Any,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """100 food received, two allocations of 60: allocated 120, remaining -20."""
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)

    await distribution.allocate(batch.id, seed.group_a, 60, 10, "attendance_based", distributor)
    with caplog.at_level(logging.WARNING):
        result = await distribution.allocate(
            batch.id, seed.group_b, 60, 10, AllocationType.fixed, distributor
        )

    totals = result.overview.totals
    assert totals.food_allocated == 120
    assert totals.food_remaining == -20
    assert totals.water_allocated == 20
    assert totals.water_remaining == 30
    assert totals.over_allocated
    assert "over-allocated" in caplog.text

    overview = await distribution.overview(batch.id, distributor)
    assert overview.totals == totals
    assert [line.group_name for line in overview.allocations] == ["Alpha", "Bravo"]


@pytest.mark.asyncio
async def test_confirm_receipt_validation(
    distribution: DistributionAllocationEngine,
    open_window: uuid.UUID,
    distributor: AccessContext,
    leader_a: AccessContext,
) -> None:
    with pytest.raises(InvalidInput):
        await distribution.confirm_receipt(open_window, -1, 0, distributor)
    with pytest.raises(WindowNotFound):
        await distribution.confirm_receipt(uuid.uuid4(), 1, 1, distributor)
    with pytest.raises(Forbidden):
        await distribution.confirm_receipt(open_window, 1, 1, leader_a)


@pytest.mark.asyncio
async def test_allocate_validation(
    distribution: DistributionAllocationEngine,
    open_window: uuid.UUID,
    distributor: AccessContext,
    seed: Any,
) -> None:
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)

    with pytest.raises(InvalidInput):
        await distribution.allocate(batch.id, seed.group_a, -5, 0, "fixed", distributor)
    with pytest.raises(InvalidInput, match="Allocation type"):
        await distribution.allocate(batch.id, seed.group_a, 5, 0, "generous", distributor)
    with pytest.raises(BatchNotFound):
        await distribution.allocate(uuid.uuid4(), seed.group_a, 5, 0, "fixed", distributor)
    with pytest.raises(GroupNotFound):
        await distribution.allocate(batch.id, uuid.uuid4(), 5, 0, "fixed", distributor)

    overview = await distribution.overview(batch.id, distributor)
    assert overview.allocations == []
    assert overview.totals.food_remaining == 100


@pytest.mark.asyncio
async def test_overview_defaults_to_current_cycle_batch(
    distribution: DistributionAllocationEngine,
    clock: FixedClock,
    open_window: uuid.UUID,
    distributor: AccessContext,
) -> None:
    await distribution.confirm_receipt(open_window, 10, 10, distributor)
    clock.advance(minutes=1)
    latest = await distribution.confirm_receipt(open_window, 100, 50, distributor)

    current = await distribution.current_batch(distributor)
    overview = await distribution.overview(actor=distributor)

    assert current is not None
    assert current.id == latest.id
    assert overview.batch.id == latest.id
    assert overview.totals.food_received == 100


@pytest.mark.asyncio
async def test_overview_without_current_batch(
    distribution: DistributionAllocationEngine,
    make_window: Any,
    clock: FixedClock,
    distributor: AccessContext,
) -> None:
    """A batch from last week's cycle is not current."""
    now = clock.now()
    last_week = await make_window(
        now - timedelta(days=7), now - timedelta(days=7, hours=-2), cycle_date=date(2025, 6, 8)
    )
    await distribution.confirm_receipt(last_week, 10, 10, distributor)

    assert await distribution.current_batch(distributor) is None
    with pytest.raises(BatchNotFound):
        await distribution.overview(actor=distributor)


@pytest.mark.asyncio
async def test_update_allocation(
    distribution: DistributionAllocationEngine,
    notary: ActivityNotary,
    sink: InMemoryActivitySink,
    open_window: uuid.UUID,
    distributor: AccessContext,
    seed: Any,
) -> None:
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    result = await distribution.allocate(batch.id, seed.group_a, 60, 10, "fixed", distributor)

    updated = await distribution.update_allocation(
        result.allocation.id, distributor, food_amount=40, allocation_type="supplementary"
    )

    assert updated.food_allocated == 40
    assert updated.water_allocated == 10
    assert updated.allocation_type == AllocationType.supplementary

    overview = await distribution.overview(batch.id, distributor)
    assert overview.totals.food_remaining == 60

    with pytest.raises(AllocationNotFound):
        await distribution.update_allocation(uuid.uuid4(), distributor, food_amount=1)

    await notary.flush()
    assert sink.actions() == [
        "DISTRIBUTION_RECEIPT_CONFIRMED",
        "DISTRIBUTION_ALLOCATED",
        "DISTRIBUTION_ALLOCATION_UPDATED",
    ]


@pytest.mark.asyncio
async def test_list_allocations_scoped(
    distribution: DistributionAllocationEngine,
    open_window: uuid.UUID,
    distributor: AccessContext,
    leader_a: AccessContext,
    seed: Any,
) -> None:
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    await distribution.allocate(batch.id, seed.group_a, 30, 10, "fixed", distributor)
    await distribution.allocate(batch.id, seed.group_b, 20, 10, "fixed", distributor)

    assert len(await distribution.list_allocations(distributor, batch_id=batch.id)) == 2
    assert len(await distribution.list_allocations(distributor, group_id=seed.group_b)) == 1

    visible = await distribution.list_allocations(leader_a)
    assert [a.group_id for a in visible] == [seed.group_a]


@pytest.mark.asyncio
async def test_leader_overview_keeps_true_totals(
    distribution: DistributionAllocationEngine,
    open_window: uuid.UUID,
    distributor: AccessContext,
    leader_a: AccessContext,
    seed: Any,
) -> None:
    """Lines are scoped, but remaining balance covers every allocation."""
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    await distribution.allocate(batch.id, seed.group_a, 30, 10, "fixed", distributor)
    await distribution.allocate(batch.id, seed.group_b, 20, 10, "fixed", distributor)

    overview = await distribution.overview(batch.id, leader_a)

    assert [line.group_id for line in overview.allocations] == [seed.group_a]
    assert overview.totals.food_allocated == 50
    assert overview.totals.food_remaining == 50


@pytest.mark.asyncio
async def test_groups_with_attendance(
    distribution: DistributionAllocationEngine,
    recorder: AttendanceRecorder,
    open_window: uuid.UUID,
    admin: AccessContext,
    distributor: AccessContext,
    seed: Any,
) -> None:
    ada, ben, _ = seed.members_a
    await recorder.record_group_count(seed.group_a, open_window, 25, admin)
    await recorder.mark_member_attendance(ada, seed.group_a, open_window, "present", admin)
    await recorder.mark_member_attendance(ben, seed.group_a, open_window, "absent", admin)

    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    await distribution.allocate(batch.id, seed.group_a, 40, 20, "attendance_based", distributor)

    view = await distribution.groups_with_attendance(batch.id, distributor)

    assert view.cycle_date == date(2025, 6, 15)
    by_name = {g.name: g for g in view.groups}
    alpha, bravo = by_name["Alpha"], by_name["Bravo"]

    assert alpha.has_attendance and alpha.has_allocation
    assert alpha.member_count == 3
    assert alpha.attendance.group_count == 25
    assert (alpha.attendance.present, alpha.attendance.absent, alpha.attendance.unmarked) == (1, 1, 1)
    assert alpha.allocation is not None
    assert alpha.allocation.food_allocated == 40

    assert not bravo.has_attendance and not bravo.has_allocation
    assert bravo.attendance.unmarked == 1
    assert bravo.allocation is None

    summary = view.summary
    assert summary.total_groups == 2
    assert summary.groups_with_attendance == 1
    assert summary.groups_with_allocation == 1
    assert summary.total_attendance == 25
    assert summary.total_food_allocated == 40
    assert (summary.total_present, summary.total_absent, summary.total_unmarked) == (1, 1, 2)


@pytest.mark.asyncio
async def test_groups_with_attendance_missing_batch(
    distribution: DistributionAllocationEngine, distributor: AccessContext
) -> None:
    with pytest.raises(BatchNotFound):
        await distribution.groups_with_attendance(uuid.uuid4(), distributor)


@pytest.mark.asyncio
async def test_planning_totals_count_every_allocation(
    distribution: DistributionAllocationEngine,
    clock: FixedClock,
    open_window: uuid.UUID,
    distributor: AccessContext,
    seed: Any,
) -> None:
    """Two allocations to one group both count towards the summary."""
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    await distribution.allocate(batch.id, seed.group_a, 40, 5, "fixed", distributor)
    clock.advance(minutes=1)
    await distribution.allocate(batch.id, seed.group_a, 30, 5, "supplementary", distributor)

    view = await distribution.groups_with_attendance(batch.id, distributor)
    overview = await distribution.overview(batch.id, distributor)

    assert view.summary.total_food_allocated == overview.totals.food_allocated == 70
    assert view.summary.total_water_allocated == overview.totals.water_allocated == 10
    assert view.summary.groups_with_allocation == 1

    alpha = next(g for g in view.groups if g.group_id == seed.group_a)
    assert alpha.allocation is not None
    assert alpha.allocation.food_allocated == 30


@pytest.mark.asyncio
async def test_list_batches_newest_first(
    distribution: DistributionAllocationEngine,
    clock: FixedClock,
    make_window: Any,
    open_window: uuid.UUID,
    distributor: AccessContext,
    leader_a: AccessContext,
) -> None:
    now = clock.now()
    other_window = await make_window(
        now - timedelta(days=7), now - timedelta(days=7, hours=-2), cycle_date=date(2025, 6, 8)
    )
    older = await distribution.confirm_receipt(other_window, 10, 10, distributor)
    clock.advance(minutes=1)
    newer = await distribution.confirm_receipt(open_window, 100, 50, distributor)

    batches = await distribution.list_batches(distributor)
    assert [b.id for b in batches] == [newer.id, older.id]

    filtered = await distribution.list_batches(leader_a, window_id=other_window)
    assert [b.id for b in filtered] == [older.id]


@pytest.mark.asyncio
async def test_get_batch_with_window_and_allocations(
    distribution: DistributionAllocationEngine,
    clock: FixedClock,
    open_window: uuid.UUID,
    distributor: AccessContext,
    leader_a: AccessContext,
    seed: Any,
) -> None:
    batch = await distribution.confirm_receipt(open_window, 100, 50, distributor)
    first = await distribution.allocate(batch.id, seed.group_a, 30, 10, "fixed", distributor)
    clock.advance(minutes=1)
    await distribution.allocate(batch.id, seed.group_b, 20, 10, "fixed", distributor)

    detail = await distribution.get_batch(batch.id, distributor)

    assert detail.batch.id == batch.id
    assert detail.window.id == open_window
    assert detail.window.cycle_date == date(2025, 6, 15)
    assert [a.group_id for a in detail.allocations] == [seed.group_a, seed.group_b]

    scoped = await distribution.get_batch(batch.id, leader_a)
    assert [a.id for a in scoped.allocations] == [first.allocation.id]


@pytest.mark.asyncio
async def test_get_missing_batch(
    distribution: DistributionAllocationEngine, distributor: AccessContext
) -> None:
    with pytest.raises(BatchNotFound):
        await distribution.get_batch(uuid.uuid4(), distributor)
