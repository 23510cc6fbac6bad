"""Distribution batches and per-group allocations.

Remaining balance is derived at read time as received minus allocated and
is never stored. Allocations are not capped by the batch totals: a batch
may be over-allocated, which shows up as a negative remaining balance and
a warning, not as a rejected write.
"""

import logging
from collections import Counter
from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from congregate.app.audit.notary import ActivityNotary
from congregate.app.db.context import AccessContext
from congregate.app.db.models import (
    AttendanceWindow,
    DistributionBatch,
    Group,
    GroupAttendance,
    GroupDistribution,
    Member,
    MemberAttendance,
)
from congregate.app.db.policy import DISTRIBUTION_WRITE
from congregate.app.db.unit_of_work import ContextScopedUnitOfWork, UnitOfWork
from congregate.app.errors import AllocationNotFound, BatchNotFound, InvalidInput
from congregate.app.models.attendance import AttendanceWindowRecord
from congregate.app.models.common import AllocationType, AttendanceStatus
from congregate.app.models.distribution import (
    AllocationLine,
    AllocationPlanningSummary,
    AllocationResult,
    BatchDetail,
    BatchOverview,
    BatchTotals,
    DistributionBatchRecord,
    GroupAllocationInfo,
    GroupAttendanceSnapshot,
    GroupDistributionRecord,
    GroupsWithAttendance,
)
from congregate.app.services.attendance_recorder import load_group
from congregate.app.services.attendance_windows import load_window
from congregate.app.utils.clock import Clock, SystemClock, cycle_date_for
from congregate.app.utils.logging import StructuredOperationLogger
from congregate.app.utils.metrics import over_allocations_total

logger = logging.getLogger(__name__)
op_logger = StructuredOperationLogger(__name__)


def _require_non_negative(**amounts: int) -> None:
    for name, value in amounts.items():
        if value < 0:
            raise InvalidInput(f"{name} must be 0 or greater")


def _parse_allocation_type(value: AllocationType | str) -> AllocationType:
    try:
        return AllocationType(value)
    except ValueError as e:
        allowed = ", ".join(t.value for t in AllocationType)
        raise InvalidInput(f"Allocation type must be one of: {allowed}") from e


async def load_batch(tx: UnitOfWork, batch_id: UUID) -> DistributionBatch:
    """Load a batch inside the bound transaction.

    Raises:
        BatchNotFound: If no such batch exists
    """
    batch = await tx.session.get(DistributionBatch, batch_id)
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


class DistributionAllocationEngine:
    """Confirms receipts and allocates them to groups."""

    def __init__(
        self,
        uow: ContextScopedUnitOfWork,
        notary: ActivityNotary,
        clock: Clock | None = None,
    ) -> None:
        self._uow = uow
        self._notary = notary
        self._clock = clock or SystemClock()

    async def confirm_receipt(
        self,
        window_id: UUID,
        total_food: int,
        total_water: int,
        actor: AccessContext,
    ) -> DistributionBatchRecord:
        """Record the resources received for a window.

        Raises:
            InvalidInput: If a total is negative
            WindowNotFound: If the window is absent
            Forbidden: If the actor may not write distribution data
        """
        _require_non_negative(total_food=total_food, total_water=total_water)

        async def op(tx: UnitOfWork) -> DistributionBatchRecord:
            tx.require(DISTRIBUTION_WRITE)
            await load_window(tx, window_id)
            batch = DistributionBatch(
                window_id=window_id,
                total_food_received=total_food,
                total_water_received=total_water,
                confirmed_by=tx.actor_id,
                confirmed_at=self._clock.now(),
            )
            tx.session.add(batch)
            await tx.session.flush()
            return DistributionBatchRecord.model_validate(batch)

        record = await self._uow.run(actor, op)

        op_logger.log_operation(actor, "confirm_receipt", "success", batch_id=record.id)
        self._notary.log(
            "DISTRIBUTION_RECEIPT_CONFIRMED",
            "distribution_batch",
            record.id,
            {
                "window_id": str(window_id),
                "total_food_received": total_food,
                "total_water_received": total_water,
            },
            actor=actor,
        )
        return record

    async def allocate(
        self,
        batch_id: UUID,
        group_id: UUID,
        food_amount: int,
        water_amount: int,
        allocation_type: AllocationType | str,
        actor: AccessContext,
    ) -> AllocationResult:
        """Allocate part of a batch to a group.

        Cumulative allocations are not checked against the batch totals;
        the returned overview carries the true, possibly negative, remaining.

        Raises:
            InvalidInput: If an amount is negative or the type is unknown
            BatchNotFound: If the batch is absent
            GroupNotFound: If the group is absent
            Forbidden: If the actor may not write distribution data
        """
        _require_non_negative(food_amount=food_amount, water_amount=water_amount)
        parsed_type = _parse_allocation_type(allocation_type)

        async def op(tx: UnitOfWork) -> AllocationResult:
            tx.require(DISTRIBUTION_WRITE)
            batch = await load_batch(tx, batch_id)
            await load_group(tx, group_id)

            allocation = GroupDistribution(
                batch_id=batch_id,
                group_id=group_id,
                food_allocated=food_amount,
                water_allocated=water_amount,
                allocation_type=parsed_type.value,
                distributed_by=tx.actor_id,
                distributed_at=self._clock.now(),
            )
            tx.session.add(allocation)
            await tx.session.flush()

            return AllocationResult(
                allocation=GroupDistributionRecord.model_validate(allocation),
                overview=await self._build_overview(tx, batch),
            )

        result = await self._uow.run(actor, op)
        totals = result.overview.totals

        if totals.over_allocated:
            for resource, remaining in (
                ("food", totals.food_remaining),
                ("water", totals.water_remaining),
            ):
                if remaining < 0:
                    over_allocations_total.labels(resource=resource).inc()
            logger.warning(
                "Batch %s over-allocated",
                batch_id,
                extra={
                    "structured": {
                        "batch_id": str(batch_id),
                        "food_remaining": totals.food_remaining,
                        "water_remaining": totals.water_remaining,
                    }
                },
            )

        op_logger.log_operation(
            actor, "allocate", "success", batch_id=batch_id, group_id=group_id
        )
        self._notary.log(
            "DISTRIBUTION_ALLOCATED",
            "group_distribution",
            result.allocation.id,
            {
                "batch_id": str(batch_id),
                "group_id": str(group_id),
                "food_allocated": food_amount,
                "water_allocated": water_amount,
                "allocation_type": parsed_type.value,
            },
            actor=actor,
        )
        return result

    async def update_allocation(
        self,
        allocation_id: UUID,
        actor: AccessContext,
        *,
        food_amount: int | None = None,
        water_amount: int | None = None,
        allocation_type: AllocationType | str | None = None,
    ) -> GroupDistributionRecord:
        """Change the amounts or type of an existing allocation.

        Raises:
            InvalidInput: If an amount is negative or the type is unknown
            AllocationNotFound: If the allocation is absent
            Forbidden: If the actor may not write distribution data
        """
        if food_amount is not None:
            _require_non_negative(food_amount=food_amount)
        if water_amount is not None:
            _require_non_negative(water_amount=water_amount)
        parsed_type = (
            _parse_allocation_type(allocation_type) if allocation_type is not None else None
        )

        async def op(tx: UnitOfWork) -> GroupDistributionRecord:
            tx.require(DISTRIBUTION_WRITE)
            allocation = await tx.session.get(GroupDistribution, allocation_id)
            if allocation is None:
                raise AllocationNotFound(allocation_id)

            if food_amount is not None:
                allocation.food_allocated = food_amount
            if water_amount is not None:
                allocation.water_allocated = water_amount
            if parsed_type is not None:
                allocation.allocation_type = parsed_type.value

            await tx.session.flush()
            return GroupDistributionRecord.model_validate(allocation)

        record = await self._uow.run(actor, op)

        op_logger.log_operation(actor, "update_allocation", "success", allocation_id=allocation_id)
        self._notary.log(
            "DISTRIBUTION_ALLOCATION_UPDATED",
            "group_distribution",
            allocation_id,
            {
                "food_allocated": record.food_allocated,
                "water_allocated": record.water_allocated,
                "allocation_type": record.allocation_type.value,
            },
            actor=actor,
        )
        return record

    async def current_batch(
        self, actor: AccessContext | None = None
    ) -> DistributionBatchRecord | None:
        """Latest batch confirmed for this week's cycle, if any."""
        cycle_date = cycle_date_for(self._clock.now().date())

        async def op(tx: UnitOfWork) -> DistributionBatchRecord | None:
            batch = await self._current_batch(tx, cycle_date)
            return DistributionBatchRecord.model_validate(batch) if batch else None

        return await self._uow.run(actor, op)

    async def list_batches(
        self, actor: AccessContext | None = None, *, window_id: UUID | None = None
    ) -> list[DistributionBatchRecord]:
        """Confirmed batches, newest confirmation first."""

        async def op(tx: UnitOfWork) -> list[DistributionBatchRecord]:
            stmt = select(DistributionBatch).order_by(DistributionBatch.confirmed_at.desc())
            if window_id is not None:
                stmt = stmt.where(DistributionBatch.window_id == window_id)

            rows = (await tx.session.execute(stmt)).scalars().all()
            return [DistributionBatchRecord.model_validate(row) for row in rows]

        return await self._uow.run(actor, op)

    async def get_batch(
        self, batch_id: UUID, actor: AccessContext | None = None
    ) -> BatchDetail:
        """One batch with its window and the allocations the actor may see.

        Raises:
            BatchNotFound: If the batch is absent
        """

        async def op(tx: UnitOfWork) -> BatchDetail:
            batch = await load_batch(tx, batch_id)
            window = await load_window(tx, batch.window_id)

            stmt = (
                select(GroupDistribution)
                .where(GroupDistribution.batch_id == batch.id)
                .order_by(GroupDistribution.distributed_at)
            )
            rows = (await tx.session.execute(tx.scoped(stmt, GroupDistribution))).scalars().all()

            return BatchDetail(
                batch=DistributionBatchRecord.model_validate(batch),
                window=AttendanceWindowRecord.model_validate(window),
                allocations=[GroupDistributionRecord.model_validate(row) for row in rows],
            )

        return await self._uow.run(actor, op)

    async def overview(
        self, batch_id: UUID | None = None, actor: AccessContext | None = None
    ) -> BatchOverview:
        """Totals, allocated and remaining per resource for a batch.

        Without ``batch_id`` the current cycle's latest batch is used.

        Raises:
            BatchNotFound: If the batch is absent or there is no current batch
        """
        cycle_date = cycle_date_for(self._clock.now().date())

        async def op(tx: UnitOfWork) -> BatchOverview:
            if batch_id is not None:
                batch = await load_batch(tx, batch_id)
            else:
                current = await self._current_batch(tx, cycle_date)
                if current is None:
                    raise BatchNotFound()
                batch = current
            return await self._build_overview(tx, batch)

        return await self._uow.run(actor, op)

    async def list_allocations(
        self,
        actor: AccessContext | None = None,
        *,
        batch_id: UUID | None = None,
        group_id: UUID | None = None,
    ) -> list[GroupDistributionRecord]:
        """Allocations visible to the actor, newest first."""

        async def op(tx: UnitOfWork) -> list[GroupDistributionRecord]:
            stmt = select(GroupDistribution).order_by(GroupDistribution.distributed_at.desc())
            if batch_id is not None:
                stmt = stmt.where(GroupDistribution.batch_id == batch_id)
            if group_id is not None:
                stmt = stmt.where(GroupDistribution.group_id == group_id)

            rows = (await tx.session.execute(tx.scoped(stmt, GroupDistribution))).scalars().all()
            return [GroupDistributionRecord.model_validate(row) for row in rows]

        return await self._uow.run(actor, op)

    async def groups_with_attendance(
        self, batch_id: UUID, actor: AccessContext | None = None
    ) -> GroupsWithAttendance:
        """Every group with its attendance for the batch's window and its allocation.

        Read-only aggregation used to size allocations.

        Raises:
            BatchNotFound: If the batch is absent
        """

        async def op(tx: UnitOfWork) -> GroupsWithAttendance:
            batch = await load_batch(tx, batch_id)
            window = await load_window(tx, batch.window_id)

            groups_stmt = select(Group).order_by(Group.kind, Group.name)
            groups = (await tx.session.execute(tx.scoped(groups_stmt, Group))).scalars().all()

            counts_stmt = select(GroupAttendance).where(GroupAttendance.window_id == window.id)
            counts = {
                row.group_id: row
                for row in (
                    await tx.session.execute(tx.scoped(counts_stmt, GroupAttendance))
                ).scalars()
            }

            members_stmt = (
                select(Member.current_group_id, func.count())
                .where(Member.current_group_id.is_not(None))
                .group_by(Member.current_group_id)
            )
            member_counts = {
                group_id: count
                for group_id, count in await tx.session.execute(tx.scoped(members_stmt, Member))
            }

            marks_stmt = select(MemberAttendance.group_id, MemberAttendance.status).where(
                MemberAttendance.window_id == window.id
            )
            mark_rows = await tx.session.execute(tx.scoped(marks_stmt, MemberAttendance))
            marks = Counter((group_id, status) for group_id, status in mark_rows)

            allocations_stmt = (
                select(GroupDistribution)
                .where(GroupDistribution.batch_id == batch.id)
                .order_by(GroupDistribution.distributed_at)
            )
            allocations: dict[UUID, GroupDistribution] = {}
            for row in (
                await tx.session.execute(tx.scoped(allocations_stmt, GroupDistribution))
            ).scalars():
                # Latest allocation per group wins
                allocations[row.group_id] = row
            food_allocated, water_allocated = await self._allocated_totals(tx, batch.id)

            infos: list[GroupAllocationInfo] = []
            for group in groups:
                taken = counts.get(group.id)
                allocation = allocations.get(group.id)
                total_members = member_counts.get(group.id, 0)
                present = marks[(group.id, AttendanceStatus.present.value)]
                absent = marks[(group.id, AttendanceStatus.absent.value)]
                marked = present + absent

                infos.append(
                    GroupAllocationInfo(
                        group_id=group.id,
                        name=group.name,
                        kind=group.kind,
                        member_count=total_members,
                        attendance=GroupAttendanceSnapshot(
                            group_count=taken.count if taken else 0,
                            present=present,
                            absent=absent,
                            unmarked=max(total_members - marked, 0),
                            marked=marked,
                            total_members=total_members,
                            has_taken=taken is not None,
                            taken_at=taken.taken_at if taken else None,
                            taken_by=taken.taken_by if taken else None,
                        ),
                        allocation=(
                            GroupDistributionRecord.model_validate(allocation)
                            if allocation
                            else None
                        ),
                        has_attendance=taken is not None,
                        has_allocation=allocation is not None,
                    )
                )

            summary = AllocationPlanningSummary(
                total_groups=len(infos),
                groups_with_attendance=sum(1 for i in infos if i.has_attendance),
                groups_with_allocation=sum(1 for i in infos if i.has_allocation),
                total_attendance=sum(row.count for row in counts.values()),
                total_food_allocated=food_allocated,
                total_water_allocated=water_allocated,
                total_present=sum(i.attendance.present for i in infos),
                total_absent=sum(i.attendance.absent for i in infos),
                total_unmarked=sum(i.attendance.unmarked for i in infos),
            )

            return GroupsWithAttendance(
                batch=DistributionBatchRecord.model_validate(batch),
                cycle_date=window.cycle_date,
                groups=infos,
                summary=summary,
            )

        return await self._uow.run(actor, op)

    async def _current_batch(self, tx: UnitOfWork, cycle_date: date) -> DistributionBatch | None:
        result = await tx.session.execute(
            select(DistributionBatch)
            .join(AttendanceWindow, AttendanceWindow.id == DistributionBatch.window_id)
            .where(AttendanceWindow.cycle_date == cycle_date)
            .order_by(DistributionBatch.confirmed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _allocated_totals(self, tx: UnitOfWork, batch_id: UUID) -> tuple[int, int]:
        # Ledger sums cover every allocation of the batch, not only the visible ones
        sums = await tx.session.execute(
            select(
                func.coalesce(func.sum(GroupDistribution.food_allocated), 0),
                func.coalesce(func.sum(GroupDistribution.water_allocated), 0),
            ).where(GroupDistribution.batch_id == batch_id)
        )
        food, water = sums.one()
        return int(food), int(water)

    async def _build_overview(self, tx: UnitOfWork, batch: DistributionBatch) -> BatchOverview:
        food_allocated, water_allocated = await self._allocated_totals(tx, batch.id)

        lines_stmt = (
            select(GroupDistribution, Group.name)
            .join(Group, Group.id == GroupDistribution.group_id)
            .where(GroupDistribution.batch_id == batch.id)
            .order_by(GroupDistribution.distributed_at, Group.name)
        )
        lines = [
            AllocationLine(
                allocation_id=allocation.id,
                group_id=allocation.group_id,
                group_name=name,
                food_allocated=allocation.food_allocated,
                water_allocated=allocation.water_allocated,
                allocation_type=allocation.allocation_type,
            )
            for allocation, name in await tx.session.execute(
                tx.scoped(lines_stmt, GroupDistribution)
            )
        ]

        return BatchOverview(
            batch=DistributionBatchRecord.model_validate(batch),
            totals=BatchTotals(
                food_received=batch.total_food_received,
                water_received=batch.total_water_received,
                food_allocated=food_allocated,
                water_allocated=water_allocated,
                food_remaining=batch.total_food_received - food_allocated,
                water_remaining=batch.total_water_received - water_allocated,
            ),
            allocations=lines,
        )
