"""Group head counts and member presence against an open window."""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from congregate.app.audit.notary import ActivityNotary
from congregate.app.db.context import AccessContext
from congregate.app.db.models import Group, GroupAttendance, Member, MemberAttendance
from congregate.app.db.policy import GROUP_ATTENDANCE_WRITE, MEMBER_ATTENDANCE_WRITE
from congregate.app.db.unit_of_work import ContextScopedUnitOfWork, UnitOfWork
from congregate.app.db.upserts import upsert
from congregate.app.errors import (
    DomainError,
    GroupMismatch,
    GroupNotFound,
    InvalidInput,
    MemberNotFound,
)
from congregate.app.models.attendance import (
    BulkMarkFailure,
    BulkMarkResult,
    GroupAttendanceRecord,
    GroupMembersAttendance,
    MemberAttendanceRecord,
    MemberMark,
    MemberWithAttendance,
)
from congregate.app.models.common import AttendanceStatus
from congregate.app.services.attendance_windows import load_window, require_open_window
from congregate.app.utils.clock import Clock, SystemClock
from congregate.app.utils.logging import StructuredOperationLogger

logger = logging.getLogger(__name__)
op_logger = StructuredOperationLogger(__name__)


async def load_group(tx: UnitOfWork, group_id: UUID) -> Group:
    """Load a group inside the bound transaction.

    Raises:
        GroupNotFound: If no such group exists
    """
    group = await tx.session.get(Group, group_id)
    if group is None:
        raise GroupNotFound(group_id)
    return group


class AttendanceRecorder:
    """Records attendance; every write is an idempotent upsert."""

    def __init__(
        self,
        uow: ContextScopedUnitOfWork,
        notary: ActivityNotary,
        clock: Clock | None = None,
    ) -> None:
        self._uow = uow
        self._notary = notary
        self._clock = clock or SystemClock()

    async def record_group_count(
        self,
        group_id: UUID,
        window_id: UUID,
        count: int,
        actor: AccessContext,
    ) -> GroupAttendanceRecord:
        """Upsert the head count of a group for an open window.

        Repeating the call converges to one row holding the last count;
        taken_by and taken_at are refreshed on every call.

        Raises:
            InvalidInput: If count is negative
            WindowNotFound: If the window is absent
            WindowClosed: If the window is not open
            GroupNotFound: If the group is absent
            Forbidden: If the group is outside the actor's scope
        """
        if count < 0:
            raise InvalidInput("count must be 0 or greater")

        async def op(tx: UnitOfWork) -> GroupAttendanceRecord:
            tx.require(GROUP_ATTENDANCE_WRITE, group_id)
            now = self._clock.now()
            await require_open_window(tx, window_id, now)
            await load_group(tx, group_id)

            await upsert(
                tx,
                GroupAttendance,
                {
                    "group_id": group_id,
                    "window_id": window_id,
                    "count": count,
                    "taken_by": tx.actor_id,
                    "taken_at": now,
                },
                conflict_columns=("group_id", "window_id"),
                update_columns=("count", "taken_by", "taken_at"),
            )

            result = await tx.session.execute(
                select(GroupAttendance)
                .where(GroupAttendance.group_id == group_id, GroupAttendance.window_id == window_id)
                .execution_options(populate_existing=True)
            )
            return GroupAttendanceRecord.model_validate(result.scalar_one())

        record = await self._uow.run(actor, op)

        op_logger.log_operation(
            actor, "record_group_count", "success", group_id=group_id, window_id=window_id, count=count
        )
        self._notary.log(
            "ATTENDANCE_SUBMITTED",
            "group_attendance",
            record.id,
            {"group_id": str(group_id), "window_id": str(window_id), "count": count},
            actor=actor,
        )
        return record

    async def mark_member_attendance(
        self,
        member_id: UUID,
        group_id: UUID,
        window_id: UUID,
        status: AttendanceStatus | str,
        actor: AccessContext,
        notes: str | None = None,
    ) -> MemberAttendanceRecord:
        """Upsert one member's status for an open window.

        Raises:
            InvalidInput: If status is not present/absent
            WindowNotFound: If the window is absent
            WindowClosed: If the window is not open
            MemberNotFound: If the member is absent
            GroupMismatch: If the member's current group is not ``group_id``
            Forbidden: If the group is outside the actor's scope
        """
        try:
            parsed_status = AttendanceStatus(status)
        except ValueError as e:
            raise InvalidInput(f"Status must be one of: present, absent (got '{status}')") from e

        async def op(tx: UnitOfWork) -> MemberAttendanceRecord:
            tx.require(MEMBER_ATTENDANCE_WRITE, group_id)
            now = self._clock.now()
            await require_open_window(tx, window_id, now)

            member = await tx.session.get(Member, member_id)
            if member is None:
                raise MemberNotFound(member_id)
            if member.current_group_id != group_id:
                raise GroupMismatch(member_id, group_id)

            await upsert(
                tx,
                MemberAttendance,
                {
                    "member_id": member_id,
                    "window_id": window_id,
                    "group_id": group_id,
                    "status": parsed_status.value,
                    "marked_by": tx.actor_id,
                    "marked_at": now,
                    "notes": notes,
                },
                conflict_columns=("member_id", "window_id"),
                update_columns=("group_id", "status", "marked_by", "marked_at", "notes"),
            )

            result = await tx.session.execute(
                select(MemberAttendance)
                .where(
                    MemberAttendance.member_id == member_id,
                    MemberAttendance.window_id == window_id,
                )
                .execution_options(populate_existing=True)
            )
            return MemberAttendanceRecord.model_validate(result.scalar_one())

        record = await self._uow.run(actor, op)

        op_logger.log_operation(
            actor, "mark_member", "success", member_id=member_id, window_id=window_id
        )
        self._notary.log(
            "MEMBER_ATTENDANCE_MARKED",
            "member_attendance",
            record.id,
            {
                "member_id": str(member_id),
                "group_id": str(group_id),
                "window_id": str(window_id),
                "status": parsed_status.value,
            },
            actor=actor,
        )
        return record

    async def bulk_mark(
        self,
        group_id: UUID,
        window_id: UUID,
        records: Iterable[MemberMark],
        actor: AccessContext,
    ) -> BulkMarkResult:
        """Mark several members, each in its own transaction.

        Not atomic across the batch: a rejected entry does not undo the
        entries already committed. Rejections are reported per member.
        """
        result = BulkMarkResult()

        for entry in records:
            try:
                marked = await self.mark_member_attendance(
                    entry.member_id, group_id, window_id, entry.status, actor, entry.notes
                )
            except DomainError as e:
                result.failures.append(
                    BulkMarkFailure(member_id=entry.member_id, error=e.kind, detail=e.message)
                )
                continue
            result.marked.append(marked)

        if result.failures:
            logger.warning(
                "Bulk mark rejected %d of %d entries",
                len(result.failures),
                len(result.failures) + len(result.marked),
                extra={
                    "structured": {
                        "group_id": str(group_id),
                        "window_id": str(window_id),
                        "rejected": [str(f.member_id) for f in result.failures],
                    }
                },
            )

        return result

    async def list_group_counts(
        self,
        actor: AccessContext | None = None,
        *,
        group_id: UUID | None = None,
        window_id: UUID | None = None,
    ) -> list[GroupAttendanceRecord]:
        """Head counts visible to the actor, most recently taken first."""

        async def op(tx: UnitOfWork) -> list[GroupAttendanceRecord]:
            stmt = select(GroupAttendance).order_by(GroupAttendance.taken_at.desc())
            if group_id is not None:
                stmt = stmt.where(GroupAttendance.group_id == group_id)
            if window_id is not None:
                stmt = stmt.where(GroupAttendance.window_id == window_id)

            rows = (await tx.session.execute(tx.scoped(stmt, GroupAttendance))).scalars().all()
            return [GroupAttendanceRecord.model_validate(row) for row in rows]

        return await self._uow.run(actor, op)

    async def group_members_attendance(
        self,
        group_id: UUID,
        window_id: UUID,
        actor: AccessContext | None = None,
    ) -> GroupMembersAttendance:
        """Every current member of a group with its record for the window.

        Raises:
            WindowNotFound: If the window is absent
        """

        async def op(tx: UnitOfWork) -> GroupMembersAttendance:
            await load_window(tx, window_id)

            members_stmt = (
                select(Member)
                .where(Member.current_group_id == group_id)
                .order_by(Member.last_name, Member.first_name)
            )
            members = (await tx.session.execute(tx.scoped(members_stmt, Member))).scalars().all()

            records: dict[UUID, MemberAttendanceRecord] = {}
            if members:
                records_stmt = select(MemberAttendance).where(
                    MemberAttendance.window_id == window_id,
                    MemberAttendance.member_id.in_([m.id for m in members]),
                )
                for row in (await tx.session.execute(records_stmt)).scalars().all():
                    records[row.member_id] = MemberAttendanceRecord.model_validate(row)

            roster = [
                MemberWithAttendance(
                    member_id=m.id,
                    first_name=m.first_name,
                    last_name=m.last_name,
                    attendance=records.get(m.id),
                )
                for m in members
            ]
            statuses = [entry.attendance.status for entry in roster if entry.attendance]

            return GroupMembersAttendance(
                group_id=group_id,
                window_id=window_id,
                members=roster,
                total_members=len(roster),
                present=statuses.count(AttendanceStatus.present),
                absent=statuses.count(AttendanceStatus.absent),
                unmarked=len(roster) - len(statuses),
            )

        return await self._uow.run(actor, op)
