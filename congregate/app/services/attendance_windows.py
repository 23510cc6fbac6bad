"""Attendance window lifecycle.

A window is *scheduled* before ``opens_at``, *open* while
``opens_at <= now <= closes_at`` and *closed* afterwards. The state is
derived from the clock on every read and never stored. Closing early pulls
``closes_at`` forward to ``now``; there is no transition back to open.
"""

from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import select

from congregate.app.audit.notary import ActivityNotary
from congregate.app.db.context import AccessContext
from congregate.app.db.models import AttendanceWindow, Group, GroupAttendance
from congregate.app.db.policy import ATTENDANCE_WINDOW_WRITE
from congregate.app.db.unit_of_work import ContextScopedUnitOfWork, UnitOfWork
from congregate.app.errors import InvalidRange, WindowClosed, WindowNotFound
from congregate.app.models.attendance import AttendanceWindowRecord, GroupCount, WindowSummary
from congregate.app.models.common import WindowState
from congregate.app.utils.clock import Clock, SystemClock, ensure_utc
from congregate.app.utils.logging import StructuredOperationLogger

op_logger = StructuredOperationLogger(__name__)


class TimeRange(Protocol):
    opens_at: datetime
    closes_at: datetime


def is_window_open(window: TimeRange, at: datetime) -> bool:
    """Whether ``at`` falls inside [opens_at, closes_at], bounds included."""
    return window.opens_at <= at <= window.closes_at


def window_state(window: TimeRange, at: datetime) -> WindowState:
    """Derived lifecycle state of a window at ``at``."""
    if at < window.opens_at:
        return WindowState.scheduled
    if at > window.closes_at:
        return WindowState.closed
    return WindowState.open


async def load_window(tx: UnitOfWork, window_id: UUID) -> AttendanceWindow:
    """Load a window inside the bound transaction.

    Raises:
        WindowNotFound: If no such window exists
    """
    window = await tx.session.get(AttendanceWindow, window_id)
    if window is None:
        raise WindowNotFound(window_id)
    return window


async def require_open_window(tx: UnitOfWork, window_id: UUID, at: datetime) -> AttendanceWindow:
    """Load a window and gate a write on it being open at ``at``.

    Raises:
        WindowNotFound: If no such window exists
        WindowClosed: If ``at`` is outside the window
    """
    window = await load_window(tx, window_id)
    if not is_window_open(window, at):
        raise WindowClosed(window_id)
    return window


class AttendanceWindowManager:
    """Creates, closes and resolves attendance windows."""

    def __init__(
        self,
        uow: ContextScopedUnitOfWork,
        notary: ActivityNotary,
        clock: Clock | None = None,
    ) -> None:
        self._uow = uow
        self._notary = notary
        self._clock = clock or SystemClock()

    def is_open(self, window: TimeRange, at: datetime | None = None) -> bool:
        """Whether the window is open now (or at ``at``)."""
        return is_window_open(window, at if at is not None else self._clock.now())

    def state(self, window: TimeRange, at: datetime | None = None) -> WindowState:
        """Derived state of the window now (or at ``at``)."""
        return window_state(window, at if at is not None else self._clock.now())

    async def open(
        self,
        cycle_date: date,
        opens_at: datetime,
        closes_at: datetime,
        actor: AccessContext,
    ) -> AttendanceWindowRecord:
        """Create a window for a cycle.

        Args:
            cycle_date: Week marker the window belongs to
            opens_at: Start of submissions
            closes_at: End of submissions, strictly after opens_at
            actor: Admin-tier access context

        Returns:
            The created window

        Raises:
            InvalidRange: If closes_at <= opens_at
            Forbidden: If the actor is not admin tier
        """
        opens_at = ensure_utc(opens_at)
        closes_at = ensure_utc(closes_at)
        if closes_at <= opens_at:
            raise InvalidRange("closes_at must be after opens_at")

        async def op(tx: UnitOfWork) -> AttendanceWindowRecord:
            tx.require(ATTENDANCE_WINDOW_WRITE)
            window = AttendanceWindow(
                cycle_date=cycle_date,
                opens_at=opens_at,
                closes_at=closes_at,
                created_by=tx.actor_id,
                created_at=self._clock.now(),
            )
            tx.session.add(window)
            await tx.session.flush()
            return AttendanceWindowRecord.model_validate(window)

        record = await self._uow.run(actor, op)

        op_logger.log_operation(actor, "open_window", "success", window_id=record.id)
        self._notary.log(
            "ATTENDANCE_WINDOW_OPENED",
            "attendance_window",
            record.id,
            {
                "cycle_date": record.cycle_date.isoformat(),
                "opens_at": record.opens_at.isoformat(),
                "closes_at": record.closes_at.isoformat(),
            },
            actor=actor,
        )
        return record

    async def close_early(self, window_id: UUID, actor: AccessContext) -> AttendanceWindowRecord:
        """Pull closes_at forward to min(now, closes_at).

        Closing an already-closed window leaves it unchanged.

        Raises:
            WindowNotFound: If no such window exists
            Forbidden: If the actor is not admin tier
        """

        async def op(tx: UnitOfWork) -> tuple[AttendanceWindowRecord, bool]:
            tx.require(ATTENDANCE_WINDOW_WRITE)
            window = await load_window(tx, window_id)
            now = self._clock.now()
            changed = now < window.closes_at
            if changed:
                window.closes_at = now
                await tx.session.flush()
            return AttendanceWindowRecord.model_validate(window), changed

        record, changed = await self._uow.run(actor, op)

        if not changed:
            op_logger.log_operation(actor, "close_window", "noop", window_id=window_id)
            return record

        op_logger.log_operation(actor, "close_window", "success", window_id=window_id)
        self._notary.log(
            "ATTENDANCE_WINDOW_CLOSED",
            "attendance_window",
            window_id,
            {"closes_at": record.closes_at.isoformat()},
            actor=actor,
        )
        return record

    async def current(self, actor: AccessContext | None = None) -> AttendanceWindowRecord | None:
        """Window open right now; the most recent cycle wins ties."""
        now = self._clock.now()

        async def op(tx: UnitOfWork) -> AttendanceWindowRecord | None:
            result = await tx.session.execute(
                select(AttendanceWindow)
                .where(AttendanceWindow.opens_at <= now, AttendanceWindow.closes_at >= now)
                .order_by(AttendanceWindow.cycle_date.desc(), AttendanceWindow.created_at.desc())
                .limit(1)
            )
            window = result.scalar_one_or_none()
            return AttendanceWindowRecord.model_validate(window) if window else None

        return await self._uow.run(actor, op)

    async def get(self, window_id: UUID, actor: AccessContext | None = None) -> AttendanceWindowRecord:
        """Get a window by ID.

        Raises:
            WindowNotFound: If no such window exists
        """

        async def op(tx: UnitOfWork) -> AttendanceWindowRecord:
            return AttendanceWindowRecord.model_validate(await load_window(tx, window_id))

        return await self._uow.run(actor, op)

    async def list_windows(
        self, actor: AccessContext | None = None, limit: int = 50
    ) -> list[AttendanceWindowRecord]:
        """List windows, newest cycle first."""

        async def op(tx: UnitOfWork) -> list[AttendanceWindowRecord]:
            result = await tx.session.execute(
                select(AttendanceWindow)
                .order_by(AttendanceWindow.cycle_date.desc(), AttendanceWindow.created_at.desc())
                .limit(limit)
            )
            return [AttendanceWindowRecord.model_validate(w) for w in result.scalars().all()]

        return await self._uow.run(actor, op)

    async def summary(
        self, window_id: UUID | None = None, actor: AccessContext | None = None
    ) -> WindowSummary:
        """Head counts reported for a window (default: the current one).

        Raises:
            WindowNotFound: If the window is absent or none is open
        """
        now = self._clock.now()

        async def op(tx: UnitOfWork) -> WindowSummary:
            if window_id is not None:
                window = await load_window(tx, window_id)
            else:
                result = await tx.session.execute(
                    select(AttendanceWindow)
                    .where(AttendanceWindow.opens_at <= now, AttendanceWindow.closes_at >= now)
                    .order_by(AttendanceWindow.cycle_date.desc())
                    .limit(1)
                )
                window = result.scalar_one_or_none()
                if window is None:
                    raise WindowNotFound()

            stmt = (
                select(GroupAttendance.group_id, Group.name, GroupAttendance.count)
                .join(Group, Group.id == GroupAttendance.group_id)
                .where(GroupAttendance.window_id == window.id)
                .order_by(Group.name)
            )
            rows = (await tx.session.execute(tx.scoped(stmt, GroupAttendance))).all()
            by_group = [
                GroupCount(group_id=group_id, group_name=name, count=count)
                for group_id, name, count in rows
            ]

            return WindowSummary(
                window=AttendanceWindowRecord.model_validate(window),
                total_groups=len(by_group),
                total_attendance=sum(line.count for line in by_group),
                by_group=by_group,
            )

        return await self._uow.run(actor, op)

