"""Attendance read models."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from congregate.app.models.common import AttendanceStatus


class AttendanceWindowRecord(BaseModel):
    """Attendance window as stored; open/closed is derived, never stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    cycle_date: date
    opens_at: datetime
    closes_at: datetime
    created_by: UUID
    created_at: datetime


class GroupAttendanceRecord(BaseModel):
    """Aggregate head count for one group in one window."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    group_id: UUID
    window_id: UUID
    count: int = Field(..., ge=0)
    taken_by: UUID
    taken_at: datetime


class MemberAttendanceRecord(BaseModel):
    """Status of one member in one window."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    member_id: UUID
    window_id: UUID
    group_id: UUID
    status: AttendanceStatus
    marked_by: UUID
    marked_at: datetime
    notes: str | None = None


class MemberMark(BaseModel):
    """One entry of a bulk marking request."""

    member_id: UUID
    status: AttendanceStatus
    notes: str | None = None


class BulkMarkFailure(BaseModel):
    """A bulk marking entry that was rejected."""

    member_id: UUID
    error: str
    detail: str


class BulkMarkResult(BaseModel):
    """Outcome of a bulk marking; each entry committed on its own."""

    marked: list[MemberAttendanceRecord] = Field(default_factory=list)
    failures: list[BulkMarkFailure] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.marked) and bool(self.failures)


class MemberWithAttendance(BaseModel):
    """Current group member paired with the window's record, if any."""

    member_id: UUID
    first_name: str
    last_name: str
    attendance: MemberAttendanceRecord | None = None


class GroupMembersAttendance(BaseModel):
    """Roster of a group for one window with tallies."""

    group_id: UUID
    window_id: UUID
    members: list[MemberWithAttendance]
    total_members: int
    present: int
    absent: int
    unmarked: int


class GroupCount(BaseModel):
    """Head count line of a window summary."""

    group_id: UUID
    group_name: str
    count: int


class WindowSummary(BaseModel):
    """Head counts reported for one window."""

    window: AttendanceWindowRecord
    total_groups: int
    total_attendance: int
    by_group: list[GroupCount]
