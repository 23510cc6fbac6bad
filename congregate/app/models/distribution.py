"""Distribution read models."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from congregate.app.models.attendance import AttendanceWindowRecord
from congregate.app.models.common import AllocationType, GroupKind


class DistributionBatchRecord(BaseModel):
    """Confirmed receipt of resources for one window."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    window_id: UUID
    total_food_received: int
    total_water_received: int
    confirmed_by: UUID
    confirmed_at: datetime


class GroupDistributionRecord(BaseModel):
    """Portion of a batch allocated to one group."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_id: UUID
    group_id: UUID
    food_allocated: int
    water_allocated: int
    allocation_type: AllocationType
    distributed_by: UUID
    distributed_at: datetime


class BatchDetail(BaseModel):
    """A batch with its window and the allocations visible to the reader."""

    batch: DistributionBatchRecord
    window: AttendanceWindowRecord
    allocations: list[GroupDistributionRecord]


class BatchTotals(BaseModel):
    """Received, allocated and remaining per resource.

    Remaining is totals minus allocations and is reported as-is, negative
    when the batch is over-allocated.
    """

    food_received: int
    water_received: int
    food_allocated: int
    water_allocated: int
    food_remaining: int
    water_remaining: int

    @property
    def over_allocated(self) -> bool:
        return self.food_remaining < 0 or self.water_remaining < 0


class AllocationLine(BaseModel):
    """Per-group allocation line of an overview."""

    allocation_id: UUID
    group_id: UUID
    group_name: str
    food_allocated: int
    water_allocated: int
    allocation_type: AllocationType


class BatchOverview(BaseModel):
    """Batch totals with its allocation lines."""

    batch: DistributionBatchRecord
    totals: BatchTotals
    allocations: list[AllocationLine]


class AllocationResult(BaseModel):
    """Created allocation with the batch overview after the write."""

    allocation: GroupDistributionRecord
    overview: BatchOverview


class GroupAttendanceSnapshot(BaseModel):
    """Attendance facts used to size a group's allocation."""

    group_count: int
    present: int
    absent: int
    unmarked: int
    marked: int
    total_members: int
    has_taken: bool
    taken_at: datetime | None = None
    taken_by: UUID | None = None


class GroupAllocationInfo(BaseModel):
    """One group with its attendance and allocation for a batch."""

    group_id: UUID
    name: str
    kind: GroupKind
    member_count: int
    attendance: GroupAttendanceSnapshot
    allocation: GroupDistributionRecord | None = None
    has_attendance: bool
    has_allocation: bool


class AllocationPlanningSummary(BaseModel):
    """Totals across all groups of a batch."""

    total_groups: int
    groups_with_attendance: int
    groups_with_allocation: int
    total_attendance: int
    total_food_allocated: int
    total_water_allocated: int
    total_present: int
    total_absent: int
    total_unmarked: int


class GroupsWithAttendance(BaseModel):
    """Read-side join driving allocation decisions."""

    batch: DistributionBatchRecord
    cycle_date: date
    groups: list[GroupAllocationInfo]
    summary: AllocationPlanningSummary
