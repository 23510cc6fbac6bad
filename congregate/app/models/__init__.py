"""Models package - re-exports for convenience."""

from congregate.app.models.attendance import (
    AttendanceWindowRecord,
    BulkMarkFailure,
    BulkMarkResult,
    GroupAttendanceRecord,
    GroupCount,
    GroupMembersAttendance,
    MemberAttendanceRecord,
    MemberMark,
    MemberWithAttendance,
    WindowSummary,
)
from congregate.app.models.common import AllocationType, AttendanceStatus, GroupKind, WindowState
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

__all__ = [
    # Common
    "AttendanceStatus",
    "AllocationType",
    "GroupKind",
    "WindowState",
    # Attendance
    "AttendanceWindowRecord",
    "GroupAttendanceRecord",
    "MemberAttendanceRecord",
    "MemberMark",
    "BulkMarkFailure",
    "BulkMarkResult",
    "MemberWithAttendance",
    "GroupMembersAttendance",
    "GroupCount",
    "WindowSummary",
    # Distribution
    "DistributionBatchRecord",
    "BatchDetail",
    "GroupDistributionRecord",
    "BatchTotals",
    "AllocationLine",
    "BatchOverview",
    "AllocationResult",
    "GroupAttendanceSnapshot",
    "GroupAllocationInfo",
    "AllocationPlanningSummary",
    "GroupsWithAttendance",
]
