"""Attendance endpoints - windows, head counts and member marks."""

from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from congregate.app.api.auth import get_current_context
from congregate.app.api.deps import get_recorder, get_window_manager
from congregate.app.db.context import AccessContext
from congregate.app.models.attendance import (
    AttendanceWindowRecord,
    BulkMarkResult,
    GroupAttendanceRecord,
    GroupMembersAttendance,
    MemberAttendanceRecord,
    MemberMark,
    WindowSummary,
)
from congregate.app.services.attendance_recorder import AttendanceRecorder
from congregate.app.services.attendance_windows import AttendanceWindowManager

router = APIRouter(prefix="/attendance", tags=["attendance"])

Actor = Annotated[AccessContext, Depends(get_current_context)]
Windows = Annotated[AttendanceWindowManager, Depends(get_window_manager)]
Recorder = Annotated[AttendanceRecorder, Depends(get_recorder)]


class OpenWindowRequest(BaseModel):
    """Request body for POST /attendance/windows."""

    cycle_date: date
    opens_at: datetime
    closes_at: datetime


class GroupCountRequest(BaseModel):
    """Request body for PUT .../count."""

    count: int


class MemberMarkRequest(BaseModel):
    """Request body for PUT .../members/{member_id}."""

    status: str
    notes: str | None = None


class BulkMarkRequest(BaseModel):
    """Request body for POST .../members/bulk."""

    records: list[MemberMark] = Field(..., min_length=1)


@router.post("/windows", response_model=AttendanceWindowRecord, status_code=status.HTTP_201_CREATED)
async def open_window(
    request: OpenWindowRequest, actor: Actor, windows: Windows
) -> AttendanceWindowRecord:
    """Create an attendance window (admin tier)."""
    return await windows.open(request.cycle_date, request.opens_at, request.closes_at, actor)


@router.get("/windows", response_model=list[AttendanceWindowRecord])
async def list_windows(actor: Actor, windows: Windows, limit: int = 50) -> list[AttendanceWindowRecord]:
    return await windows.list_windows(actor, limit=limit)


@router.get("/windows/current", response_model=AttendanceWindowRecord | None)
async def current_window(actor: Actor, windows: Windows) -> AttendanceWindowRecord | None:
    """Window open right now, or null."""
    return await windows.current(actor)


@router.get("/windows/{window_id}", response_model=AttendanceWindowRecord)
async def get_window(window_id: UUID, actor: Actor, windows: Windows) -> AttendanceWindowRecord:
    return await windows.get(window_id, actor)


@router.post("/windows/{window_id}/close", response_model=AttendanceWindowRecord)
async def close_window(window_id: UUID, actor: Actor, windows: Windows) -> AttendanceWindowRecord:
    """Close a window early; closing a closed window is a no-op."""
    return await windows.close_early(window_id, actor)


@router.get("/summary", response_model=WindowSummary)
async def current_summary(actor: Actor, windows: Windows) -> WindowSummary:
    return await windows.summary(actor=actor)


@router.get("/windows/{window_id}/summary", response_model=WindowSummary)
async def window_summary(window_id: UUID, actor: Actor, windows: Windows) -> WindowSummary:
    return await windows.summary(window_id, actor)


@router.put(
    "/groups/{group_id}/windows/{window_id}/count",
    response_model=GroupAttendanceRecord,
)
async def record_group_count(
    group_id: UUID,
    window_id: UUID,
    request: GroupCountRequest,
    actor: Actor,
    recorder: Recorder,
) -> GroupAttendanceRecord:
    """Upsert a group's head count for an open window."""
    return await recorder.record_group_count(group_id, window_id, request.count, actor)


@router.get("/counts", response_model=list[GroupAttendanceRecord])
async def list_group_counts(
    actor: Actor,
    recorder: Recorder,
    group_id: UUID | None = None,
    window_id: UUID | None = None,
) -> list[GroupAttendanceRecord]:
    return await recorder.list_group_counts(actor, group_id=group_id, window_id=window_id)


@router.get(
    "/groups/{group_id}/windows/{window_id}/members",
    response_model=GroupMembersAttendance,
)
async def group_members(
    group_id: UUID, window_id: UUID, actor: Actor, recorder: Recorder
) -> GroupMembersAttendance:
    return await recorder.group_members_attendance(group_id, window_id, actor)


@router.post(
    "/groups/{group_id}/windows/{window_id}/members/bulk",
    response_model=BulkMarkResult,
)
async def bulk_mark(
    group_id: UUID,
    window_id: UUID,
    request: BulkMarkRequest,
    actor: Actor,
    recorder: Recorder,
) -> BulkMarkResult:
    """Mark several members; rejected entries are listed in failures."""
    return await recorder.bulk_mark(group_id, window_id, request.records, actor)


@router.put(
    "/groups/{group_id}/windows/{window_id}/members/{member_id}",
    response_model=MemberAttendanceRecord,
)
async def mark_member(
    group_id: UUID,
    window_id: UUID,
    member_id: UUID,
    request: MemberMarkRequest,
    actor: Actor,
    recorder: Recorder,
) -> MemberAttendanceRecord:
    """Upsert one member's status for an open window."""
    return await recorder.mark_member_attendance(
        member_id, group_id, window_id, request.status, actor, request.notes
    )
