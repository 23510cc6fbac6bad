"""Service dependencies resolved from application state."""

from fastapi import Request

from congregate.app.services.attendance_recorder import AttendanceRecorder
from congregate.app.services.attendance_windows import AttendanceWindowManager
from congregate.app.services.distribution import DistributionAllocationEngine


def get_window_manager(request: Request) -> AttendanceWindowManager:
    return request.app.state.windows  # type: ignore[no-any-return]


def get_recorder(request: Request) -> AttendanceRecorder:
    return request.app.state.recorder  # type: ignore[no-any-return]


def get_distribution(request: Request) -> DistributionAllocationEngine:
    return request.app.state.distribution  # type: ignore[no-any-return]
