"""Common enums shared across all models."""

from enum import Enum


class AttendanceStatus(str, Enum):
    """Member attendance status."""

    present = "present"
    absent = "absent"


class AllocationType(str, Enum):
    """How a group's portion of a batch was decided."""

    attendance_based = "attendance_based"
    fixed = "fixed"
    supplementary = "supplementary"


class GroupKind(str, Enum):
    """Group type."""

    adult = "adult"
    youth = "youth"
    children = "children"


class WindowState(str, Enum):
    """Derived lifecycle state of an attendance window."""

    scheduled = "scheduled"
    open = "open"
    closed = "closed"
