"""Typed failures raised by the operations core.

Each error carries a stable ``kind`` string and a human-readable message.
The HTTP adapter maps kinds to status codes; nothing here exposes
connection or transaction details.
"""

from uuid import UUID


class DomainError(Exception):
    """Base class for all typed operation failures."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(DomainError):
    """A referenced window, batch, member, group or allocation is absent."""

    kind = "not_found"
    resource = "Resource"

    def __init__(self, identifier: UUID | str | None = None) -> None:
        if identifier is None:
            message = f"{self.resource} not found"
        else:
            message = f"{self.resource} with ID {identifier} not found"
        super().__init__(message)
        self.identifier = identifier


class WindowNotFound(NotFound):
    resource = "Attendance window"


class BatchNotFound(NotFound):
    resource = "Distribution batch"


class MemberNotFound(NotFound):
    resource = "Member"


class GroupNotFound(NotFound):
    resource = "Group"


class AllocationNotFound(NotFound):
    resource = "Group distribution"


class InvalidRange(DomainError):
    """closes_at is not after opens_at."""

    kind = "invalid_range"


class InvalidInput(DomainError):
    """A count or amount is outside its allowed domain."""

    kind = "invalid_input"


class WindowClosed(DomainError):
    """A write was attempted outside [opens_at, closes_at]."""

    kind = "window_closed"

    def __init__(self, window_id: UUID) -> None:
        super().__init__(f"Attendance window {window_id} is not currently open")
        self.window_id = window_id


class GroupMismatch(DomainError):
    """The member does not currently belong to the stated group."""

    kind = "group_mismatch"

    def __init__(self, member_id: UUID, group_id: UUID) -> None:
        super().__init__(f"Member {member_id} does not belong to group {group_id}")
        self.member_id = member_id
        self.group_id = group_id


class Conflict(DomainError):
    """A unique-key race that upsert logic could not absorb."""

    kind = "conflict"


class Forbidden(DomainError):
    """The actor's role or scope does not allow the action."""

    kind = "forbidden"


class OperationTimedOut(DomainError):
    """The unit of work exceeded its deadline and was rolled back."""

    kind = "timeout"
