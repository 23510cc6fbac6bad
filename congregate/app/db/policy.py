"""Explicit row-scoping policy.

Application-side counterpart of the database row-level security policies:
the unit of work applies it to every group-bearing read and checks it
before every write.
"""

from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import Select, false
from sqlalchemy.orm import InstrumentedAttribute

from congregate.app.db.context import ADMIN_TIER, AccessContext, Role
from congregate.app.db.models import (
    Base,
    Group,
    GroupAttendance,
    GroupDistribution,
    Member,
    MemberAttendance,
)
from congregate.app.errors import Forbidden

ATTENDANCE_WINDOW_WRITE = "attendance_window:write"
GROUP_ATTENDANCE_WRITE = "group_attendance:write"
MEMBER_ATTENDANCE_WRITE = "member_attendance:write"
DISTRIBUTION_WRITE = "distribution:write"

LEADER_ROLES: frozenset[Role] = frozenset(
    {
        Role.platoon_leader,
        Role.assistant_platoon_leader,
        Role.worker,
        Role.children_teacher,
    }
)

# Roles that read every group's rows regardless of scope
READ_ALL_ROLES: frozenset[Role] = ADMIN_TIER | {Role.distribution}


class PolicyEvaluator(Protocol):
    """Decides what an access context may see and do."""

    def filter(
        self, ctx: AccessContext | None, stmt: Select[Any], entity: type[Base]
    ) -> Select[Any]:
        """Restrict a SELECT over ``entity`` to rows visible to ``ctx``."""
        ...

    def require(
        self, ctx: AccessContext | None, action: str, group_id: UUID | None = None
    ) -> None:
        """Raise Forbidden unless ``ctx`` may perform ``action``."""
        ...


class ScopePolicyEvaluator:
    """Default rule set keyed on role and group scope."""

    # action -> (allowed roles, whether non-admins are limited to their scope)
    RULES: dict[str, tuple[frozenset[Role], bool]] = {
        ATTENDANCE_WINDOW_WRITE: (ADMIN_TIER, False),
        GROUP_ATTENDANCE_WRITE: (ADMIN_TIER | LEADER_ROLES, True),
        MEMBER_ATTENDANCE_WRITE: (ADMIN_TIER | LEADER_ROLES, True),
        DISTRIBUTION_WRITE: (ADMIN_TIER | {Role.distribution}, False),
    }

    GROUP_COLUMNS: dict[type[Base], InstrumentedAttribute[Any]] = {
        Group: Group.id,
        Member: Member.current_group_id,
        GroupAttendance: GroupAttendance.group_id,
        MemberAttendance: MemberAttendance.group_id,
        GroupDistribution: GroupDistribution.group_id,
    }

    def filter(
        self, ctx: AccessContext | None, stmt: Select[Any], entity: type[Base]
    ) -> Select[Any]:
        column = self.GROUP_COLUMNS.get(entity)
        if column is None:
            return stmt

        if ctx is None:
            return stmt.where(false())

        if ctx.role in READ_ALL_ROLES:
            return stmt

        if not ctx.scope_ids:
            return stmt.where(false())

        return stmt.where(column.in_(list(ctx.scope_ids)))

    def require(
        self, ctx: AccessContext | None, action: str, group_id: UUID | None = None
    ) -> None:
        if ctx is None:
            raise Forbidden("An authenticated actor is required")

        rule = self.RULES.get(action)
        if rule is None:
            raise Forbidden(f"Action '{action}' is not permitted")

        roles, scoped = rule
        if ctx.role not in roles:
            raise Forbidden(f"Role '{ctx.role.value}' may not perform '{action}'")

        if scoped and group_id is not None and not ctx.can_act_on(group_id):
            raise Forbidden(f"Group {group_id} is outside the actor's scope")
