"""Access context for row-scoping enforcement."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class Role(str, Enum):
    """Primary role of an actor."""

    super_admin = "super_admin"
    admin = "admin"
    worker = "worker"
    platoon_leader = "platoon_leader"
    assistant_platoon_leader = "assistant_platoon_leader"
    children_teacher = "children_teacher"
    kitchen = "kitchen"
    distribution = "distribution"


ADMIN_TIER: frozenset[Role] = frozenset({Role.super_admin, Role.admin})


@dataclass(frozen=True)
class AccessContext:
    """Access context containing actor identity, role and group scope.

    Built once per inbound request from verified credentials and passed
    explicitly into every unit of work.
    """

    actor_id: UUID
    role: Role
    scope_ids: frozenset[UUID] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Accept any iterable of ids but always store a frozenset
        if not isinstance(self.scope_ids, frozenset):
            object.__setattr__(self, "scope_ids", frozenset(self.scope_ids))

    @property
    def is_admin(self) -> bool:
        """Whether the actor belongs to the admin tier."""
        return self.role in ADMIN_TIER

    def can_act_on(self, group_id: UUID) -> bool:
        """Whether the actor administers the given group."""
        return self.is_admin or group_id in self.scope_ids

    def to_claims(self) -> dict[str, Any]:
        """Serialize to the claims document bound into the session."""
        return {
            "sub": str(self.actor_id),
            "role": self.role.value,
            "scope_ids": sorted(str(scope_id) for scope_id in self.scope_ids),
        }
