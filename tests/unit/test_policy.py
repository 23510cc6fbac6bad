"""Unit tests for the scope policy evaluator."""

import uuid

import pytest
from sqlalchemy import select

from congregate.app.db.context import AccessContext, Role
from congregate.app.db.models import AttendanceWindow, Group, GroupAttendance
from congregate.app.db.policy import (
    ATTENDANCE_WINDOW_WRITE,
    DISTRIBUTION_WRITE,
    GROUP_ATTENDANCE_WRITE,
    MEMBER_ATTENDANCE_WRITE,
    ScopePolicyEvaluator,
)
from congregate.app.errors import Forbidden

GROUP_A = uuid.uuid4()
GROUP_B = uuid.uuid4()


def ctx(role: Role, *scope: uuid.UUID) -> AccessContext:
    return AccessContext(actor_id=uuid.uuid4(), role=role, scope_ids=frozenset(scope))


@pytest.fixture
def policy() -> ScopePolicyEvaluator:
    return ScopePolicyEvaluator()


class TestRequire:
    """Write permission checks."""

    @pytest.mark.parametrize("role", [Role.super_admin, Role.admin])
    def test_admin_tier_manages_windows(self, policy: ScopePolicyEvaluator, role: Role) -> None:
        policy.require(ctx(role), ATTENDANCE_WINDOW_WRITE)

    @pytest.mark.parametrize(
        "role", [Role.platoon_leader, Role.worker, Role.kitchen, Role.distribution]
    )
    def test_others_cannot_manage_windows(self, policy: ScopePolicyEvaluator, role: Role) -> None:
        with pytest.raises(Forbidden):
            policy.require(ctx(role, GROUP_A), ATTENDANCE_WINDOW_WRITE)

    @pytest.mark.parametrize("action", [GROUP_ATTENDANCE_WRITE, MEMBER_ATTENDANCE_WRITE])
    def test_leader_writes_inside_scope(self, policy: ScopePolicyEvaluator, action: str) -> None:
        policy.require(ctx(Role.platoon_leader, GROUP_A), action, GROUP_A)

    @pytest.mark.parametrize("action", [GROUP_ATTENDANCE_WRITE, MEMBER_ATTENDANCE_WRITE])
    def test_leader_rejected_outside_scope(self, policy: ScopePolicyEvaluator, action: str) -> None:
        with pytest.raises(Forbidden, match="outside"):
            policy.require(ctx(Role.assistant_platoon_leader, GROUP_A), action, GROUP_B)

    def test_admin_writes_any_group(self, policy: ScopePolicyEvaluator) -> None:
        policy.require(ctx(Role.admin), GROUP_ATTENDANCE_WRITE, GROUP_B)

    def test_kitchen_cannot_take_attendance(self, policy: ScopePolicyEvaluator) -> None:
        with pytest.raises(Forbidden):
            policy.require(ctx(Role.kitchen, GROUP_A), GROUP_ATTENDANCE_WRITE, GROUP_A)

    @pytest.mark.parametrize("role", [Role.admin, Role.distribution])
    def test_distribution_writers(self, policy: ScopePolicyEvaluator, role: Role) -> None:
        policy.require(ctx(role), DISTRIBUTION_WRITE)

    def test_leader_cannot_allocate(self, policy: ScopePolicyEvaluator) -> None:
        with pytest.raises(Forbidden):
            policy.require(ctx(Role.platoon_leader, GROUP_A), DISTRIBUTION_WRITE)

    def test_anonymous_is_forbidden(self, policy: ScopePolicyEvaluator) -> None:
        with pytest.raises(Forbidden):
            policy.require(None, GROUP_ATTENDANCE_WRITE, GROUP_A)

    def test_unknown_action_is_forbidden(self, policy: ScopePolicyEvaluator) -> None:
        with pytest.raises(Forbidden):
            policy.require(ctx(Role.super_admin), "group:delete")


class TestFilter:
    """Read row filters."""

    def test_read_all_roles_unfiltered(self, policy: ScopePolicyEvaluator) -> None:
        stmt = select(GroupAttendance)

        assert policy.filter(ctx(Role.admin), stmt, GroupAttendance) is stmt
        assert policy.filter(ctx(Role.distribution), stmt, GroupAttendance) is stmt

    def test_ungoverned_entity_unfiltered(self, policy: ScopePolicyEvaluator) -> None:
        stmt = select(AttendanceWindow)

        assert policy.filter(None, stmt, AttendanceWindow) is stmt

    def test_scoped_role_filtered_on_group_column(self, policy: ScopePolicyEvaluator) -> None:
        stmt = select(Group)

        filtered = policy.filter(ctx(Role.platoon_leader, GROUP_A), stmt, Group)

        assert filtered is not stmt
        assert "WHERE" in str(filtered)
        assert '"group".id IN' in str(filtered)
