"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the attendance and distribution ledgers:
- group, member
- attendance_window, group_attendance, member_attendance
- distribution_batch, group_distribution
- activity_log

On PostgreSQL, also enables row-level security on the group-owned tables
with policies that read the claims bound per transaction in
``request.jwt.claims``.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

CLAIMS = "nullif(current_setting('request.jwt.claims', true), '')::jsonb"
ROLE = f"({CLAIMS} ->> 'role')"
READ_ALL = f"{ROLE} IN ('super_admin', 'admin', 'distribution')"
ADMIN = f"{ROLE} IN ('super_admin', 'admin')"
LEADERS = f"{ROLE} IN ('worker', 'platoon_leader', 'assistant_platoon_leader', 'children_teacher')"


def in_scope(column: str) -> str:
    return f"{column}::text IN (SELECT jsonb_array_elements_text({CLAIMS} -> 'scope_ids'))"


# table -> (group column, roles allowed to write with scope check, roles allowed to write unscoped)
GOVERNED = {
    "group": ("id", None, None),
    "member": ("current_group_id", None, None),
    "group_attendance": ("group_id", LEADERS, ADMIN),
    "member_attendance": ("group_id", LEADERS, ADMIN),
    "group_distribution": ("group_id", None, f"{ROLE} IN ('super_admin', 'admin', 'distribution')"),
}

# table -> (read predicate, write predicate) for tables without a group column
UNSCOPED = {
    "attendance_window": ("true", ADMIN),
    "distribution_batch": ("true", f"{ROLE} IN ('super_admin', 'admin', 'distribution')"),
    "activity_log": (ADMIN, f"{ROLE} IS NOT NULL"),
}


def _timestamp(name: str, **kwargs: object) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "group",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        _timestamp("created_at", nullable=False),
    )

    op.create_table(
        "member",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("current_group_id", sa.Uuid(), nullable=True),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["current_group_id"], ["group.id"]),
    )
    op.create_index("idx_member_group", "member", ["current_group_id"])

    op.create_table(
        "attendance_window",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_date", sa.Date(), nullable=False),
        _timestamp("opens_at", nullable=False),
        _timestamp("closes_at", nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.CheckConstraint("closes_at > opens_at", name="ck_window_range"),
    )
    op.create_index("idx_window_range", "attendance_window", ["opens_at", "closes_at"])

    op.create_table(
        "group_attendance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("window_id", sa.Uuid(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("taken_by", sa.Uuid(), nullable=False),
        _timestamp("taken_at", nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["group.id"]),
        sa.ForeignKeyConstraint(["window_id"], ["attendance_window.id"]),
        sa.UniqueConstraint("group_id", "window_id", name="uq_group_attendance_group_window"),
        sa.CheckConstraint("count >= 0", name="ck_group_attendance_count"),
    )

    op.create_table(
        "member_attendance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("member_id", sa.Uuid(), nullable=False),
        sa.Column("window_id", sa.Uuid(), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("marked_by", sa.Uuid(), nullable=False),
        _timestamp("marked_at", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["member.id"]),
        sa.ForeignKeyConstraint(["window_id"], ["attendance_window.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["group.id"]),
        sa.UniqueConstraint("member_id", "window_id", name="uq_member_attendance_member_window"),
        sa.CheckConstraint("status IN ('present', 'absent')", name="ck_member_attendance_status"),
    )
    op.create_index(
        "idx_member_attendance_group_window", "member_attendance", ["group_id", "window_id"]
    )

    op.create_table(
        "distribution_batch",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("window_id", sa.Uuid(), nullable=False),
        sa.Column("total_food_received", sa.Integer(), nullable=False),
        sa.Column("total_water_received", sa.Integer(), nullable=False),
        sa.Column("confirmed_by", sa.Uuid(), nullable=False),
        _timestamp("confirmed_at", nullable=False),
        sa.ForeignKeyConstraint(["window_id"], ["attendance_window.id"]),
    )
    op.create_index("idx_batch_window", "distribution_batch", ["window_id", "confirmed_at"])

    op.create_table(
        "group_distribution",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("batch_id", sa.Uuid(), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("food_allocated", sa.Integer(), nullable=False),
        sa.Column("water_allocated", sa.Integer(), nullable=False),
        sa.Column("allocation_type", sa.Text(), nullable=False),
        sa.Column("distributed_by", sa.Uuid(), nullable=False),
        _timestamp("distributed_at", nullable=False),
        sa.ForeignKeyConstraint(["batch_id"], ["distribution_batch.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["group.id"]),
    )
    op.create_index("idx_distribution_batch_group", "group_distribution", ["batch_id", "group_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        _timestamp("created_at", nullable=False),
    )
    op.create_index("idx_activity_entity", "activity_log", ["entity_type", "entity_id"])

    if op.get_bind().dialect.name == "postgresql":
        _create_policies()


def _create_policies() -> None:
    for table, (column, scoped_writers, unscoped_writers) in GOVERNED.items():
        op.execute(f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY')
        op.execute(
            f'CREATE POLICY {table}_read ON "{table}" FOR SELECT '
            f"USING ({READ_ALL} OR {in_scope(column)})"
        )

        writers = []
        if unscoped_writers:
            writers.append(unscoped_writers)
        if scoped_writers:
            writers.append(f"({scoped_writers} AND {in_scope(column)})")
        if writers:
            check = " OR ".join(writers)
            op.execute(
                f'CREATE POLICY {table}_write ON "{table}" FOR ALL '
                f"USING ({check}) WITH CHECK ({check})"
            )

    for table, (read, write) in UNSCOPED.items():
        op.execute(f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY')
        op.execute(f'CREATE POLICY {table}_read ON "{table}" FOR SELECT USING ({read})')
        op.execute(
            f'CREATE POLICY {table}_write ON "{table}" FOR INSERT WITH CHECK ({write})'
        )
        op.execute(
            f'CREATE POLICY {table}_update ON "{table}" FOR UPDATE '
            f"USING ({write}) WITH CHECK ({write})"
        )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("activity_log")
    op.drop_table("group_distribution")
    op.drop_table("distribution_batch")
    op.drop_table("member_attendance")
    op.drop_table("group_attendance")
    op.drop_table("attendance_window")
    op.drop_table("member")
    op.drop_table("group")
