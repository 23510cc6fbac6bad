"""SQLAlchemy ORM models for the attendance and distribution ledgers."""

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from congregate.app.db.types import JsonDocument, UtcDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Group(Base):
    """Group table - the unit attendance and allocations are kept against."""

    __tablename__ = "group"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False, default="adult")
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utcnow, nullable=False)


class Member(Base):
    """Member table - current_group_id is the membership checked on marking."""

    __tablename__ = "member"
    __table_args__ = (Index("idx_member_group", "current_group_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    current_group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("group.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utcnow, nullable=False)


class AttendanceWindow(Base):
    """Attendance window table - weekly time-boxed submission period."""

    __tablename__ = "attendance_window"
    __table_args__ = (Index("idx_window_range", "opens_at", "closes_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cycle_date: Mapped[date] = mapped_column(Date, nullable=False)
    opens_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    closes_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utcnow, nullable=False)


class GroupAttendance(Base):
    """Group attendance table - one aggregate count per (group, window)."""

    __tablename__ = "group_attendance"
    __table_args__ = (
        UniqueConstraint("group_id", "window_id", name="uq_group_attendance_group_window"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("group.id"), nullable=False)
    window_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("attendance_window.id"), nullable=False
    )
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    taken_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    taken_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)


class MemberAttendance(Base):
    """Member attendance table - one status per (member, window)."""

    __tablename__ = "member_attendance"
    __table_args__ = (
        UniqueConstraint("member_id", "window_id", name="uq_member_attendance_member_window"),
        Index("idx_member_attendance_group_window", "group_id", "window_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("member.id"), nullable=False)
    window_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("attendance_window.id"), nullable=False
    )
    group_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("group.id"), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    marked_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    marked_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class DistributionBatch(Base):
    """Distribution batch table - confirmed receipt of resources for a window."""

    __tablename__ = "distribution_batch"
    __table_args__ = (Index("idx_batch_window", "window_id", "confirmed_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    window_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("attendance_window.id"), nullable=False
    )
    total_food_received: Mapped[int] = mapped_column(Integer, nullable=False)
    total_water_received: Mapped[int] = mapped_column(Integer, nullable=False)
    confirmed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    confirmed_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)


class GroupDistribution(Base):
    """Group distribution table - a portion of a batch allocated to one group."""

    __tablename__ = "group_distribution"
    __table_args__ = (Index("idx_distribution_batch_group", "batch_id", "group_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("distribution_batch.id"), nullable=False
    )
    group_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("group.id"), nullable=False)
    food_allocated: Mapped[int] = mapped_column(Integer, nullable=False)
    water_allocated: Mapped[int] = mapped_column(Integer, nullable=False)
    allocation_type: Mapped[str] = mapped_column(Text, nullable=False)
    distributed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    distributed_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)


class ActivityLog(Base):
    """Activity log table - append-only audit trail."""

    __tablename__ = "activity_log"
    __table_args__ = (Index("idx_activity_entity", "entity_type", "entity_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDocument, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utcnow, nullable=False)
