import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from ..database.base import Base, UUIDMixin, TimestampMixin
from ..schemas.incident import AssignmentMethod, IncidentKind, IncidentStatus


def _str_enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])


class IncidentRecord(Base, UUIDMixin, TimestampMixin):
    """
    Health incident row.
    owner_id/status/assignment_method/assigned_at only ever change together,
    through a single conditional UPDATE guarded by status, owner and version.
    """
    __tablename__ = "health_incidents"
    __table_args__ = (
        Index("ix_health_incidents_status_owner", "status", "owner_id"),
        CheckConstraint(
            "(owner_id IS NULL) = (status NOT IN ('in_progress', 'completed'))",
            name="ck_health_incidents_owner_status",
        ),
    )

    code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    kind: Mapped[IncidentKind] = mapped_column(_str_enum(IncidentKind), nullable=False)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[IncidentStatus] = mapped_column(_str_enum(IncidentStatus), default=IncidentStatus.PENDING, nullable=False)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    assignment_method: Mapped[AssignmentMethod] = mapped_column(
        _str_enum(AssignmentMethod), default=AssignmentMethod.UNASSIGNED, nullable=False
    )
    reported_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    linked_condition_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[str] = mapped_column(String, default="")
    action_taken: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Background sweep bookkeeping, outside the state machine
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reminded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<IncidentRecord(code={self.code}, status={self.status}, owner={self.owner_id})>"
