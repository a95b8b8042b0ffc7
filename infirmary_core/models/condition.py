import uuid

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from ..database.base import Base, UUIDMixin, TimestampMixin
from ..schemas.incident import ConditionType


class MedicalCondition(Base, UUIDMixin, TimestampMixin):
    """
    Pre-existing allergy, chronic disease or history entry for a student.
    Only the fields the incident compatibility check reads are mapped here.
    """
    __tablename__ = "medical_conditions"

    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    condition_type: Mapped[ConditionType] = mapped_column(
        Enum(ConditionType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)  # e.g. "Peanut allergy", "Asthma"
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
