from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from ..database.base import Base, UUIDMixin, TimestampMixin


class User(Base, UUIDMixin, TimestampMixin):
    """
    User Model for RBAC.
    Staff (nurse, supervisor, admin) and guardians share this table.
    """
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String, default="")
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, default="nurse")  # nurse, supervisor, admin, guardian
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
