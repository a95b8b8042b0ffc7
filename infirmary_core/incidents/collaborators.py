"""
Boundary contracts the incident engine consumes.
Implementations live beside their storage (incidents.repository,
incidents.directory, incidents.cache) or in the API layer (identity).
"""
from dataclasses import dataclass
from typing import Optional, Protocol
from uuid import UUID

from ..schemas.incident import ConditionType

STAFF_ROLES = frozenset({"nurse"})
SUPERVISOR_ROLES = frozenset({"supervisor", "admin"})
# Anyone who may own an incident
HANDLER_ROLES = STAFF_ROLES | SUPERVISOR_ROLES


@dataclass(frozen=True)
class StaffRef:
    id: UUID
    full_name: str = ""

    @property
    def display(self) -> str:
        return self.full_name or str(self.id)


@dataclass(frozen=True)
class Recipient:
    id: UUID
    full_name: str = ""
    role: str = ""


@dataclass(frozen=True)
class ConditionInfo:
    id: UUID
    condition_type: ConditionType
    student_id: UUID
    name: str = ""


@dataclass(frozen=True)
class StudentInfo:
    id: UUID
    full_name: str
    student_code: str = ""


class IdentityProvider(Protocol):
    async def current_actor(self) -> StaffRef:
        ...

    async def has_supervisor_privilege(self, actor: StaffRef) -> bool:
        ...


class ConditionRegistry(Protocol):
    async def get_condition(self, condition_id: UUID) -> Optional[ConditionInfo]:
        ...


class StaffDirectory(Protocol):
    """Recipients are resolved when a notification is emitted, never cached on the incident."""

    async def active_staff(self) -> list[Recipient]:
        ...

    async def supervisors(self) -> list[Recipient]:
        ...

    async def guardians_of(self, student_id: UUID) -> list[Recipient]:
        ...

    async def get_staff(self, staff_id: UUID) -> Optional[Recipient]:
        """Any active handler: nurses, supervisors and admins."""
        ...

    async def describe_student(self, student_id: UUID) -> Optional[StudentInfo]:
        ...


class CacheInvalidator(Protocol):
    async def invalidate(self, incident_id: UUID) -> None:
        ...
