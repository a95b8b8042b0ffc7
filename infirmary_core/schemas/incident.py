from datetime import datetime
from enum import StrEnum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class IncidentKind(StrEnum):
    INJURY = "injury"
    ILLNESS = "illness"
    ALLERGIC_REACTION = "allergic_reaction"
    FALL = "fall"
    CHRONIC_EPISODE = "chronic_episode"
    OTHER = "other"


class IncidentStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentMethod(StrEnum):
    UNASSIGNED = "unassigned"
    SELF_ASSIGNED = "self_assigned"
    SUPERVISOR_ASSIGNED = "supervisor_assigned"


class ConditionType(StrEnum):
    ALLERGY = "allergy"
    CHRONIC_DISEASE = "chronic_disease"
    MEDICAL_HISTORY = "medical_history"


OWNED_STATUSES = frozenset({IncidentStatus.IN_PROGRESS, IncidentStatus.COMPLETED})
TERMINAL_STATUSES = frozenset({IncidentStatus.COMPLETED, IncidentStatus.CANCELLED})


class Incident(BaseModel):
    """
    Snapshot of one health incident.
    Transitions never mutate a snapshot; they produce a new one via model_copy.
    """
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    code: str
    student_id: UUID
    kind: IncidentKind
    is_emergency: bool = False
    status: IncidentStatus = IncidentStatus.PENDING
    owner_id: Optional[UUID] = None
    assignment_method: AssignmentMethod = AssignmentMethod.UNASSIGNED
    reported_by: UUID
    occurred_at: datetime
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    linked_condition_id: Optional[UUID] = None
    description: str = ""
    location: str = ""
    action_taken: Optional[str] = None
    outcome: Optional[str] = None
    is_deleted: bool = False
    version: int = 1
    created_at: Optional[datetime] = None
    last_escalated_at: Optional[datetime] = None
    last_reminded_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def holds_invariants(self) -> bool:
        """Owner/status coupling, completion timestamps and assignment method consistency."""
        if (self.owner_id is not None) != (self.status in OWNED_STATUSES):
            return False
        if self.status == IncidentStatus.COMPLETED:
            if self.assigned_at is None or self.completed_at is None:
                return False
            if self.assigned_at > self.completed_at:
                return False
        # Unassigned only while pending. The one exception is a record cancelled
        # straight from pending, which was never assigned at all.
        if self.assignment_method == AssignmentMethod.UNASSIGNED:
            if self.status == IncidentStatus.CANCELLED:
                return self.assigned_at is None
            return self.status == IncidentStatus.PENDING
        return self.status != IncidentStatus.PENDING


class MedicalItemUse(BaseModel):
    """Medication or supply given while the incident was being handled."""
    item_name: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    notes: str = ""
    used_at: Optional[datetime] = None


class IncidentCreate(BaseModel):
    """Attributes supplied by the reporting staff member."""
    student_id: UUID
    kind: IncidentKind
    is_emergency: bool = False
    occurred_at: Optional[datetime] = None
    linked_condition_id: Optional[UUID] = None
    description: str = ""
    location: str = ""
    medical_item_usages: list[MedicalItemUse] = Field(default_factory=list)


class IncidentRevision(BaseModel):
    """Partial update; unset fields keep their current value."""
    kind: Optional[IncidentKind] = None
    is_emergency: Optional[bool] = None
    linked_condition_id: Optional[UUID] = None
    clear_linked_condition: bool = False
    description: Optional[str] = None
    location: Optional[str] = None


class EmergencyFlag(BaseModel):
    is_emergency: bool


class SupervisorAssignment(BaseModel):
    staff_id: UUID


class CompletionReport(BaseModel):
    action_taken: str = Field(min_length=1)
    outcome: str = Field(min_length=1)


class CancellationRequest(BaseModel):
    reason: str = ""
