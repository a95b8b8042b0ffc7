from dataclasses import dataclass
from enum import StrEnum
from typing import Optional
from uuid import UUID


class TransitionKind(StrEnum):
    CREATED = "created"
    SELF_ASSIGNED = "self_assigned"
    SUPERVISOR_ASSIGNED = "supervisor_assigned"
    COMPLETED = "completed"
    ESCALATED = "escalated"            # normal -> emergency
    DOWNGRADED = "downgraded"          # emergency -> normal
    KIND_CHANGED = "kind_changed"
    DETAILS_UPDATED = "details_updated"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    PENDING_ESCALATION = "pending_escalation"  # nobody picked it up in time
    REMINDER = "reminder"                      # handler has been on it a while


class Audience(StrEnum):
    GUARDIANS = "guardians"
    STAFF = "staff"
    SUPERVISORS = "supervisors"
    DIRECT = "direct"


@dataclass(frozen=True)
class NotificationIntent:
    """
    What should be said to whom, decided by a pure transition.
    Recipients are resolved later by the dispatcher.
    """
    transition: TransitionKind
    audience: Audience
    urgent: bool = False
    requires_ack: bool = False
    target_id: Optional[UUID] = None       # only for Audience.DIRECT
    exclude: frozenset[UUID] = frozenset()
    note: str = ""
