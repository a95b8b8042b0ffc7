"""
Incident workflow errors.
Every state-machine error is raised to the immediate caller; only
notification delivery failures are absorbed (see notifier.dispatcher).
"""
from datetime import datetime
from typing import Optional
from uuid import UUID


class IncidentWorkflowError(Exception):
    """Base class for all incident workflow rejections."""

    def __init__(self, message: str, incident_id: Optional[UUID] = None):
        super().__init__(message)
        self.message = message
        self.incident_id = incident_id


class IncidentNotFoundError(IncidentWorkflowError):
    def __init__(self, incident_id: UUID):
        super().__init__(f"Incident {incident_id} not found", incident_id)


class CompatibilityError(IncidentWorkflowError):
    """Kind and linked condition do not match, or the condition belongs to another student."""


class AlreadyOwnedError(IncidentWorkflowError):
    """A self-assign lost the race, or the incident already had a handler."""

    def __init__(self, incident_id: UUID, owner_id: Optional[UUID], assigned_at: Optional[datetime],
                 owner_name: Optional[str] = None):
        who = owner_name or (str(owner_id) if owner_id else "another staff member")
        since = f" since {assigned_at.isoformat()}" if assigned_at else ""
        super().__init__(f"Incident {incident_id} is already owned by {who}{since}", incident_id)
        self.owner_id = owner_id
        self.assigned_at = assigned_at


class NotOwnerError(IncidentWorkflowError):
    def __init__(self, incident_id: UUID, caller_id: UUID, owner_id: Optional[UUID]):
        owner = str(owner_id) if owner_id else "nobody"
        super().__init__(
            f"Staff {caller_id} is not the handler of incident {incident_id} (handled by {owner})",
            incident_id,
        )
        self.caller_id = caller_id
        self.owner_id = owner_id


class PermissionDeniedError(IncidentWorkflowError, PermissionError):
    """Caller lacks the privilege the operation requires."""


class InvalidAssigneeError(IncidentWorkflowError):
    """Supervisor tried to assign someone who is not active medical staff."""


class TerminalStateError(IncidentWorkflowError):
    """Mutation attempted on a completed or cancelled incident."""


class AlreadyCompletedError(TerminalStateError):
    def __init__(self, incident_id: UUID, completed_at: Optional[datetime] = None):
        since = f" at {completed_at.isoformat()}" if completed_at else ""
        super().__init__(f"Incident {incident_id} was already completed{since}", incident_id)
        self.completed_at = completed_at


class AlreadyCancelledError(TerminalStateError):
    def __init__(self, incident_id: UUID):
        super().__init__(f"Incident {incident_id} was cancelled", incident_id)


class UsageHistoryError(IncidentWorkflowError):
    def __init__(self, incident_id: UUID):
        super().__init__(
            f"Incident {incident_id} has medication/supply usage history and cannot be deleted",
            incident_id,
        )


class ConcurrentModificationError(IncidentWorkflowError):
    """The record kept changing underneath us for every retry attempt."""

    def __init__(self, incident_id: UUID, attempts: int):
        super().__init__(
            f"Incident {incident_id} was modified concurrently {attempts} times; refresh and retry",
            incident_id,
        )


class NotificationDeliveryError(Exception):
    """
    One recipient could not be notified.
    Reported to observability only; never reverses a committed transition.
    """

    def __init__(self, recipient_id: UUID, incident_id: UUID, reason: str):
        super().__init__(f"Delivery to {recipient_id} for incident {incident_id} failed: {reason}")
        self.recipient_id = recipient_id
        self.incident_id = incident_id
        self.reason = reason
