"""
Assignment state machine.

Pure functions: each takes the current snapshot and returns a Transition
(new snapshot, the conditional-update contract to commit it with, and the
notification intents to run after commit) or raises a workflow error.
Nothing here touches storage, the clock or the network.

    pending --self_assign/supervisor_assign--> in_progress --complete--> completed
    pending|in_progress --cancel--> cancelled
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from .collaborators import StaffRef
from .errors import (
    AlreadyCancelledError,
    AlreadyCompletedError,
    AlreadyOwnedError,
    NotOwnerError,
    PermissionDeniedError,
)
from ..notifier.intents import Audience, NotificationIntent, TransitionKind
from ..schemas.incident import (
    AssignmentMethod,
    Incident,
    IncidentRevision,
    IncidentStatus,
)

ACTIVE_STATUSES = frozenset({IncidentStatus.PENDING, IncidentStatus.IN_PROGRESS})
ANY_STATUS = frozenset(IncidentStatus)


@dataclass(frozen=True)
class ExpectedState:
    """
    The WHERE clause of a conditional update.
    match_owner with owner_id=None means "owner IS NULL".
    """
    statuses: frozenset[IncidentStatus]
    owner_id: Optional[UUID] = None
    match_owner: bool = False
    version: Optional[int] = None

    def matches(self, incident: Incident) -> bool:
        if incident.status not in self.statuses:
            return False
        if self.match_owner and incident.owner_id != self.owner_id:
            return False
        if self.version is not None and incident.version != self.version:
            return False
        return True


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    before: Optional[Incident]
    after: Incident
    expected: Optional[ExpectedState] = None
    changes: dict[str, Any] = field(default_factory=dict)
    intents: tuple[NotificationIntent, ...] = ()


def ensure_not_terminal(incident: Incident) -> None:
    if incident.status == IncidentStatus.COMPLETED:
        raise AlreadyCompletedError(incident.id, incident.completed_at)
    if incident.status == IncidentStatus.CANCELLED:
        raise AlreadyCancelledError(incident.id)


def _transition(kind, incident, expected, changes, intents) -> Transition:
    after = incident.model_copy(update={**changes, "version": incident.version + 1})
    return Transition(
        kind=kind,
        before=incident,
        after=after,
        expected=expected,
        changes=changes,
        intents=tuple(intents),
    )


def _emergency_alerts(kind: TransitionKind, handler_id: Optional[UUID]) -> list[NotificationIntent]:
    """Guardian must acknowledge; every other nurse is told someone is on it."""
    exclude = frozenset({handler_id}) if handler_id else frozenset()
    return [
        NotificationIntent(kind, Audience.GUARDIANS, urgent=True, requires_ack=True),
        NotificationIntent(kind, Audience.STAFF, urgent=True, exclude=exclude),
    ]


def created(incident: Incident) -> Transition:
    """Intents for a freshly classified incident."""
    if incident.is_emergency:
        intents = _emergency_alerts(TransitionKind.CREATED, incident.owner_id)
    else:
        intents = [NotificationIntent(TransitionKind.CREATED, Audience.GUARDIANS)]
    return Transition(kind=TransitionKind.CREATED, before=None, after=incident, intents=tuple(intents))


def self_assign(incident: Incident, staff: StaffRef, now: datetime) -> Transition:
    ensure_not_terminal(incident)
    if incident.owner_id is not None:
        raise AlreadyOwnedError(incident.id, incident.owner_id, incident.assigned_at)

    changes = {
        "owner_id": staff.id,
        "assignment_method": AssignmentMethod.SELF_ASSIGNED,
        "status": IncidentStatus.IN_PROGRESS,
        "assigned_at": now,
    }
    # The claim is guarded on the unowned pending state itself, not the version,
    # so an unrelated edit never makes a claim fail.
    expected = ExpectedState(statuses=frozenset({IncidentStatus.PENDING}), owner_id=None, match_owner=True)
    intents = [
        NotificationIntent(
            TransitionKind.SELF_ASSIGNED, Audience.STAFF,
            urgent=incident.is_emergency, exclude=frozenset({staff.id}),
        ),
    ]
    return _transition(TransitionKind.SELF_ASSIGNED, incident, expected, changes, intents)


def supervisor_assign(incident: Incident, assignee: StaffRef, supervisor: StaffRef, now: datetime) -> Transition:
    """Explicit override: replaces any current owner, self-assigned or not."""
    ensure_not_terminal(incident)

    changes = {
        "owner_id": assignee.id,
        "assignment_method": AssignmentMethod.SUPERVISOR_ASSIGNED,
        "status": IncidentStatus.IN_PROGRESS,
        "assigned_at": now,
    }
    expected = ExpectedState(statuses=ACTIVE_STATUSES, version=incident.version)
    intents = [
        NotificationIntent(
            TransitionKind.SUPERVISOR_ASSIGNED, Audience.STAFF,
            urgent=incident.is_emergency, exclude=frozenset({assignee.id}),
        ),
        NotificationIntent(
            TransitionKind.SUPERVISOR_ASSIGNED, Audience.DIRECT,
            urgent=incident.is_emergency, target_id=assignee.id, note=supervisor.display,
        ),
    ]
    return _transition(TransitionKind.SUPERVISOR_ASSIGNED, incident, expected, changes, intents)


def complete(incident: Incident, caller: StaffRef, action_taken: str, outcome: str, now: datetime) -> Transition:
    # Ownership is checked before status: a non-owner is always rejected as such.
    if incident.owner_id != caller.id:
        raise NotOwnerError(incident.id, caller.id, incident.owner_id)
    ensure_not_terminal(incident)

    completed_at = max(now, incident.assigned_at) if incident.assigned_at else now
    changes = {
        "status": IncidentStatus.COMPLETED,
        "completed_at": completed_at,
        "action_taken": action_taken,
        "outcome": outcome,
    }
    expected = ExpectedState(
        statuses=frozenset({IncidentStatus.IN_PROGRESS}),
        owner_id=caller.id,
        match_owner=True,
        version=incident.version,
    )
    intents = [
        NotificationIntent(
            TransitionKind.COMPLETED, Audience.STAFF,
            exclude=frozenset({caller.id}), note=outcome,
        ),
    ]
    return _transition(TransitionKind.COMPLETED, incident, expected, changes, intents)


def revise(incident: Incident, reviser: StaffRef, revision: IncidentRevision, now: datetime) -> Transition:
    """
    Apply a partial update. Compatibility of the resulting kind/condition
    pair is checked by the caller beforehand (it needs the registry).

    Escalation of an unowned pending incident assigns it to the reviser.
    De-escalation keeps whoever is already handling it.
    """
    ensure_not_terminal(incident)

    changes: dict[str, Any] = {}
    if revision.kind is not None and revision.kind != incident.kind:
        changes["kind"] = revision.kind
    if revision.clear_linked_condition:
        if incident.linked_condition_id is not None:
            changes["linked_condition_id"] = None
    elif revision.linked_condition_id is not None and revision.linked_condition_id != incident.linked_condition_id:
        changes["linked_condition_id"] = revision.linked_condition_id
    if revision.description is not None and revision.description != incident.description:
        changes["description"] = revision.description
    if revision.location is not None and revision.location != incident.location:
        changes["location"] = revision.location

    was_emergency = incident.is_emergency
    is_emergency = was_emergency if revision.is_emergency is None else revision.is_emergency
    if is_emergency != was_emergency:
        changes["is_emergency"] = is_emergency

    intents: list[NotificationIntent] = []
    kind = TransitionKind.DETAILS_UPDATED

    if is_emergency and not was_emergency:
        kind = TransitionKind.ESCALATED
        handler_id = incident.owner_id
        if incident.owner_id is None and incident.status == IncidentStatus.PENDING:
            changes.update(
                owner_id=reviser.id,
                assignment_method=AssignmentMethod.SELF_ASSIGNED,
                status=IncidentStatus.IN_PROGRESS,
                assigned_at=now,
            )
            handler_id = reviser.id
        intents.extend(_emergency_alerts(TransitionKind.ESCALATED, handler_id))
    elif was_emergency and not is_emergency:
        kind = TransitionKind.DOWNGRADED
        intents.append(NotificationIntent(TransitionKind.DOWNGRADED, Audience.GUARDIANS))
    elif "kind" in changes:
        kind = TransitionKind.KIND_CHANGED
        intents.append(
            NotificationIntent(
                TransitionKind.KIND_CHANGED, Audience.GUARDIANS,
                note=f"{incident.kind.value} -> {changes['kind'].value}",
            )
        )

    expected = ExpectedState(statuses=ACTIVE_STATUSES, version=incident.version)
    return _transition(kind, incident, expected, changes, intents)


def revise_emergency_flag(incident: Incident, reviser: StaffRef, is_emergency: bool, now: datetime) -> Transition:
    return revise(incident, reviser, IncidentRevision(is_emergency=is_emergency), now)


def cancel(incident: Incident, actor: StaffRef, is_supervisor: bool, reason: str) -> Transition:
    ensure_not_terminal(incident)
    if not is_supervisor and incident.owner_id != actor.id:
        raise PermissionDeniedError(
            f"Only a supervisor or the current handler may cancel incident {incident.id}", incident.id
        )

    # Cancelled incidents have no handler; assignment_method keeps its history.
    changes = {"status": IncidentStatus.CANCELLED, "owner_id": None}
    expected = ExpectedState(statuses=ACTIVE_STATUSES, version=incident.version)
    intents = [NotificationIntent(TransitionKind.CANCELLED, Audience.GUARDIANS, note=reason)]
    if incident.owner_id is not None and incident.owner_id != actor.id:
        intents.append(
            NotificationIntent(TransitionKind.CANCELLED, Audience.DIRECT, target_id=incident.owner_id, note=reason)
        )
    return _transition(TransitionKind.CANCELLED, incident, expected, changes, intents)


def soft_delete(incident: Incident) -> Transition:
    expected = ExpectedState(statuses=ANY_STATUS, version=incident.version)
    return _transition(TransitionKind.DELETED, incident, expected, {"is_deleted": True}, [])
