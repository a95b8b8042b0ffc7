"""
Incident Classifier.
Runs once per incident, at creation: gates the kind/linked-condition
combination and decides the initial status and owner.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from .collaborators import ConditionRegistry, StaffRef
from .errors import CompatibilityError
from ..schemas.incident import (
    AssignmentMethod,
    ConditionType,
    Incident,
    IncidentCreate,
    IncidentKind,
    IncidentStatus,
)

logger = logging.getLogger("infirmary.classifier")

_HISTORY_ONLY = frozenset({ConditionType.MEDICAL_HISTORY})

# Which linked-condition types each incident kind may reference
ALLOWED_CONDITION_TYPES: dict[IncidentKind, frozenset[ConditionType]] = {
    IncidentKind.ALLERGIC_REACTION: frozenset({ConditionType.ALLERGY}),
    IncidentKind.CHRONIC_EPISODE: frozenset({ConditionType.CHRONIC_DISEASE}),
    IncidentKind.INJURY: _HISTORY_ONLY,
    IncidentKind.ILLNESS: _HISTORY_ONLY,
    IncidentKind.FALL: _HISTORY_ONLY,
    IncidentKind.OTHER: frozenset(ConditionType),
}

# Kinds that cannot be recorded without a matching condition
REQUIRES_CONDITION = frozenset({IncidentKind.ALLERGIC_REACTION, IncidentKind.CHRONIC_EPISODE})


def _describe(allowed: frozenset[ConditionType]) -> str:
    return " or ".join(sorted(t.value for t in allowed))


async def check_compatibility(
    kind: IncidentKind,
    condition_id: Optional[UUID],
    student_id: UUID,
    registry: ConditionRegistry,
) -> None:
    """
    Raise CompatibilityError unless `condition_id` is acceptable for `kind`
    and belongs to `student_id`. Nothing is persisted either way.
    """
    allowed = ALLOWED_CONDITION_TYPES[kind]

    if condition_id is None:
        if kind in REQUIRES_CONDITION:
            raise CompatibilityError(
                f"A '{kind.value}' incident must be linked to a {_describe(allowed)} condition"
            )
        return

    condition = await registry.get_condition(condition_id)
    if condition is None:
        raise CompatibilityError(f"Linked condition {condition_id} does not exist")

    if condition.student_id != student_id:
        logger.warning(
            f"Condition {condition_id} belongs to student {condition.student_id}, not {student_id}"
        )
        raise CompatibilityError(
            f"Linked condition {condition_id} does not belong to student {student_id}"
        )

    if condition.condition_type not in allowed:
        raise CompatibilityError(
            f"A '{kind.value}' incident can only be linked to a {_describe(allowed)} condition, "
            f"but condition {condition_id} is '{condition.condition_type.value}'"
        )


def classify(attrs: IncidentCreate, reporter: StaffRef, code: str, now: datetime) -> Incident:
    """
    Build the initial incident.
    Emergencies never wait in the queue: the reporter is presumed to be
    handling it already and becomes the self-assigned owner.
    """
    common = dict(
        code=code,
        student_id=attrs.student_id,
        kind=attrs.kind,
        is_emergency=attrs.is_emergency,
        reported_by=reporter.id,
        occurred_at=attrs.occurred_at or now,
        linked_condition_id=attrs.linked_condition_id,
        description=attrs.description,
        location=attrs.location,
        created_at=now,
    )

    if attrs.is_emergency:
        return Incident(
            **common,
            status=IncidentStatus.IN_PROGRESS,
            owner_id=reporter.id,
            assignment_method=AssignmentMethod.SELF_ASSIGNED,
            assigned_at=now,
        )

    return Incident(
        **common,
        status=IncidentStatus.PENDING,
        owner_id=None,
        assignment_method=AssignmentMethod.UNASSIGNED,
        assigned_at=None,
    )
