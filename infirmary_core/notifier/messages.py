"""
Notification wording and expiry.
Guardians get plain-language messages about their child; staff and
supervisors get short operational notices.
"""
from datetime import datetime, timedelta
from typing import Optional

from .intents import Audience, NotificationIntent, TransitionKind
from ..config import settings
from ..incidents.collaborators import StaffRef, StudentInfo
from ..schemas.incident import Incident
from ..schemas.notification import NotificationPayload

_KIND_LABELS = {
    "injury": "an injury",
    "illness": "an illness",
    "allergic_reaction": "an allergic reaction",
    "fall": "a fall",
    "chronic_episode": "a chronic condition episode",
    "other": "a health incident",
}


def _ttl_hours(incident: Incident, intent: NotificationIntent) -> int:
    if intent.audience == Audience.GUARDIANS:
        if intent.urgent:
            return settings.GUARDIAN_URGENT_TTL_HOURS
        if intent.transition == TransitionKind.CREATED:
            return settings.GUARDIAN_INFO_TTL_HOURS
        return settings.GUARDIAN_UPDATE_TTL_HOURS

    if intent.transition in (TransitionKind.SELF_ASSIGNED, TransitionKind.SUPERVISOR_ASSIGNED):
        return settings.PEER_TAKEOVER_URGENT_TTL_HOURS if incident.is_emergency else settings.PEER_TAKEOVER_TTL_HOURS
    if intent.transition == TransitionKind.COMPLETED:
        return settings.PEER_COMPLETION_URGENT_TTL_HOURS if incident.is_emergency else settings.PEER_COMPLETION_TTL_HOURS
    return settings.STAFF_BROADCAST_TTL_HOURS


def _guardian_text(incident: Incident, intent: NotificationIntent, student_name: str) -> tuple[str, str]:
    what = _KIND_LABELS.get(incident.kind.value, "a health incident")
    t = intent.transition

    if t in (TransitionKind.CREATED, TransitionKind.ESCALATED) and intent.urgent:
        return (
            f"URGENT: {student_name} needs medical attention",
            f"{student_name} has {what} that is being treated as an emergency by the school nurse. "
            f"Please acknowledge this message and contact the school as soon as possible.",
        )
    if t == TransitionKind.CREATED:
        return (
            f"Health notice for {student_name}",
            f"The school nurse recorded {what} for {student_name} ({incident.code}). "
            f"No immediate action is needed.",
        )
    if t == TransitionKind.DOWNGRADED:
        return (
            f"Update: {student_name} is no longer an emergency",
            f"The incident {incident.code} has been downgraded to a normal case and remains in the nurse's care.",
        )
    if t == TransitionKind.KIND_CHANGED:
        return (
            f"Update on {student_name}'s health incident",
            f"The incident {incident.code} was reclassified ({intent.note}).",
        )
    if t == TransitionKind.CANCELLED:
        reason = f" Reason: {intent.note}" if intent.note else ""
        return (
            f"Health incident for {student_name} closed",
            f"The incident {incident.code} was cancelled.{reason}",
        )
    return f"Update for {student_name}", f"The incident {incident.code} was updated."


def _staff_text(incident: Incident, intent: NotificationIntent, student_name: str,
                actor: Optional[StaffRef]) -> tuple[str, str]:
    who = actor.display if actor else "A colleague"
    t = intent.transition
    ref = f"{incident.code} ({student_name})"

    if t in (TransitionKind.CREATED, TransitionKind.ESCALATED):
        return (
            f"EMERGENCY {ref}",
            f"{who} is handling this emergency. Stand by in case assistance is needed.",
        )
    if t == TransitionKind.SELF_ASSIGNED:
        return f"{ref} taken", f"{who} has taken this incident."
    if t == TransitionKind.SUPERVISOR_ASSIGNED and intent.audience == Audience.DIRECT:
        return f"{ref} assigned to you", f"{intent.note or who} assigned this incident to you."
    if t == TransitionKind.SUPERVISOR_ASSIGNED:
        return f"{ref} reassigned", "A supervisor assigned this incident to another nurse."
    if t == TransitionKind.COMPLETED:
        return f"{ref} completed", f"{who} completed this incident. Outcome: {intent.note}"
    if t == TransitionKind.CANCELLED:
        return f"{ref} cancelled", f"{who} cancelled an incident you were handling. {intent.note}".rstrip()
    if t == TransitionKind.PENDING_ESCALATION:
        return f"Unhandled incident {ref}", f"Nobody has picked up this incident yet. {intent.note}".rstrip()
    if t == TransitionKind.REMINDER:
        return f"Reminder: {ref}", f"This incident is still in progress. {intent.note}".rstrip()
    return f"{ref} updated", f"{who} updated this incident."


def render(incident: Incident, intent: NotificationIntent, student: Optional[StudentInfo],
           actor: Optional[StaffRef], now: datetime) -> NotificationPayload:
    if intent.audience == Audience.GUARDIANS:
        title, body = _guardian_text(incident, intent, student.full_name if student else "your child")
    else:
        title, body = _staff_text(incident, intent, student.full_name if student else "student", actor)

    return NotificationPayload(
        incident_id=incident.id,
        incident_code=incident.code,
        transition=intent.transition,
        title=title,
        body=body,
        urgent=intent.urgent,
        requires_ack=intent.requires_ack,
        created_at=now,
        expires_at=now + timedelta(hours=_ttl_hours(incident, intent)),
    )
