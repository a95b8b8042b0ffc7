"""
Notification Dispatcher.
Turns the intents of a committed transition into per-recipient messages.
Delivery is best-effort: a failure is reported, never raised, and never
undoes the transition that caused it.
"""
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .channels import NotificationChannel
from .intents import Audience, NotificationIntent
from .messages import render
from .reporter import FailureReporter, LoggingFailureReporter
from ..database.base import utcnow
from ..incidents.collaborators import Recipient, StaffDirectory, StaffRef
from ..incidents.errors import NotificationDeliveryError
from ..schemas.incident import Incident
from ..schemas.notification import DeliveryResult

logger = logging.getLogger("infirmary.notifier")


class NotificationDispatcher:
    def __init__(
        self,
        channel: NotificationChannel,
        directory: StaffDirectory,
        reporter: Optional[FailureReporter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.channel = channel
        self.directory = directory
        self.reporter = reporter or LoggingFailureReporter()
        self.clock = clock

    async def _recipients(self, incident: Incident, intent: NotificationIntent) -> list[Recipient]:
        if intent.audience == Audience.GUARDIANS:
            candidates = await self.directory.guardians_of(incident.student_id)
        elif intent.audience == Audience.STAFF:
            candidates = await self.directory.active_staff()
        elif intent.audience == Audience.SUPERVISORS:
            candidates = await self.directory.supervisors()
        else:
            target = await self.directory.get_staff(intent.target_id) if intent.target_id else None
            candidates = [target] if target else []

        seen = set()
        recipients = []
        for r in candidates:
            if r.id in intent.exclude or r.id in seen:
                continue
            seen.add(r.id)
            recipients.append(r)
        return recipients

    async def execute(self, incident: Incident, intents: Iterable[NotificationIntent],
                      actor: Optional[StaffRef] = None) -> list[DeliveryResult]:
        results: list[DeliveryResult] = []
        intents = list(intents)
        if not intents:
            return results

        try:
            student = await self.directory.describe_student(incident.student_id)
        except Exception as e:
            logger.error(f"Could not describe student {incident.student_id}: {e}")
            student = None

        now = self.clock()
        for intent in intents:
            try:
                recipients = await self._recipients(incident, intent)
            except Exception as e:
                logger.error(
                    f"Could not resolve {intent.audience} recipients for {incident.code} ({intent.transition}): {e}",
                    exc_info=True,
                )
                continue

            if not recipients:
                logger.info(f"No {intent.audience} recipients for {incident.code} ({intent.transition})")
                continue

            payload = render(incident, intent, student, actor, now)
            for recipient in recipients:
                result = await self._deliver(recipient, payload, intent.requires_ack)
                if not result.delivered:
                    await self._report(NotificationDeliveryError(recipient.id, incident.id, result.error or "unknown"))
                results.append(result)

        delivered = sum(1 for r in results if r.delivered)
        logger.info(f"Incident {incident.code}: delivered {delivered}/{len(results)} notifications")
        return results

    async def _deliver(self, recipient: Recipient, payload, requires_ack: bool) -> DeliveryResult:
        try:
            return await self.channel.dispatch(recipient, payload, requires_ack)
        except Exception as e:
            return DeliveryResult(recipient_id=recipient.id, delivered=False, error=str(e))

    async def _report(self, error: NotificationDeliveryError) -> None:
        try:
            await self.reporter.report(error)
        except Exception as e:
            logger.error(f"Failure reporter raised while reporting '{error}': {e}")
