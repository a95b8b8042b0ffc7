import logging
from typing import Protocol
from uuid import UUID

from ..incidents.collaborators import Recipient
from ..messaging.nats_client import NATSClient
from ..schemas.notification import DeliveryResult, NotificationPayload

logger = logging.getLogger("infirmary.notifier.channel")


class NotificationChannel(Protocol):
    async def dispatch(self, recipient: Recipient, payload: NotificationPayload,
                       requires_ack: bool) -> DeliveryResult:
        ...


class NatsNotificationChannel:
    """
    Publishes one message per recipient on <prefix>.<recipient_id>.
    E-mail/push gateways subscribe downstream; acknowledgement tracking is theirs.
    """

    def __init__(self, client: NATSClient, subject_prefix: str):
        self.client = client
        self.subject_prefix = subject_prefix

    async def dispatch(self, recipient: Recipient, payload: NotificationPayload,
                       requires_ack: bool) -> DeliveryResult:
        subject = f"{self.subject_prefix}.{recipient.id}"
        message = payload.model_copy(update={"requires_ack": requires_ack})
        try:
            await self.client.publish(subject, message.model_dump_json().encode())
        except Exception as e:
            logger.error(f"Failed to publish {payload.transition} for {payload.incident_code} to {subject}: {e}")
            return DeliveryResult(recipient_id=recipient.id, delivered=False, error=str(e))
        return DeliveryResult(recipient_id=recipient.id, delivered=True)


class InMemoryNotificationChannel:
    """Keeps every message in `sent`. Recipients in `unreachable` always fail."""

    def __init__(self, unreachable: set[UUID] | None = None):
        self.sent: list[tuple[Recipient, NotificationPayload, bool]] = []
        self.unreachable = unreachable or set()

    async def dispatch(self, recipient: Recipient, payload: NotificationPayload,
                       requires_ack: bool) -> DeliveryResult:
        if recipient.id in self.unreachable:
            return DeliveryResult(recipient_id=recipient.id, delivered=False, error="recipient unreachable")
        self.sent.append((recipient, payload, requires_ack))
        return DeliveryResult(recipient_id=recipient.id, delivered=True)

    def sent_to(self, recipient_id: UUID) -> list[NotificationPayload]:
        return [payload for r, payload, _ in self.sent if r.id == recipient_id]
