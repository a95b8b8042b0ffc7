import json
import logging
from typing import Protocol

from ..incidents.errors import NotificationDeliveryError
from ..messaging.nats_client import NATSClient

logger = logging.getLogger("infirmary.notifier.reporter")


class FailureReporter(Protocol):
    async def report(self, error: NotificationDeliveryError) -> None:
        ...


class LoggingFailureReporter:
    async def report(self, error: NotificationDeliveryError) -> None:
        logger.warning(
            str(error),
            extra={"recipient_id": str(error.recipient_id), "incident_id": str(error.incident_id)},
        )


class NatsFailureReporter:
    """Forwards delivery failures to the observability subject; logs when that fails too."""

    def __init__(self, client: NATSClient, subject: str):
        self.client = client
        self.subject = subject
        self._fallback = LoggingFailureReporter()

    async def report(self, error: NotificationDeliveryError) -> None:
        event = {
            "type": "notification_delivery_failed",
            "recipient_id": str(error.recipient_id),
            "incident_id": str(error.incident_id),
            "reason": error.reason,
        }
        try:
            await self.client.publish(self.subject, json.dumps(event).encode())
        except Exception as e:
            logger.error(f"Could not publish delivery failure to {self.subject}: {e}")
            await self._fallback.report(error)
