from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from ..notifier.intents import TransitionKind


class NotificationPayload(BaseModel):
    """What a single recipient receives."""
    incident_id: UUID
    incident_code: str
    transition: TransitionKind
    title: str
    body: str
    urgent: bool = False
    requires_ack: bool = False
    created_at: datetime
    expires_at: datetime


class DeliveryResult(BaseModel):
    recipient_id: UUID
    delivered: bool
    error: Optional[str] = None
