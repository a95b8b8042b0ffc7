import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import settings
from ..database.base import utcnow
from ..incidents.repository import IncidentRepository
from ..notifier.dispatcher import NotificationDispatcher
from ..notifier.intents import Audience, NotificationIntent, TransitionKind
from ..service_manager.base_service import BaseService

logger = logging.getLogger("infirmary.escalation")


def _minutes_since(then: Optional[datetime], now: datetime) -> int:
    if then is None:
        return 0
    return int((now - then).total_seconds() // 60)


class EscalationService(BaseService):
    """
    Escalation Service.
    Responsibility: Periodically look for incidents nobody picked up and tell
    the supervisors, and remind handlers whose incidents stay open too long.
    Neither touches incident state; both only notify and record when they did.
    """

    def __init__(
        self,
        repository: IncidentRepository,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
        interval: int = settings.ESCALATION_CHECK_INTERVAL,
    ):
        super().__init__("EscalationService")
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.repository = repository
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval = interval

    async def start(self):
        self._running = True
        logger.info(f"EscalationService started. Check interval: {self.interval}s")
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("EscalationService stopped.")

    async def _sweep_loop(self):
        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error during escalation sweep: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def sweep(self) -> tuple[int, int]:
        """Run one pass. Returns (escalated, reminded) counts."""
        now = self.clock()
        return await self.escalate_stale_pending(now), await self.remind_long_running(now)

    async def escalate_stale_pending(self, now: datetime) -> int:
        stale = await self.repository.stale_pending(
            now - timedelta(seconds=settings.ESCALATION_THRESHOLD),
            now - timedelta(seconds=settings.ESCALATION_REPEAT),
        )
        for incident in stale:
            waited = _minutes_since(incident.created_at, now)
            intent = NotificationIntent(
                TransitionKind.PENDING_ESCALATION, Audience.SUPERVISORS,
                urgent=True, note=f"Waiting for {waited} min.",
            )
            await self.dispatcher.execute(incident, [intent])
            await self.repository.mark_escalated(incident.id, now)
            logger.warning(f"Incident {incident.code} pending for {waited} min, escalated to supervisors")
        return len(stale)

    async def remind_long_running(self, now: datetime) -> int:
        running = await self.repository.long_running(
            now - timedelta(seconds=settings.REMINDER_THRESHOLD),
            now - timedelta(seconds=settings.REMINDER_REPEAT),
        )
        for incident in running:
            elapsed = _minutes_since(incident.assigned_at, now)
            intent = NotificationIntent(
                TransitionKind.REMINDER, Audience.DIRECT,
                urgent=incident.is_emergency, target_id=incident.owner_id,
                note=f"Open for {elapsed} min.",
            )
            await self.dispatcher.execute(incident, [intent])
            await self.repository.mark_reminded(incident.id, now)
            logger.info(f"Reminded {incident.owner_id} about incident {incident.code} ({elapsed} min)")
        return len(running)
