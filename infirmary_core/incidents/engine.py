"""
Incident Engine.
Orchestrates every workflow operation:

    load -> pure transition -> conditional update -> invalidate cache -> notify

The conditional update is the commit point. Everything before it can be
retried or cancelled without effect; everything after it is best-effort and
runs outside the caller's timeout.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from . import state_machine
from .classifier import check_compatibility, classify
from .codes import IncidentCodeGenerator
from .collaborators import (
    CacheInvalidator,
    ConditionRegistry,
    IdentityProvider,
    StaffDirectory,
    StaffRef,
)
from .errors import (
    AlreadyOwnedError,
    ConcurrentModificationError,
    InvalidAssigneeError,
    PermissionDeniedError,
    UsageHistoryError,
)
from .guard import OwnershipGuard
from .repository import DuplicateCodeError, IncidentRepository
from .state_machine import Transition
from ..config import settings
from ..database.base import utcnow
from ..notifier.dispatcher import NotificationDispatcher
from ..schemas.incident import (
    CompletionReport,
    Incident,
    IncidentCreate,
    IncidentRevision,
)

logger = logging.getLogger("infirmary.engine")

TransitionBuilder = Callable[[Incident], Awaitable[Transition]]


class IncidentEngine:
    def __init__(
        self,
        repository: IncidentRepository,
        conditions: ConditionRegistry,
        directory: StaffDirectory,
        dispatcher: NotificationDispatcher,
        codes: Optional[IncidentCodeGenerator] = None,
        cache: Optional[CacheInvalidator] = None,
        clock: Callable[[], datetime] = utcnow,
        retries: int = settings.TRANSITION_RETRIES,
        timeout: float = settings.OPERATION_TIMEOUT,
    ):
        self.repository = repository
        self.conditions = conditions
        self.directory = directory
        self.dispatcher = dispatcher
        self.codes = codes or IncidentCodeGenerator(repository, settings.INCIDENT_CODE_PREFIX)
        self.cache = cache
        self.clock = clock
        self.retries = retries
        self.timeout = timeout
        self.guard = OwnershipGuard(repository, directory)

    # ------------------------------------------------------------------
    # Commit and post-commit plumbing
    # ------------------------------------------------------------------

    async def _commit(self, incident_id: UUID, build: TransitionBuilder) -> Transition:
        """
        Compare-and-swap loop. A miss means someone else committed first, so
        the transition is rebuilt from the fresh snapshot; if the new state no
        longer allows it, the rebuild raises the appropriate workflow error.
        """
        for attempt in range(1, self.retries + 1):
            current = await self.repository.load(incident_id)
            transition = await build(current)
            if await self.repository.try_conditional_update(incident_id, transition.expected, transition.changes):
                return transition
            logger.info(f"Incident {incident_id} changed during {transition.kind} (attempt {attempt}/{self.retries})")
        raise ConcurrentModificationError(incident_id, self.retries)

    async def _after_commit(self, transition: Transition, actor: Optional[StaffRef]) -> None:
        incident = transition.after
        if self.cache is not None:
            try:
                await self.cache.invalidate(incident.id)
            except Exception as e:
                logger.error(f"Cache invalidation for {incident.id} failed: {e}")
        await self.dispatcher.execute(incident, transition.intents, actor)

    def _budget(self, timeout: Optional[float]) -> float:
        return self.timeout if timeout is None else timeout

    async def _require_supervisor(self, identity: IdentityProvider, actor: StaffRef,
                                  action: str, incident_id: Optional[UUID] = None) -> None:
        if not await identity.has_supervisor_privilege(actor):
            logger.warning(f"Staff {actor.id} attempted to {action} without supervisor privilege")
            raise PermissionDeniedError(f"Only supervisors may {action}", incident_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, incident_id: UUID) -> Incident:
        return await self.repository.load(incident_id)

    async def classify_and_create(self, attrs: IncidentCreate, identity: IdentityProvider,
                                  timeout: Optional[float] = None) -> Incident:
        reporter = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            await check_compatibility(attrs.kind, attrs.linked_condition_id, attrs.student_id, self.conditions)

            now = self.clock()
            incident = None
            for attempt in range(1, self.retries + 1):
                # Last attempt skips the sequence in favour of a random suffix
                if attempt < self.retries:
                    code = await self.codes.next_code(now)
                else:
                    code = self.codes.fallback_code(now)
                incident = classify(attrs, reporter, code, now)
                try:
                    await self.repository.save_atomic(incident, attrs.medical_item_usages)
                    break
                except DuplicateCodeError:
                    logger.warning(f"Incident code {code} already taken (attempt {attempt}/{self.retries})")
            else:
                raise ConcurrentModificationError(incident.id, self.retries)

        logger.info(
            f"Incident {incident.code} created by {reporter.id}: kind={incident.kind} "
            f"emergency={incident.is_emergency} status={incident.status} items_used={len(attrs.medical_item_usages)}"
        )
        await self._after_commit(state_machine.created(incident), reporter)
        return incident

    async def self_assign(self, incident_id: UUID, identity: IdentityProvider,
                          timeout: Optional[float] = None) -> Incident:
        staff = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            current = await self.repository.load(incident_id)
            try:
                transition = state_machine.self_assign(current, staff, self.clock())
            except AlreadyOwnedError:
                raise await self.guard.already_owned(current) from None
            await self.guard.claim(transition)
            # The claim is not version-guarded, so read back what was committed
            incident = await self.repository.load(incident_id)

        await self._after_commit(transition, staff)
        return incident

    async def supervisor_assign(self, incident_id: UUID, staff_id: UUID, identity: IdentityProvider,
                                timeout: Optional[float] = None) -> Incident:
        supervisor = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            await self._require_supervisor(identity, supervisor, "assign incidents", incident_id)
            recipient = await self.directory.get_staff(staff_id)
            if recipient is None:
                raise InvalidAssigneeError(f"Staff {staff_id} is not active medical staff", incident_id)
            assignee = StaffRef(id=recipient.id, full_name=recipient.full_name)

            async def build(current: Incident) -> Transition:
                return state_machine.supervisor_assign(current, assignee, supervisor, self.clock())

            transition = await self._commit(incident_id, build)

        previous = transition.before.owner_id if transition.before else None
        logger.info(f"Incident {incident_id} assigned to {assignee.id} by {supervisor.id} (previous owner {previous})")
        await self._after_commit(transition, supervisor)
        return transition.after

    async def complete(self, incident_id: UUID, report: CompletionReport, identity: IdentityProvider,
                       timeout: Optional[float] = None) -> Incident:
        caller = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            async def build(current: Incident) -> Transition:
                return state_machine.complete(current, caller, report.action_taken, report.outcome, self.clock())

            transition = await self._commit(incident_id, build)

        logger.info(f"Incident {incident_id} completed by {caller.id}")
        await self._after_commit(transition, caller)
        return transition.after

    async def revise(self, incident_id: UUID, revision: IncidentRevision, identity: IdentityProvider,
                     timeout: Optional[float] = None) -> Incident:
        reviser = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            async def build(current: Incident) -> Transition:
                transition = state_machine.revise(current, reviser, revision, self.clock())
                if "kind" in transition.changes or "linked_condition_id" in transition.changes:
                    after = transition.after
                    await check_compatibility(after.kind, after.linked_condition_id, after.student_id, self.conditions)
                return transition

            transition = await self._commit(incident_id, build)

        logger.info(f"Incident {incident_id} revised by {reviser.id}: {sorted(transition.changes)}")
        await self._after_commit(transition, reviser)
        return transition.after

    async def revise_emergency_flag(self, incident_id: UUID, is_emergency: bool, identity: IdentityProvider,
                                    timeout: Optional[float] = None) -> Incident:
        return await self.revise(incident_id, IncidentRevision(is_emergency=is_emergency), identity, timeout)

    async def cancel(self, incident_id: UUID, reason: str, identity: IdentityProvider,
                     timeout: Optional[float] = None) -> Incident:
        actor = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            is_supervisor = await identity.has_supervisor_privilege(actor)

            async def build(current: Incident) -> Transition:
                return state_machine.cancel(current, actor, is_supervisor, reason)

            transition = await self._commit(incident_id, build)

        logger.info(f"Incident {incident_id} cancelled by {actor.id}: {reason or 'no reason given'}")
        await self._after_commit(transition, actor)
        return transition.after

    async def delete(self, incident_id: UUID, identity: IdentityProvider,
                     timeout: Optional[float] = None) -> Incident:
        actor = await identity.current_actor()
        async with asyncio.timeout(self._budget(timeout)):
            if await self.repository.has_usage_history(incident_id):
                raise UsageHistoryError(incident_id)

            async def build(current: Incident) -> Transition:
                return state_machine.soft_delete(current)

            transition = await self._commit(incident_id, build)

        logger.info(f"Incident {incident_id} deleted by {actor.id}")
        await self._after_commit(transition, actor)
        return transition.after
