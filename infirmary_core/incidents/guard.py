import logging
from typing import Optional

from .collaborators import StaffDirectory
from .errors import AlreadyOwnedError
from .repository import IncidentRepository
from .state_machine import Transition, ensure_not_terminal
from ..schemas.incident import Incident

logger = logging.getLogger("infirmary.guard")


class OwnershipGuard:
    """
    Claim discipline for self-assignment.
    The claim is a single conditional update on (pending, owner IS NULL);
    exactly one concurrent caller can match it. Everybody else is told who
    won and since when.
    """

    def __init__(self, repository: IncidentRepository, directory: Optional[StaffDirectory] = None):
        self.repository = repository
        self.directory = directory

    async def claim(self, transition: Transition) -> None:
        incident_id = transition.after.id
        if await self.repository.try_conditional_update(incident_id, transition.expected, transition.changes):
            logger.info(f"Incident {incident_id} claimed by {transition.after.owner_id}")
            return

        current = await self.repository.load(incident_id)
        # Lost to a completion or cancellation rather than to another claim
        ensure_not_terminal(current)
        logger.info(f"Claim on {incident_id} by {transition.after.owner_id} lost to {current.owner_id}")
        raise await self.already_owned(current)

    async def already_owned(self, current: Incident) -> AlreadyOwnedError:
        return AlreadyOwnedError(
            current.id, current.owner_id, current.assigned_at,
            owner_name=await self._owner_name(current.owner_id),
        )

    async def _owner_name(self, owner_id) -> Optional[str]:
        if owner_id is None or self.directory is None:
            return None
        owner = await self.directory.get_staff(owner_id)
        return owner.full_name if owner and owner.full_name else None
