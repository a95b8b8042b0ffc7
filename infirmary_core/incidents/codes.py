import logging
import uuid
from datetime import datetime

from .repository import IncidentRepository

logger = logging.getLogger("infirmary.codes")


class IncidentCodeGenerator:
    """
    Human readable incident codes: <PREFIX>-<yyMMdd>-<NNNNNN>.
    The sequence restarts every day. Uniqueness is enforced by the unique
    index on the code column; the engine retries on collision.
    """

    def __init__(self, repository: IncidentRepository, prefix: str = "HE"):
        self.repository = repository
        self.prefix = prefix

    def _day_prefix(self, now: datetime) -> str:
        return f"{self.prefix}-{now:%y%m%d}"

    async def next_code(self, now: datetime) -> str:
        day_prefix = self._day_prefix(now)
        try:
            codes = await self.repository.codes_with_prefix(f"{day_prefix}-")
            highest = 0
            for code in codes:
                parts = code.split("-")
                if len(parts) == 3 and parts[2].isdigit():
                    highest = max(highest, int(parts[2]))
            code = f"{day_prefix}-{highest + 1:06d}"
            logger.debug(f"Generated incident code {code}")
            return code
        except Exception as e:
            logger.error(f"Error generating incident code: {e}", exc_info=True)
            return self.fallback_code(now)

    def fallback_code(self, now: datetime) -> str:
        code = f"{self._day_prefix(now)}-{uuid.uuid4().hex[:6].upper()}"
        logger.warning(f"Using fallback incident code {code}")
        return code
