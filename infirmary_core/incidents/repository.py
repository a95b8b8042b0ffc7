"""
Incident persistence.

Every state change is committed as one conditional update: the caller
states what it expects the row to look like (ExpectedState) and learns
whether the row still matched. Nothing is written when it did not.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import IncidentNotFoundError
from .state_machine import ExpectedState
from ..database.base import utcnow
from ..models.incident import IncidentRecord
from ..models.item_usage import MedicalItemUsage
from ..schemas.incident import Incident, IncidentStatus, MedicalItemUse

logger = logging.getLogger("infirmary.repository")


class DuplicateCodeError(Exception):
    """Another incident already holds this code."""


class IncidentRepository(Protocol):
    async def load(self, incident_id: UUID) -> Incident:
        ...

    async def try_conditional_update(self, incident_id: UUID, expected: ExpectedState,
                                     changes: dict[str, Any]) -> bool:
        ...

    async def save_atomic(self, incident: Incident, item_usages: Sequence[MedicalItemUse] = ()) -> None:
        ...

    async def has_usage_history(self, incident_id: UUID) -> bool:
        ...

    async def codes_with_prefix(self, prefix: str) -> list[str]:
        ...

    async def stale_pending(self, created_before: datetime, escalated_before: datetime) -> list[Incident]:
        ...

    async def long_running(self, assigned_before: datetime, reminded_before: datetime) -> list[Incident]:
        ...

    async def mark_escalated(self, incident_id: UUID, at: datetime) -> None:
        ...

    async def mark_reminded(self, incident_id: UUID, at: datetime) -> None:
        ...


def build_conditional_update(incident_id: UUID, expected: ExpectedState, changes: dict[str, Any]):
    """
    UPDATE health_incidents SET <changes>, version = version + 1
    WHERE id = :id AND NOT is_deleted AND status IN (...) [AND owner ...] [AND version = :v]
    """
    conditions = [
        IncidentRecord.id == incident_id,
        IncidentRecord.is_deleted.is_(False),
        IncidentRecord.status.in_(sorted(expected.statuses)),
    ]
    if expected.match_owner:
        if expected.owner_id is None:
            conditions.append(IncidentRecord.owner_id.is_(None))
        else:
            conditions.append(IncidentRecord.owner_id == expected.owner_id)
    if expected.version is not None:
        conditions.append(IncidentRecord.version == expected.version)

    return (
        update(IncidentRecord)
        .where(*conditions)
        .values(**changes, version=IncidentRecord.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def build_usage_rows(incident: Incident, item_usages: Sequence[MedicalItemUse]) -> list[MedicalItemUsage]:
    used_at = incident.created_at or incident.occurred_at
    return [
        MedicalItemUsage(
            incident_id=incident.id,
            item_name=usage.item_name,
            quantity=usage.quantity,
            notes=usage.notes or None,
            used_at=usage.used_at or used_at,
        )
        for usage in item_usages
    ]


class SqlIncidentRepository:
    """
    PostgreSQL-backed repository.
    Each call runs in its own transaction; the conditional update is the
    only statement in its transaction, so it commits whole or not at all.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def load(self, incident_id: UUID) -> Incident:
        async with self._session_maker() as session:
            result = await session.execute(
                select(IncidentRecord).where(
                    IncidentRecord.id == incident_id,
                    IncidentRecord.is_deleted.is_(False),
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            raise IncidentNotFoundError(incident_id)
        return Incident.model_validate(record)

    async def try_conditional_update(self, incident_id: UUID, expected: ExpectedState,
                                     changes: dict[str, Any]) -> bool:
        stmt = build_conditional_update(incident_id, expected, changes)
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(stmt)
        matched = result.rowcount == 1
        if not matched:
            logger.debug(f"Conditional update on {incident_id} matched no row (expected={expected})")
        return matched

    async def save_atomic(self, incident: Incident, item_usages: Sequence[MedicalItemUse] = ()) -> None:
        """Insert the incident together with any items used on it, in one transaction."""
        record = IncidentRecord(**incident.model_dump())
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.merge(record)
                    session.add_all(build_usage_rows(incident, item_usages))
        except IntegrityError as e:
            if "code" in str(e.orig):
                raise DuplicateCodeError(incident.code) from e
            raise

    async def has_usage_history(self, incident_id: UUID) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                select(
                    exists().where(
                        MedicalItemUsage.incident_id == incident_id,
                        MedicalItemUsage.is_deleted.is_(False),
                    )
                )
            )
            return bool(result.scalar())

    async def codes_with_prefix(self, prefix: str) -> list[str]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(IncidentRecord.code).where(IncidentRecord.code.startswith(prefix))
            )
            return list(result.scalars().all())

    async def stale_pending(self, created_before: datetime, escalated_before: datetime) -> list[Incident]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(IncidentRecord).where(
                    IncidentRecord.status == IncidentStatus.PENDING,
                    IncidentRecord.owner_id.is_(None),
                    IncidentRecord.is_deleted.is_(False),
                    IncidentRecord.created_at <= created_before,
                    (IncidentRecord.last_escalated_at.is_(None))
                    | (IncidentRecord.last_escalated_at <= escalated_before),
                )
            )
            return [Incident.model_validate(r) for r in result.scalars().all()]

    async def long_running(self, assigned_before: datetime, reminded_before: datetime) -> list[Incident]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(IncidentRecord).where(
                    IncidentRecord.status == IncidentStatus.IN_PROGRESS,
                    IncidentRecord.is_deleted.is_(False),
                    IncidentRecord.assigned_at <= assigned_before,
                    (IncidentRecord.last_reminded_at.is_(None))
                    | (IncidentRecord.last_reminded_at <= reminded_before),
                )
            )
            return [Incident.model_validate(r) for r in result.scalars().all()]

    async def mark_escalated(self, incident_id: UUID, at: datetime) -> None:
        await self._touch(incident_id, last_escalated_at=at)

    async def mark_reminded(self, incident_id: UUID, at: datetime) -> None:
        await self._touch(incident_id, last_reminded_at=at)

    async def _touch(self, incident_id: UUID, **values) -> None:
        # Bookkeeping only: does not bump version, so it never fails a transition.
        async with self._session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(IncidentRecord)
                    .where(IncidentRecord.id == incident_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )


class InMemoryIncidentRepository:
    """
    Single-process repository.
    A per-incident asyncio.Lock plus the ExpectedState compare-and-swap
    gives the same guarantee as the SQL conditional update. Locks are keyed
    by incident id, so unrelated incidents never wait on each other.
    """

    def __init__(self):
        self._records: dict[UUID, Incident] = {}
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._usage: dict[UUID, list[MedicalItemUse]] = {}

    async def load(self, incident_id: UUID) -> Incident:
        # Yield like a real I/O call would, so concurrent callers interleave.
        await asyncio.sleep(0)
        record = self._records.get(incident_id)
        if record is None or record.is_deleted:
            raise IncidentNotFoundError(incident_id)
        return record

    async def try_conditional_update(self, incident_id: UUID, expected: ExpectedState,
                                     changes: dict[str, Any]) -> bool:
        async with self._locks[incident_id]:
            current = self._records.get(incident_id)
            if current is None or current.is_deleted or not expected.matches(current):
                return False
            self._records[incident_id] = current.model_copy(
                update={**changes, "version": current.version + 1}
            )
            return True

    async def save_atomic(self, incident: Incident, item_usages: Sequence[MedicalItemUse] = ()) -> None:
        async with self._locks[incident.id]:
            if any(r.code == incident.code and r.id != incident.id for r in self._records.values()):
                raise DuplicateCodeError(incident.code)
            self._records[incident.id] = incident
            if item_usages:
                self._usage.setdefault(incident.id, []).extend(item_usages)

    async def has_usage_history(self, incident_id: UUID) -> bool:
        return bool(self._usage.get(incident_id))

    async def codes_with_prefix(self, prefix: str) -> list[str]:
        return [r.code for r in self._records.values() if r.code.startswith(prefix)]

    async def stale_pending(self, created_before: datetime, escalated_before: datetime) -> list[Incident]:
        return [
            r for r in self._records.values()
            if r.status == IncidentStatus.PENDING
            and r.owner_id is None
            and not r.is_deleted
            and r.created_at is not None and r.created_at <= created_before
            and (r.last_escalated_at is None or r.last_escalated_at <= escalated_before)
        ]

    async def long_running(self, assigned_before: datetime, reminded_before: datetime) -> list[Incident]:
        return [
            r for r in self._records.values()
            if r.status == IncidentStatus.IN_PROGRESS
            and not r.is_deleted
            and r.assigned_at is not None and r.assigned_at <= assigned_before
            and (r.last_reminded_at is None or r.last_reminded_at <= reminded_before)
        ]

    async def mark_escalated(self, incident_id: UUID, at: datetime) -> None:
        async with self._locks[incident_id]:
            self._records[incident_id] = self._records[incident_id].model_copy(update={"last_escalated_at": at})

    async def mark_reminded(self, incident_id: UUID, at: datetime) -> None:
        async with self._locks[incident_id]:
            self._records[incident_id] = self._records[incident_id].model_copy(update={"last_reminded_at": at})
