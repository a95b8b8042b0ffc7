import uuid
from datetime import datetime, timedelta, UTC

import pytest
from sqlalchemy.dialects import postgresql

from infirmary_core.incidents.errors import IncidentNotFoundError
from infirmary_core.incidents.repository import (
    DuplicateCodeError,
    InMemoryIncidentRepository,
    build_conditional_update,
    build_usage_rows,
)
from infirmary_core.incidents.state_machine import ACTIVE_STATUSES, ExpectedState
from infirmary_core.schemas.incident import Incident, IncidentKind, IncidentStatus, MedicalItemUse

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def make_incident(**overrides) -> Incident:
    fields = dict(
        code=f"HE-260314-{uuid.uuid4().hex[:6]}",
        student_id=uuid.uuid4(),
        kind=IncidentKind.OTHER,
        reported_by=uuid.uuid4(),
        occurred_at=NOW,
        created_at=NOW,
    )
    fields.update(overrides)
    return Incident(**fields)


def test_claim_update_requires_unowned_pending_row():
    expected = ExpectedState(statuses=frozenset({IncidentStatus.PENDING}), owner_id=None, match_owner=True)
    sql = compiled(build_conditional_update(uuid.uuid4(), expected, {"owner_id": uuid.uuid4()}))

    assert sql.startswith("UPDATE health_incidents SET")
    assert "health_incidents.owner_id IS NULL" in sql
    assert "health_incidents.is_deleted IS false" in sql
    assert "health_incidents.status IN" in sql
    assert "version=(health_incidents.version + " in sql
    # No version guard on a claim
    assert "health_incidents.version = " not in sql


def test_versioned_update_guards_owner_and_version():
    expected = ExpectedState(statuses=ACTIVE_STATUSES, owner_id=uuid.uuid4(), match_owner=True, version=4)
    sql = compiled(build_conditional_update(uuid.uuid4(), expected, {"status": IncidentStatus.COMPLETED}))

    assert "health_incidents.owner_id = " in sql
    assert "health_incidents.version = " in sql


@pytest.mark.asyncio
async def test_conditional_update_applies_only_on_match():
    repo = InMemoryIncidentRepository()
    incident = make_incident()
    await repo.save_atomic(incident)

    stale = ExpectedState(statuses=ACTIVE_STATUSES, version=incident.version + 1)
    assert not await repo.try_conditional_update(incident.id, stale, {"location": "Gym"})
    assert (await repo.load(incident.id)).location == ""

    fresh = ExpectedState(statuses=ACTIVE_STATUSES, version=incident.version)
    assert await repo.try_conditional_update(incident.id, fresh, {"location": "Gym"})
    stored = await repo.load(incident.id)
    assert stored.location == "Gym"
    assert stored.version == incident.version + 1


@pytest.mark.asyncio
async def test_duplicate_code_is_rejected():
    repo = InMemoryIncidentRepository()
    first = make_incident(code="HE-260314-000001")
    await repo.save_atomic(first)

    with pytest.raises(DuplicateCodeError):
        await repo.save_atomic(make_incident(code="HE-260314-000001"))


@pytest.mark.asyncio
async def test_load_unknown_incident():
    with pytest.raises(IncidentNotFoundError):
        await InMemoryIncidentRepository().load(uuid.uuid4())


@pytest.mark.asyncio
async def test_stale_pending_respects_repeat_window():
    repo = InMemoryIncidentRepository()
    old = make_incident(created_at=NOW - timedelta(minutes=5))
    fresh = make_incident(created_at=NOW)
    await repo.save_atomic(old)
    await repo.save_atomic(fresh)

    found = await repo.stale_pending(NOW - timedelta(seconds=30), NOW - timedelta(minutes=3))
    assert [i.id for i in found] == [old.id]

    await repo.mark_escalated(old.id, NOW)
    assert await repo.stale_pending(NOW - timedelta(seconds=30), NOW - timedelta(minutes=3)) == []
    # Bookkeeping does not count as a modification
    assert (await repo.load(old.id)).version == old.version


def test_usage_rows_default_to_incident_time():
    incident = make_incident()
    given_later = NOW + timedelta(minutes=10)
    rows = build_usage_rows(incident, [
        MedicalItemUse(item_name="Ice pack"),
        MedicalItemUse(item_name="Paracetamol 250mg", quantity=2, notes="After lunch", used_at=given_later),
    ])

    assert [r.incident_id for r in rows] == [incident.id, incident.id]
    assert rows[0].used_at == NOW
    assert rows[0].quantity == 1
    assert rows[0].notes is None
    assert rows[1].used_at == given_later
    assert rows[1].notes == "After lunch"


@pytest.mark.asyncio
async def test_rejected_incident_records_no_usage():
    repo = InMemoryIncidentRepository()
    await repo.save_atomic(make_incident(code="HE-260314-000001"))
    duplicate = make_incident(code="HE-260314-000001")

    with pytest.raises(DuplicateCodeError):
        await repo.save_atomic(duplicate, [MedicalItemUse(item_name="Bandage")])
    assert not await repo.has_usage_history(duplicate.id)
