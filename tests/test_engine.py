import asyncio
import uuid

import pytest

from infirmary_core.incidents.collaborators import Recipient
from infirmary_core.incidents.engine import IncidentEngine
from infirmary_core.incidents.errors import (
    AlreadyCompletedError,
    AlreadyOwnedError,
    CompatibilityError,
    IncidentNotFoundError,
    InvalidAssigneeError,
    NotOwnerError,
    PermissionDeniedError,
    UsageHistoryError,
)
from infirmary_core.incidents.repository import InMemoryIncidentRepository
from infirmary_core.notifier.intents import TransitionKind
from infirmary_core.schemas.incident import (
    AssignmentMethod,
    CompletionReport,
    IncidentCreate,
    IncidentKind,
    IncidentRevision,
    IncidentStatus,
    MedicalItemUse,
)

REPORT = CompletionReport(action_taken="Cleaned and bandaged the wound", outcome="Returned to class")


def notices(channel, recipient, transition):
    return [p for p in channel.sent_to(recipient.id) if p.transition == transition]


@pytest.fixture
def alice(nurses):
    return nurses[0]


@pytest.fixture
def bao(nurses):
    return nurses[1]


@pytest.fixture
def chidi(nurses):
    return nurses[2]


async def create_normal(engine, student, reporter, as_staff, **extra):
    attrs = IncidentCreate(student_id=student.id, kind=IncidentKind.INJURY, location="Playground", **extra)
    return await engine.classify_and_create(attrs, as_staff(reporter))


@pytest.mark.asyncio
async def test_concurrent_self_assign_has_exactly_one_winner(engine, repository, student, nurses, as_staff):
    incident = await create_normal(engine, student, nurses[0], as_staff)

    results = await asyncio.gather(
        *(engine.self_assign(incident.id, as_staff(n)) for n in nurses),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == len(nurses) - 1
    assert all(isinstance(e, AlreadyOwnedError) for e in losers)

    stored = await repository.load(incident.id)
    assert stored.owner_id == winners[0].owner_id
    assert stored.status == IncidentStatus.IN_PROGRESS
    assert stored.holds_invariants()
    # Losers are told who won
    winner_name = next(n.full_name for n in nurses if n.id == stored.owner_id)
    assert all(e.owner_id == stored.owner_id and winner_name in e.message for e in losers)


@pytest.mark.asyncio
async def test_emergency_is_owned_by_reporter_and_alerts_everyone(engine, channel, student, guardian,
                                                                 alice, bao, chidi, as_staff):
    attrs = IncidentCreate(student_id=student.id, kind=IncidentKind.FALL, is_emergency=True)
    incident = await engine.classify_and_create(attrs, as_staff(alice))

    assert incident.status == IncidentStatus.IN_PROGRESS
    assert incident.owner_id == alice.id
    assert incident.assignment_method == AssignmentMethod.SELF_ASSIGNED

    [alert] = channel.sent_to(guardian.id)
    assert alert.urgent and alert.requires_ack
    assert len(notices(channel, bao, TransitionKind.CREATED)) == 1
    assert len(notices(channel, chidi, TransitionKind.CREATED)) == 1
    assert notices(channel, alice, TransitionKind.CREATED) == []


@pytest.mark.asyncio
async def test_normal_incident_only_informs_guardian(engine, channel, student, guardian, alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    assert incident.status == IncidentStatus.PENDING
    assert incident.owner_id is None
    [info] = channel.sent_to(guardian.id)
    assert not info.urgent and not info.requires_ack
    assert channel.sent_to(bao.id) == []


@pytest.mark.asyncio
async def test_incident_codes_follow_daily_sequence(engine, student, alice, as_staff):
    first = await create_normal(engine, student, alice, as_staff)
    second = await create_normal(engine, student, alice, as_staff)

    assert first.code == "HE-260314-000001"
    assert second.code == "HE-260314-000002"


@pytest.mark.asyncio
async def test_incompatible_condition_persists_nothing(engine, repository, student, conditions, alice, as_staff):
    attrs = IncidentCreate(
        student_id=student.id,
        kind=IncidentKind.ALLERGIC_REACTION,
        linked_condition_id=conditions["chronic"].id,
    )
    with pytest.raises(CompatibilityError):
        await engine.classify_and_create(attrs, as_staff(alice))

    assert await repository.codes_with_prefix("HE") == []


@pytest.mark.asyncio
async def test_supervisor_assignment_overrides_self_assignment(engine, student, supervisor, alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    reassigned = await engine.supervisor_assign(incident.id, bao.id, as_staff(supervisor, supervisor=True))

    assert reassigned.owner_id == bao.id
    assert reassigned.assignment_method == AssignmentMethod.SUPERVISOR_ASSIGNED
    assert reassigned.holds_invariants()
    with pytest.raises(NotOwnerError):
        await engine.complete(incident.id, REPORT, as_staff(alice))


@pytest.mark.asyncio
async def test_supervisor_assignment_notifies_assignee_directly(engine, channel, student, supervisor,
                                                               alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.supervisor_assign(incident.id, bao.id, as_staff(supervisor, supervisor=True))

    [direct] = notices(channel, bao, TransitionKind.SUPERVISOR_ASSIGNED)
    assert "assigned to you" in direct.title
    assert supervisor.full_name in direct.body
    assert len(notices(channel, alice, TransitionKind.SUPERVISOR_ASSIGNED)) == 1


@pytest.mark.asyncio
async def test_supervisor_assignment_requires_privilege(engine, repository, student, alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    with pytest.raises(PermissionDeniedError):
        await engine.supervisor_assign(incident.id, bao.id, as_staff(alice))

    assert (await repository.load(incident.id)).owner_id is None


@pytest.mark.asyncio
async def test_supervisor_assignment_rejects_unknown_staff(engine, student, supervisor, guardian, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    with pytest.raises(InvalidAssigneeError):
        await engine.supervisor_assign(incident.id, guardian.id, as_staff(supervisor, supervisor=True))


@pytest.mark.asyncio
async def test_supervisor_cannot_reassign_completed_incident(engine, student, supervisor, alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))
    await engine.complete(incident.id, REPORT, as_staff(alice))

    with pytest.raises(AlreadyCompletedError):
        await engine.supervisor_assign(incident.id, bao.id, as_staff(supervisor, supervisor=True))


@pytest.mark.asyncio
async def test_concurrent_completions_succeed_once(engine, repository, student, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    results = await asyncio.gather(
        engine.complete(incident.id, REPORT, as_staff(alice)),
        engine.complete(incident.id, REPORT, as_staff(alice)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, AlreadyCompletedError)) == 1
    stored = await repository.load(incident.id)
    assert stored.status == IncidentStatus.COMPLETED
    assert stored.assigned_at <= stored.completed_at
    assert stored.holds_invariants()


@pytest.mark.asyncio
async def test_full_triage_flow(engine, channel, repository, clock, student, alice, bao, chidi, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    await engine.self_assign(incident.id, as_staff(alice))
    with pytest.raises(AlreadyOwnedError):
        await engine.self_assign(incident.id, as_staff(bao))

    clock.advance(minutes=20)
    completed = await engine.complete(incident.id, REPORT, as_staff(alice))

    assert completed.status == IncidentStatus.COMPLETED
    assert completed.action_taken == REPORT.action_taken
    assert completed.outcome == REPORT.outcome
    assert completed == await repository.load(incident.id)

    for peer in (bao, chidi):
        [notice] = notices(channel, peer, TransitionKind.COMPLETED)
        assert REPORT.outcome in notice.body
    assert notices(channel, alice, TransitionKind.COMPLETED) == []


@pytest.mark.asyncio
async def test_recipients_are_resolved_when_notifying(engine, channel, directory, student, alice, bao, chidi,
                                                      as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    directory.inactive.add(chidi.id)
    await engine.complete(incident.id, REPORT, as_staff(alice))

    assert len(notices(channel, bao, TransitionKind.COMPLETED)) == 1
    assert notices(channel, chidi, TransitionKind.COMPLETED) == []


@pytest.mark.asyncio
async def test_failed_delivery_does_not_undo_completion(engine, channel, repository, student, alice, bao, chidi,
                                                        as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    channel.unreachable.add(bao.id)
    completed = await engine.complete(incident.id, REPORT, as_staff(alice))

    assert completed.status == IncidentStatus.COMPLETED
    assert (await repository.load(incident.id)).status == IncidentStatus.COMPLETED
    assert len(notices(channel, chidi, TransitionKind.COMPLETED)) == 1


@pytest.mark.asyncio
async def test_escalation_assigns_reviser_and_downgrade_keeps_them(engine, channel, student, guardian,
                                                                  alice, bao, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    escalated = await engine.revise_emergency_flag(incident.id, True, as_staff(bao))
    assert escalated.owner_id == bao.id
    assert escalated.is_emergency
    assert any(p.urgent and p.requires_ack for p in channel.sent_to(guardian.id))

    downgraded = await engine.revise_emergency_flag(incident.id, False, as_staff(alice))
    assert downgraded.owner_id == bao.id
    assert not downgraded.is_emergency
    assert downgraded.status == IncidentStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_revision_rechecks_compatibility(engine, repository, student, conditions, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    with pytest.raises(CompatibilityError):
        await engine.revise(incident.id, IncidentRevision(kind=IncidentKind.ALLERGIC_REACTION), as_staff(alice))
    assert (await repository.load(incident.id)).kind == IncidentKind.INJURY

    revised = await engine.revise(
        incident.id,
        IncidentRevision(kind=IncidentKind.ALLERGIC_REACTION, linked_condition_id=conditions["allergy"].id),
        as_staff(alice),
    )
    assert revised.kind == IncidentKind.ALLERGIC_REACTION
    assert revised.version == incident.version + 1


@pytest.mark.asyncio
async def test_cancel_by_non_owner_is_denied(engine, student, alice, bao, supervisor, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    with pytest.raises(PermissionDeniedError):
        await engine.cancel(incident.id, "duplicate", as_staff(bao))

    cancelled = await engine.cancel(incident.id, "duplicate", as_staff(supervisor, supervisor=True))
    assert cancelled.status == IncidentStatus.CANCELLED
    assert cancelled.owner_id is None


@pytest.mark.asyncio
async def test_delete_blocked_by_usage_history(engine, repository, student, alice, as_staff):
    bandage = MedicalItemUse(item_name="Bandage", quantity=2, notes="Left knee")
    incident = await create_normal(engine, student, alice, as_staff, medical_item_usages=[bandage])
    assert await repository.has_usage_history(incident.id)

    with pytest.raises(UsageHistoryError):
        await engine.delete(incident.id, as_staff(alice))
    assert (await repository.load(incident.id)).id == incident.id


@pytest.mark.asyncio
async def test_deleted_incident_is_gone(engine, student, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    await engine.delete(incident.id, as_staff(alice))

    with pytest.raises(IncidentNotFoundError):
        await engine.get(incident.id)
    with pytest.raises(IncidentNotFoundError):
        await engine.self_assign(incident.id, as_staff(alice))


@pytest.mark.asyncio
async def test_cache_is_invalidated_after_each_mutation(repository, registry, directory, dispatcher, clock,
                                                        student, alice, as_staff):
    class RecordingCache:
        def __init__(self):
            self.invalidated = []

        async def invalidate(self, incident_id):
            self.invalidated.append(incident_id)

    cache = RecordingCache()
    engine = IncidentEngine(repository, registry, directory, dispatcher, cache=cache, clock=clock)

    incident = await create_normal(engine, student, alice, as_staff)
    await engine.self_assign(incident.id, as_staff(alice))

    assert cache.invalidated == [incident.id, incident.id]


@pytest.mark.asyncio
async def test_operation_honours_caller_timeout(registry, directory, dispatcher, clock, student, alice, as_staff):
    class SlowRepository(InMemoryIncidentRepository):
        async def load(self, incident_id):
            await asyncio.sleep(1)
            return await super().load(incident_id)

    repository = SlowRepository()
    engine = IncidentEngine(repository, registry, directory, dispatcher, clock=clock)
    incident = await create_normal(engine, student, alice, as_staff)

    with pytest.raises(TimeoutError):
        await engine.self_assign(incident.id, as_staff(alice), timeout=0.01)

    assert (await InMemoryIncidentRepository.load(repository, incident.id)).owner_id is None


@pytest.mark.asyncio
async def test_incident_without_items_has_no_usage_history(engine, repository, student, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff, medical_item_usages=[])

    assert not await repository.has_usage_history(incident.id)


@pytest.mark.asyncio
async def test_zero_timeout_is_not_replaced_by_default(engine, repository, student, alice, as_staff):
    incident = await create_normal(engine, student, alice, as_staff)

    with pytest.raises(TimeoutError):
        await engine.self_assign(incident.id, as_staff(alice), timeout=0)

    assert (await repository.load(incident.id)).owner_id is None


@pytest.mark.asyncio
async def test_late_claim_names_supervisor_owner(engine, student, supervisor, alice, as_staff):
    attrs = IncidentCreate(student_id=student.id, kind=IncidentKind.FALL, is_emergency=True)
    incident = await engine.classify_and_create(attrs, as_staff(supervisor, supervisor=True))

    with pytest.raises(AlreadyOwnedError) as exc:
        await engine.self_assign(incident.id, as_staff(alice))

    assert supervisor.full_name in str(exc.value)
    assert exc.value.owner_id == supervisor.id


@pytest.mark.asyncio
async def test_cancel_tells_supervisor_owner(engine, directory, channel, student, supervisor, as_staff):
    admin = Recipient(id=uuid.uuid4(), full_name="Admin Femi", role="admin")
    directory.supervisor_list.append(admin)
    attrs = IncidentCreate(student_id=student.id, kind=IncidentKind.FALL, is_emergency=True)
    incident = await engine.classify_and_create(attrs, as_staff(supervisor, supervisor=True))

    await engine.cancel(incident.id, "wrong student", as_staff(admin, supervisor=True))

    [notice] = notices(channel, supervisor, TransitionKind.CANCELLED)
    assert notice.incident_id == incident.id
