from unittest.mock import AsyncMock, MagicMock

import pytest

from idesk.config import TicketStatus
from idesk.core.exceptions import (
    ConflictError,
    InvalidStateTransition,
    RepositoryException,
    TicketNotFoundError,
    ValidationError,
)
from idesk.sla.application import (
    SlaEventOutbox,
    SlaMonitorService,
    SlaPolicyService,
    SlaTicketService,
)
from idesk.sla.domain import (
    BreachEvaluator,
    BreachThresholds,
    SlaClassification,
    SlaPolicy,
    SlaPolicyStore,
    SlaState,
)

from tests.factories import T0, make_ticket, minutes, started_ticket


# ========== Policy service ==========

@pytest.fixture
def policy_repo():
    repo = AsyncMock()
    repo.list_all.return_value = []
    return repo


@pytest.mark.asyncio
async def test_initialize_seeds_defaults_when_table_is_empty(policy_repo):
    store = SlaPolicyStore()
    service = SlaPolicyService(store, policy_repo)

    policies = await service.initialize()

    assert len(policies) == 4
    policy_repo.replace_all.assert_awaited_once_with(policies)
    assert store.get("CRITICAL").response_time_minutes == 60


@pytest.mark.asyncio
async def test_initialize_loads_persisted_policies(policy_repo):
    policy_repo.list_all.return_value = [SlaPolicy("HIGH", 600, 120), SlaPolicy("GOLD", 900, 30)]
    store = SlaPolicyStore()
    service = SlaPolicyService(store, policy_repo)

    await service.initialize()

    assert store.get("HIGH").resolution_time_minutes == 600
    assert "GOLD" in store
    policy_repo.replace_all.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_upsert_is_not_persisted(policy_store, policy_repo):
    service = SlaPolicyService(policy_store, policy_repo)

    with pytest.raises(ValidationError):
        await service.upsert_policy("LOW", -5, 100)

    policy_repo.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_upsert_persists_normalized_policy(policy_store, policy_repo):
    service = SlaPolicyService(policy_store, policy_repo)

    policy = await service.upsert_policy("gold", 900, 30)

    policy_repo.save.assert_awaited_once_with(SlaPolicy("GOLD", 900, 30))
    assert policy in await service.list_policies()


@pytest.mark.asyncio
async def test_builtin_removal_is_not_persisted(policy_store, policy_repo):
    service = SlaPolicyService(policy_store, policy_repo)

    with pytest.raises(ConflictError):
        await service.remove_policy("CRITICAL")

    policy_repo.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_upsert_restores_previous_targets(policy_store, policy_repo):
    policy_repo.save.side_effect = RepositoryException("db down")
    service = SlaPolicyService(policy_store, policy_repo)

    with pytest.raises(RepositoryException):
        await service.upsert_policy("HIGH", 999, 99)

    assert policy_store.get("HIGH").resolution_time_minutes == 480
    assert policy_store.get("HIGH").response_time_minutes == 240


@pytest.mark.asyncio
async def test_failed_removal_keeps_custom_tier(policy_store, policy_repo):
    service = SlaPolicyService(policy_store, policy_repo)
    await service.upsert_policy("GOLD", 900, 30)
    policy_repo.delete.side_effect = RepositoryException("db down")

    with pytest.raises(RepositoryException):
        await service.remove_policy("GOLD")

    assert policy_store.get("GOLD") == SlaPolicy("GOLD", 900, 30)


@pytest.mark.asyncio
async def test_failed_reset_keeps_current_policies(policy_store, policy_repo):
    service = SlaPolicyService(policy_store, policy_repo)
    await service.upsert_policy("GOLD", 900, 30)
    before = policy_store.get_all()
    policy_repo.replace_all.side_effect = RepositoryException("db down")

    with pytest.raises(RepositoryException):
        await service.reset_defaults()

    assert policy_store.get_all() == before


# ========== Ticket service ==========

@pytest.fixture
def ticket_repo():
    return AsyncMock()


@pytest.fixture
def ticket_service(ticket_repo, tracker, evaluator, policy_store):
    return SlaTicketService(ticket_repo, tracker, evaluator, policy_store)


@pytest.mark.asyncio
async def test_waiting_vendor_from_todo_starts_then_pauses(ticket_service, ticket_repo):
    ticket = make_ticket()
    ticket_repo.get_for_update.return_value = ticket

    transitions = await ticket_service.apply_status_change(
        "42", TicketStatus.TODO, TicketStatus.WAITING_VENDOR, T0
    )

    assert [t.action for t in transitions] == ["start", "pause"]
    assert ticket.sla_state == SlaState.PAUSED
    assert ticket.waiting_vendor_at == T0
    ticket_repo.save.assert_awaited_once_with(ticket)


@pytest.mark.asyncio
async def test_in_progress_resumes_paused_ticket(ticket_service, ticket_repo):
    ticket = started_ticket(sla_state=SlaState.PAUSED, waiting_vendor_at=T0 + minutes(10))
    ticket_repo.get_for_update.return_value = ticket

    transitions = await ticket_service.apply_status_change(
        "42", "WAITING_VENDOR", "IN_PROGRESS", T0 + minutes(70)
    )

    assert [t.action for t in transitions] == ["resume"]
    assert ticket.total_waiting_vendor_minutes == 60


@pytest.mark.asyncio
async def test_cancel_never_started_ticket_is_a_noop(ticket_service, ticket_repo):
    ticket = make_ticket()
    ticket_repo.get_for_update.return_value = ticket

    transitions = await ticket_service.apply_status_change(
        "42", TicketStatus.TODO, TicketStatus.CANCELLED, T0
    )

    assert transitions == []
    assert ticket.sla_state == SlaState.NOT_STARTED
    ticket_repo.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_never_started_ticket_starts_and_stops(ticket_service, ticket_repo):
    ticket = make_ticket()
    ticket_repo.get_for_update.return_value = ticket

    transitions = await ticket_service.apply_status_change(
        "42", TicketStatus.TODO, TicketStatus.RESOLVED, T0 + minutes(5)
    )

    assert [t.action for t in transitions] == ["start", "stop"]
    assert ticket.sla_started_at == ticket.resolved_at == T0 + minutes(5)
    assert ticket.sla_state == SlaState.STOPPED


@pytest.mark.asyncio
async def test_todo_has_no_sla_effect(ticket_service, ticket_repo):
    ticket = started_ticket()
    ticket_repo.get_for_update.return_value = ticket

    transitions = await ticket_service.apply_status_change(
        "42", TicketStatus.IN_PROGRESS, TicketStatus.TODO, T0 + minutes(5)
    )

    assert transitions == []
    assert ticket.sla_state == SlaState.RUNNING


@pytest.mark.asyncio
async def test_rejected_status_mapping_is_reraised_without_saving(ticket_service, ticket_repo):
    ticket = started_ticket(sla_state=SlaState.STOPPED, resolved_at=T0 + minutes(30))
    ticket_repo.get_for_update.return_value = ticket

    with pytest.raises(InvalidStateTransition):
        await ticket_service.apply_status_change(
            "42", TicketStatus.RESOLVED, TicketStatus.IN_PROGRESS, T0 + minutes(60)
        )

    assert ticket.sla_state == SlaState.STOPPED
    ticket_repo.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_pause_on_stopped_ticket_leaves_it_untouched(ticket_service, ticket_repo):
    ticket = started_ticket(sla_state=SlaState.STOPPED, resolved_at=T0)
    ticket_repo.get_for_update.return_value = ticket

    with pytest.raises(InvalidStateTransition):
        await ticket_service.apply_status_change(
            "42", TicketStatus.RESOLVED, TicketStatus.WAITING_VENDOR, T0 + minutes(5)
        )

    assert ticket.waiting_vendor_at is None


@pytest.mark.asyncio
async def test_missing_ticket_raises_not_found(ticket_service, ticket_repo):
    ticket_repo.get_for_update.return_value = None

    with pytest.raises(TicketNotFoundError):
        await ticket_service.record_first_response("404", T0)


@pytest.mark.asyncio
async def test_duplicate_first_response_is_not_saved(ticket_service, ticket_repo):
    ticket = started_ticket(first_response_at=T0 + minutes(10))
    ticket_repo.get_for_update.return_value = ticket

    await ticket_service.record_first_response("42", T0 + minutes(20))

    assert ticket.first_response_at == T0 + minutes(10)
    ticket_repo.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_change_priority_is_saved(ticket_service, ticket_repo):
    ticket = started_ticket()
    ticket_repo.get_for_update.return_value = ticket

    await ticket_service.change_priority("42", "CRITICAL", T0 + minutes(1))

    assert ticket.first_response_target == T0 + minutes(60)
    ticket_repo.save.assert_awaited_once_with(ticket)


@pytest.mark.asyncio
async def test_get_status_derives_deadlines(ticket_service, ticket_repo):
    ticket_repo.get.return_value = started_ticket()

    status = await ticket_service.get_status("42", T0 + minutes(200))

    assert status.first_response_target == T0 + minutes(240)
    assert status.resolution_deadline == T0 + minutes(480)
    assert status.response_remaining_minutes == 40
    assert status.resolution_remaining_minutes == 280
    assert status.classification == SlaClassification.RESPONSE_AT_RISK
    ticket_repo.save.assert_not_awaited()


# ========== Monitor ==========

@pytest.fixture
def monitor_parts(policy_store):
    ticket_repo = AsyncMock()
    event_repo = AsyncMock()
    outbox = SlaEventOutbox()
    evaluator = BreachEvaluator(policy_store, event_sink=outbox)
    return ticket_repo, event_repo, evaluator, outbox


@pytest.mark.asyncio
async def test_monitor_records_breach_once(monitor_parts):
    ticket_repo, event_repo, evaluator, outbox = monitor_parts
    ticket = started_ticket()
    ticket_repo.list_active.return_value = [ticket]
    monitor = SlaMonitorService(ticket_repo, event_repo, evaluator, outbox)

    first = await monitor.run(T0 + minutes(241))

    assert first.tickets_evaluated == 1
    assert first.classifications == {"RESPONSE_BREACHED": 1}
    assert first.events_emitted == 1
    assert ticket.is_first_response_breached is True
    assert ticket.last_classification == SlaClassification.RESPONSE_BREACHED
    event_repo.add_many.assert_awaited_once()
    ticket_repo.save_evaluation.assert_awaited_once_with(
        "42", SlaClassification.RESPONSE_BREACHED, True
    )
    ticket_repo.save.assert_not_awaited()

    second = await monitor.run(T0 + minutes(250))

    assert second.events_emitted == 0
    assert event_repo.add_many.await_count == 1
    assert ticket_repo.save_evaluation.await_count == 1
    assert len(outbox) == 0


@pytest.mark.asyncio
async def test_monitor_writes_only_the_evaluation_outcome(monitor_parts):
    ticket_repo, event_repo, evaluator, outbox = monitor_parts
    ticket_repo.list_active.return_value = [started_ticket()]
    monitor = SlaMonitorService(ticket_repo, event_repo, evaluator, outbox)

    await monitor.run(T0 + minutes(200))

    ticket_repo.save_evaluation.assert_awaited_once_with(
        "42", SlaClassification.RESPONSE_AT_RISK, False
    )
    ticket_repo.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_monitor_pulls_thresholds_from_provider(monitor_parts):
    ticket_repo, event_repo, evaluator, outbox = monitor_parts
    ticket_repo.list_active.return_value = [started_ticket()]
    provider = MagicMock()
    provider.get_thresholds.return_value = BreachThresholds(response_at_risk_percent=50)
    monitor = SlaMonitorService(ticket_repo, event_repo, evaluator, outbox, provider)

    summary = await monitor.run(T0 + minutes(130))

    assert summary.classifications == {"RESPONSE_AT_RISK": 1}
    assert summary.events[0].remaining_minutes == 110
