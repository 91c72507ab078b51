from idesk.config import SlaEventType, SlaType
from idesk.sla.domain import BreachEvaluator, BreachThresholds, SlaClassification, SlaPolicyStore, SlaState

from tests.factories import T0, make_ticket, minutes, started_ticket


def test_no_response_past_target_is_response_breached(tracker, evaluator):
    ticket = make_ticket()
    tracker.start(ticket, T0)
    assert ticket.first_response_target == T0 + minutes(240)

    assert evaluator.classify(ticket, T0 + minutes(241)) == SlaClassification.RESPONSE_BREACHED
    assert ticket.is_first_response_breached is False

    evaluation = evaluator.evaluate(ticket, T0 + minutes(241))

    assert evaluation.classification == SlaClassification.RESPONSE_BREACHED
    assert ticket.is_first_response_breached is True
    assert [e.event_type for e in evaluation.events] == [SlaEventType.SLA_BREACHED]
    assert evaluation.events[0].sla_type == SlaType.RESPONSE


def test_exactly_at_target_is_not_breached(evaluator):
    ticket = started_ticket()

    assert evaluator.classify(ticket, T0 + minutes(240)) == SlaClassification.RESPONSE_AT_RISK


def test_response_at_risk_window_is_percentage_of_target(evaluator):
    ticket = started_ticket()

    # 20% of 240 minutes
    assert evaluator.classify(ticket, T0 + minutes(191)) == SlaClassification.ON_TRACK
    assert evaluator.classify(ticket, T0 + minutes(192)) == SlaClassification.RESPONSE_AT_RISK


def test_resolution_breach_outranks_response_breach(evaluator):
    ticket = started_ticket()

    assert evaluator.classify(ticket, T0 + minutes(481)) == SlaClassification.RESOLUTION_BREACHED


def test_response_breach_outranks_resolution_at_risk(evaluator):
    ticket = started_ticket()

    # resolution at-risk from 384 minutes, response long overdue
    assert evaluator.classify(ticket, T0 + minutes(400)) == SlaClassification.RESPONSE_BREACHED


def test_stopped_ticket_classifies_as_stopped_without_events(evaluator):
    ticket = started_ticket(sla_state=SlaState.STOPPED, resolved_at=T0 + minutes(10))

    evaluation = evaluator.evaluate(ticket, T0 + minutes(10000))

    assert evaluation.classification == SlaClassification.STOPPED
    assert evaluation.events == []


def test_paused_time_extends_resolution_deadline(evaluator):
    ticket = started_ticket(total_waiting_vendor_minutes=240, first_response_at=T0 + minutes(5))

    assert evaluator.classify(ticket, T0 + minutes(500)) == SlaClassification.ON_TRACK
    assert evaluator.classify(ticket, T0 + minutes(721)) == SlaClassification.RESOLUTION_BREACHED


def test_breach_flag_never_resets_on_evaluation(evaluator):
    ticket = started_ticket(is_first_response_breached=True, first_response_at=T0 + minutes(300))

    evaluator.evaluate(ticket, T0 + minutes(310))

    assert ticket.is_first_response_breached is True


def test_events_fire_once_per_transition():
    store = SlaPolicyStore()
    store.reset_to_defaults()
    received = []
    evaluator = BreachEvaluator(store, event_sink=received.append)
    ticket = started_ticket(first_response_at=T0 + minutes(30))

    previous = None
    kinds = []
    for at in (100, 390, 400, 481, 500):
        evaluation = evaluator.evaluate(ticket, T0 + minutes(at), previous)
        previous = evaluation.classification
        kinds.extend((e.event_type, e.classification) for e in evaluation.events)

    assert kinds == [
        (SlaEventType.SLA_WARNING, SlaClassification.RESOLUTION_AT_RISK),
        (SlaEventType.SLA_BREACHED, SlaClassification.RESOLUTION_BREACHED),
    ]
    assert len(received) == 2
    assert received[0].remaining_minutes == 90
    assert received[0].message() == "Ticket #42 SLA will expire in 1h 30m (resolution)"
    assert received[1].message() == "Ticket #42 has breached its SLA target (resolution)"


def test_previous_classification_defaults_to_persisted_value(evaluator):
    ticket = started_ticket(
        first_response_at=T0 + minutes(30),
        last_classification=SlaClassification.RESOLUTION_AT_RISK,
    )

    evaluation = evaluator.evaluate(ticket, T0 + minutes(400))

    assert evaluation.classification == SlaClassification.RESOLUTION_AT_RISK
    assert evaluation.events == []


def test_no_warning_after_a_breach(evaluator):
    ticket = started_ticket(total_waiting_vendor_minutes=0, is_first_response_breached=True)

    evaluation = evaluator.evaluate(
        ticket, T0 + minutes(400), previous=SlaClassification.RESOLUTION_BREACHED
    )

    assert evaluation.classification == SlaClassification.RESPONSE_BREACHED
    assert evaluation.events == []


def test_resolution_warning_follows_a_response_breach(tracker, evaluator):
    ticket = started_ticket()
    breach = evaluator.evaluate(ticket, T0 + minutes(250))
    ticket.last_classification = breach.classification
    tracker.record_first_response(ticket, T0 + minutes(260))

    evaluation = evaluator.evaluate(ticket, T0 + minutes(400))

    assert evaluation.classification == SlaClassification.RESOLUTION_AT_RISK
    assert [(e.event_type, e.sla_type) for e in evaluation.events] == [
        (SlaEventType.SLA_WARNING, SlaType.RESOLUTION)
    ]
    assert evaluation.events[0].remaining_minutes == 80


def test_updated_thresholds_apply_to_next_evaluation(evaluator):
    ticket = started_ticket()
    evaluator.update_thresholds(BreachThresholds(response_at_risk_percent=0))

    assert evaluator.classify(ticket, T0 + minutes(239)) == SlaClassification.ON_TRACK


def test_batch_skips_tickets_without_policy(evaluator):
    tickets = [
        started_ticket("1"),
        started_ticket("2", priority="RETIRED"),
        started_ticket("3", priority="LOW"),
    ]

    results = list(evaluator.evaluate_batch(tickets, T0 + minutes(241)))

    assert [(t.ticket_id, c) for t, c in results] == [
        ("1", SlaClassification.RESPONSE_BREACHED),
        ("3", SlaClassification.ON_TRACK),
    ]


def test_batch_uses_previous_mapping_for_deduplication():
    store = SlaPolicyStore()
    store.reset_to_defaults()
    received = []
    evaluator = BreachEvaluator(store, event_sink=received.append)
    ticket = started_ticket(first_response_at=T0 + minutes(30))

    list(evaluator.evaluate_batch(
        [ticket], T0 + minutes(481), {"42": SlaClassification.RESOLUTION_BREACHED}
    ))

    assert received == []
