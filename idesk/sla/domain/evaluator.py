"""
Breach Evaluator
================

Classifies tickets against their SLA deadlines and raises warning and
breach events.

The evaluator keeps no per-ticket memory. De-duplication relies on two
pieces of ticket state: ``is_first_response_breached`` (latched here) for
the response clock, and ``last_classification`` (persisted by the caller)
for everything else.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Tuple

from idesk.config import SlaEventType, SlaType
from idesk.core.exceptions import ResourceNotFoundException
from idesk.shared.infrastructure.logging import get_logger
from idesk.sla.domain.clock import SlaClock, require_aware
from idesk.sla.domain.entities import SlaClassification, SlaState, TicketSlaState
from idesk.sla.domain.policies import SlaPolicyStore
from idesk.sla.domain.value_objects import BreachThresholds, SlaEvent

logger = get_logger(__name__)

EventSink = Callable[[SlaEvent], None]

_AT_RISK = "at_risk"
_BREACHED = "breached"

# A warning is redundant only after a breach on the same clock
_BREACH_OF = {
    SlaClassification.RESPONSE_AT_RISK: SlaClassification.RESPONSE_BREACHED,
    SlaClassification.RESOLUTION_AT_RISK: SlaClassification.RESOLUTION_BREACHED,
}


@dataclass(frozen=True)
class _ClockCheck:
    deadline: Optional[datetime] = None
    status: Optional[str] = None


@dataclass
class Evaluation:
    """Result of evaluating one ticket."""
    ticket: TicketSlaState
    classification: SlaClassification
    events: List[SlaEvent] = field(default_factory=list)


class BreachEvaluator:
    """
    Stateless apart from the warning thresholds, which can be swapped at
    runtime when the YAML configuration is reloaded.
    """

    def __init__(
        self,
        policy_store: SlaPolicyStore,
        thresholds: Optional[BreachThresholds] = None,
        event_sink: Optional[EventSink] = None
    ):
        self._policy_store = policy_store
        self._thresholds = thresholds or BreachThresholds()
        self._event_sink = event_sink

    @property
    def thresholds(self) -> BreachThresholds:
        return self._thresholds

    def update_thresholds(self, thresholds: BreachThresholds) -> None:
        self._thresholds = thresholds

    # ========== Clock checks ==========

    def _check_response(self, ticket: TicketSlaState, now: datetime) -> _ClockCheck:
        if ticket.first_response_at is not None or ticket.sla_started_at is None:
            return _ClockCheck()

        policy = self._policy_store.get(ticket.priority)
        target = SlaClock.compute_first_response_target(
            ticket.sla_started_at, ticket.priority, self._policy_store
        )
        if now > target:
            return _ClockCheck(target, _BREACHED)

        lead = timedelta(seconds=self._thresholds.response_lead_seconds(policy.response_time_minutes))
        if now >= target - lead:
            return _ClockCheck(target, _AT_RISK)
        return _ClockCheck(target)

    def _check_resolution(self, ticket: TicketSlaState, now: datetime) -> _ClockCheck:
        if ticket.resolved_at is not None or ticket.sla_started_at is None:
            return _ClockCheck()

        policy = self._policy_store.get(ticket.priority)
        deadline = SlaClock.compute_resolution_deadline(ticket, self._policy_store, now)
        if now > deadline:
            return _ClockCheck(deadline, _BREACHED)

        lead = timedelta(seconds=self._thresholds.resolution_lead_seconds(policy.resolution_time_minutes))
        if now >= deadline - lead:
            return _ClockCheck(deadline, _AT_RISK)
        return _ClockCheck(deadline)

    # ========== Public API ==========

    def classify(self, ticket: TicketSlaState, now: datetime) -> SlaClassification:
        """
        Pure classification of ``ticket`` at ``now``.

        Precedence: STOPPED, RESOLUTION_BREACHED, RESPONSE_BREACHED,
        RESOLUTION_AT_RISK, RESPONSE_AT_RISK, ON_TRACK.
        """
        require_aware(now, "now")
        if ticket.sla_state == SlaState.STOPPED:
            return SlaClassification.STOPPED

        response = self._check_response(ticket, now)
        resolution = self._check_resolution(ticket, now)
        return self._rank(response, resolution)

    @staticmethod
    def _rank(response: _ClockCheck, resolution: _ClockCheck) -> SlaClassification:
        if resolution.status == _BREACHED:
            return SlaClassification.RESOLUTION_BREACHED
        if response.status == _BREACHED:
            return SlaClassification.RESPONSE_BREACHED
        if resolution.status == _AT_RISK:
            return SlaClassification.RESOLUTION_AT_RISK
        if response.status == _AT_RISK:
            return SlaClassification.RESPONSE_AT_RISK
        return SlaClassification.ON_TRACK

    def evaluate(
        self,
        ticket: TicketSlaState,
        now: datetime,
        previous: Optional[SlaClassification] = None
    ) -> Evaluation:
        """
        Classify and emit one event per transition into warning or breach.

        ``previous`` defaults to ``ticket.last_classification``. Latches
        ``is_first_response_breached``; storing the returned classification
        as the next ``last_classification`` is the caller's job.
        """
        require_aware(now, "now")
        if previous is None:
            previous = ticket.last_classification

        if ticket.sla_state == SlaState.STOPPED:
            return Evaluation(ticket, SlaClassification.STOPPED)

        response = self._check_response(ticket, now)
        resolution = self._check_resolution(ticket, now)
        classification = self._rank(response, resolution)
        events: List[SlaEvent] = []

        if response.status == _BREACHED and not ticket.is_first_response_breached:
            ticket.is_first_response_breached = True
            events.append(self._event(
                ticket, SlaEventType.SLA_BREACHED, SlaType.RESPONSE,
                SlaClassification.RESPONSE_BREACHED, response.deadline, now
            ))

        if (classification == SlaClassification.RESOLUTION_BREACHED
                and previous != SlaClassification.RESOLUTION_BREACHED):
            events.append(self._event(
                ticket, SlaEventType.SLA_BREACHED, SlaType.RESOLUTION,
                classification, resolution.deadline, now
            ))

        if (classification.is_at_risk
                and previous != classification
                and previous != _BREACH_OF[classification]):
            check, sla_type = (
                (response, SlaType.RESPONSE)
                if classification == SlaClassification.RESPONSE_AT_RISK
                else (resolution, SlaType.RESOLUTION)
            )
            events.append(self._event(
                ticket, SlaEventType.SLA_WARNING, sla_type,
                classification, check.deadline, now
            ))

        for event in events:
            self._emit(event)

        return Evaluation(ticket, classification, events)

    def evaluate_batch(
        self,
        tickets: Iterable[TicketSlaState],
        now: datetime,
        previous: Optional[Mapping[str, SlaClassification]] = None
    ) -> Iterator[Tuple[TicketSlaState, SlaClassification]]:
        """
        Lazily evaluate ``tickets``, yielding ``(ticket, classification)``.

        Each ticket is treated as a consistent snapshot. A ticket whose
        priority no longer has a policy is logged and skipped so the rest
        of the batch still runs.
        """
        for ticket in tickets:
            prior = previous.get(ticket.ticket_id) if previous is not None else None
            try:
                evaluation = self.evaluate(ticket, now, prior)
            except ResourceNotFoundException as e:
                logger.error(
                    "Skipping ticket during SLA evaluation",
                    extra={
                        "ticket_id": ticket.ticket_id,
                        "priority": ticket.priority,
                        "error": e.message,
                    }
                )
                continue
            yield ticket, evaluation.classification

    # ========== Events ==========

    @staticmethod
    def _event(
        ticket: TicketSlaState,
        event_type: SlaEventType,
        sla_type: SlaType,
        classification: SlaClassification,
        deadline: datetime,
        now: datetime
    ) -> SlaEvent:
        return SlaEvent(
            ticket_id=ticket.ticket_id,
            event_type=event_type,
            sla_type=sla_type,
            classification=classification,
            deadline=deadline,
            detected_at=now,
            remaining_minutes=SlaClock.remaining_minutes(deadline, now),
        )

    def _emit(self, event: SlaEvent) -> None:
        log = logger.warning if event.is_breach else logger.info
        log(
            event.message(),
            extra={
                "ticket_id": event.ticket_id,
                "event_type": event.event_type.value,
                "sla_type": event.sla_type.value,
                "deadline": event.deadline.isoformat(),
            }
        )
        if self._event_sink is not None:
            self._event_sink(event)
