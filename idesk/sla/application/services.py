"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain objects and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Dict, List, Optional, Sequence

from idesk.config import TicketStatus
from idesk.core.exceptions import InvalidStateTransition, TicketNotFoundError
from idesk.shared.infrastructure.logging import get_logger, log_latency
from idesk.sla.domain import (
    BreachEvaluator,
    BreachThresholds,
    SlaClassification,
    SlaClock,
    SlaEvent,
    SlaPolicy,
    SlaPolicyStore,
    SlaState,
    SlaStateTracker,
    SlaTransition,
    TicketSlaState,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISlaPolicyRepository(ABC):
    """Interface for SLA policy persistence."""

    @abstractmethod
    async def list_all(self) -> List[SlaPolicy]:
        """Load every persisted policy."""

    @abstractmethod
    async def save(self, policy: SlaPolicy) -> None:
        """Insert or update one policy."""

    @abstractmethod
    async def delete(self, priority: str) -> None:
        """Delete the policy for ``priority``."""

    @abstractmethod
    async def replace_all(self, policies: Sequence[SlaPolicy]) -> None:
        """Clear the table and write ``policies``."""


class ITicketSlaRepository(ABC):
    """Interface for ticket SLA state persistence."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[TicketSlaState]:
        """Read a ticket's SLA state without locking."""

    @abstractmethod
    async def get_for_update(self, ticket_id: str) -> Optional[TicketSlaState]:
        """Read a ticket's SLA state holding a row lock until commit."""

    @abstractmethod
    async def save(self, ticket: TicketSlaState) -> None:
        """Write every SLA field of ``ticket`` in one update."""

    @abstractmethod
    async def list_active(self) -> List[TicketSlaState]:
        """Tickets whose clock is not stopped."""

    @abstractmethod
    async def save_evaluation(
        self,
        ticket_id: str,
        last_classification: SlaClassification,
        first_response_breached: bool
    ) -> None:
        """
        Write only the evaluation outcome.

        Used by the unlocked monitor pass; the clock columns belong to
        row-locked transitions and must not be touched here. A false
        ``first_response_breached`` leaves the stored flag as it is.
        """


class ISlaEventRepository(ABC):
    """Interface for persisted warning and breach events."""

    @abstractmethod
    async def add_many(self, events: Sequence[SlaEvent]) -> None:
        """Record emitted events for the notification dispatcher."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[SlaEvent]:
        """Events recorded for one ticket, oldest first."""


class IThresholdProvider(ABC):
    """Interface for breach warning configuration access."""

    @abstractmethod
    def get_thresholds(self) -> BreachThresholds:
        """Get current warning thresholds."""


# ========== Read models ==========

@dataclass
class TicketSlaStatus:
    """Deadline view of a ticket at a given instant."""
    ticket: TicketSlaState
    classification: SlaClassification
    first_response_target: Optional[datetime]
    resolution_deadline: Optional[datetime]
    response_remaining_minutes: Optional[int]
    resolution_remaining_minutes: Optional[int]
    paused_minutes: int
    evaluated_at: datetime


@dataclass
class EvaluationSummary:
    """Outcome of one monitor pass."""
    tickets_evaluated: int = 0
    classifications: Dict[str, int] = field(default_factory=dict)
    events: List[SlaEvent] = field(default_factory=list)

    @property
    def events_emitted(self) -> int:
        return len(self.events)


# ========== Application Services ==========

class SlaPolicyService:
    """
    Admin surface over the policy store.

    The store is the authority at runtime; the repository mirrors it.
    Store operations validate before changing anything, so a rejected
    request never reaches the database.
    """

    def __init__(self, store: SlaPolicyStore, repository: ISlaPolicyRepository):
        self._store = store
        self._repository = repository

    @property
    def store(self) -> SlaPolicyStore:
        return self._store

    async def initialize(self) -> List[SlaPolicy]:
        """
        Load persisted policies; seed the defaults when there are none.

        Call once at process startup.
        """
        persisted = await self._repository.list_all()
        if persisted:
            self._store.load(persisted)
            logger.info("Loaded SLA policies", extra={"count": len(persisted)})
            return self._store.get_all()

        policies = self._store.reset_to_defaults()
        await self._repository.replace_all(policies)
        logger.info("Seeded default SLA policies", extra={"count": len(policies)})
        return policies

    async def list_policies(self) -> List[SlaPolicy]:
        return self._store.get_all()

    async def _persist(self, snapshot: List[SlaPolicy], write: Awaitable[None]) -> None:
        """Await ``write``; on failure put the store back to ``snapshot``."""
        try:
            await write
        except Exception as e:
            self._store.load(snapshot)
            logger.error(
                "SLA policy change not persisted, store restored",
                extra={"error": str(e)}
            )
            raise

    async def upsert_policy(
        self,
        priority: str,
        resolution_time_minutes: int,
        response_time_minutes: int
    ) -> SlaPolicy:
        snapshot = self._store.get_all()
        policy = self._store.upsert(priority, resolution_time_minutes, response_time_minutes)
        await self._persist(snapshot, self._repository.save(policy))
        logger.info(
            "SLA policy updated",
            extra={
                "priority": policy.priority,
                "resolution_time_minutes": policy.resolution_time_minutes,
                "response_time_minutes": policy.response_time_minutes,
            }
        )
        return policy

    async def remove_policy(self, priority: str) -> SlaPolicy:
        snapshot = self._store.get_all()
        policy = self._store.remove(priority)
        await self._persist(snapshot, self._repository.delete(policy.priority))
        logger.info("SLA policy removed", extra={"priority": policy.priority})
        return policy

    async def reset_defaults(self) -> List[SlaPolicy]:
        snapshot = self._store.get_all()
        policies = self._store.reset_to_defaults()
        await self._persist(snapshot, self._repository.replace_all(policies))
        logger.info("SLA policies reset to defaults", extra={"count": len(policies)})
        return policies


class SlaTicketService:
    """
    Applies SLA transitions to persisted tickets.

    Each call loads the ticket under a row lock, runs the tracker and
    writes the result back, so concurrent handlers touching the same
    ticket are serialised by the database.
    """

    def __init__(
        self,
        ticket_repository: ITicketSlaRepository,
        tracker: SlaStateTracker,
        evaluator: BreachEvaluator,
        policy_store: SlaPolicyStore
    ):
        self._ticket_repo = ticket_repository
        self._tracker = tracker
        self._evaluator = evaluator
        self._policy_store = policy_store

    async def _load_locked(self, ticket_id: str) -> TicketSlaState:
        ticket = await self._ticket_repo.get_for_update(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _apply(self, ticket_id: str, action: str, *args) -> SlaTransition:
        ticket = await self._load_locked(ticket_id)
        transition = getattr(self._tracker, action)(ticket, *args)
        if transition.changed:
            await self._ticket_repo.save(ticket)
        return transition

    async def start(self, ticket_id: str, now: datetime) -> SlaTransition:
        return await self._apply(ticket_id, "start", now)

    async def record_first_response(self, ticket_id: str, now: datetime) -> SlaTransition:
        return await self._apply(ticket_id, "record_first_response", now)

    async def pause(self, ticket_id: str, now: datetime) -> SlaTransition:
        return await self._apply(ticket_id, "pause", now)

    async def resume(self, ticket_id: str, now: datetime) -> SlaTransition:
        return await self._apply(ticket_id, "resume", now)

    async def stop(self, ticket_id: str, now: datetime) -> SlaTransition:
        return await self._apply(ticket_id, "stop", now)

    async def change_priority(
        self,
        ticket_id: str,
        new_priority: str,
        now: datetime
    ) -> SlaTransition:
        return await self._apply(ticket_id, "change_priority", new_priority, now)

    async def override_first_response_breach(
        self,
        ticket_id: str,
        breached: bool,
        now: datetime
    ) -> SlaTransition:
        return await self._apply(ticket_id, "override_first_response_breach", breached, now)

    async def apply_status_change(
        self,
        ticket_id: str,
        old_status: TicketStatus,
        new_status: TicketStatus,
        now: datetime
    ) -> List[SlaTransition]:
        """
        Map a ticket status change onto SLA transitions.

        IN_PROGRESS starts or resumes the clock, WAITING_VENDOR pauses it
        (starting it first if needed), RESOLVED and CANCELLED stop it.
        An InvalidStateTransition here means the status mapping and the
        stored SLA state disagree; it is logged as such and re-raised.
        """
        old_status = TicketStatus(old_status)
        new_status = TicketStatus(new_status)
        ticket = await self._load_locked(ticket_id)
        transitions: List[SlaTransition] = []

        try:
            if old_status != new_status:
                transitions = self._transitions_for(ticket, new_status, now)
        except InvalidStateTransition as e:
            logger.error(
                "SLA status mapping rejected",
                extra={
                    "ticket_id": ticket_id,
                    "old_status": old_status.value,
                    "new_status": new_status.value,
                    "sla_state": ticket.sla_state.value,
                    "error": e.message,
                }
            )
            raise

        if transitions:
            await self._ticket_repo.save(ticket)
        return transitions

    def _transitions_for(
        self,
        ticket: TicketSlaState,
        new_status: TicketStatus,
        now: datetime
    ) -> List[SlaTransition]:
        # Work on a copy so a failure half way leaves the loaded ticket intact
        draft = TicketSlaState(**vars(ticket))
        state = draft.sla_state
        steps: List[SlaTransition] = []

        if new_status == TicketStatus.IN_PROGRESS:
            if state == SlaState.NOT_STARTED:
                steps.append(self._tracker.start(draft, now))
            elif state == SlaState.PAUSED:
                steps.append(self._tracker.resume(draft, now))
            elif state == SlaState.STOPPED:
                raise InvalidStateTransition("start", state.value, draft.ticket_id)

        elif new_status == TicketStatus.WAITING_VENDOR:
            if state == SlaState.NOT_STARTED:
                steps.append(self._tracker.start(draft, now))
            steps.append(self._tracker.pause(draft, now))

        elif new_status == TicketStatus.RESOLVED:
            if state == SlaState.NOT_STARTED:
                steps.append(self._tracker.start(draft, now))
            steps.append(self._tracker.stop(draft, now))

        elif new_status == TicketStatus.CANCELLED:
            if state != SlaState.NOT_STARTED:
                steps.append(self._tracker.stop(draft, now))

        vars(ticket).update(vars(draft))
        return steps

    async def get_status(self, ticket_id: str, now: datetime) -> TicketSlaStatus:
        """Deadline view for read paths. Does not latch or persist anything."""
        ticket = await self._ticket_repo.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)

        if ticket.first_response_at is None:
            target = SlaClock.compute_first_response_target(
                ticket.sla_started_at, ticket.priority, self._policy_store
            )
        else:
            target = ticket.first_response_target

        deadline = None
        if ticket.resolved_at is None:
            deadline = SlaClock.compute_resolution_deadline(ticket, self._policy_store, now)

        return TicketSlaStatus(
            ticket=ticket,
            classification=self._evaluator.classify(ticket, now),
            first_response_target=target,
            resolution_deadline=deadline,
            response_remaining_minutes=(
                SlaClock.remaining_minutes(target, now)
                if ticket.first_response_at is None else None
            ),
            resolution_remaining_minutes=SlaClock.remaining_minutes(deadline, now),
            paused_minutes=(
                ticket.total_waiting_vendor_minutes + SlaClock.open_pause_minutes(ticket, now)
            ),
            evaluated_at=now,
        )


class SlaEventOutbox:
    """
    Event sink handed to the BreachEvaluator.

    Collects events as the evaluator emits them; the monitor drains the
    outbox after each pass and persists what it holds.
    """

    def __init__(self):
        self._pending: List[SlaEvent] = []

    def __call__(self, event: SlaEvent) -> None:
        self._pending.append(event)

    def __len__(self) -> int:
        return len(self._pending)

    def drain(self) -> List[SlaEvent]:
        events, self._pending = self._pending, []
        return events


class SlaMonitorService:
    """
    Periodic breach detection.

    Run by the scheduler: evaluates every active ticket, persists the new
    classification (the de-duplication key) and the response-breach
    latch, and records the events raised on this pass.
    """

    def __init__(
        self,
        ticket_repository: ITicketSlaRepository,
        event_repository: ISlaEventRepository,
        evaluator: BreachEvaluator,
        outbox: SlaEventOutbox,
        threshold_provider: Optional[IThresholdProvider] = None
    ):
        self._ticket_repo = ticket_repository
        self._event_repo = event_repository
        self._evaluator = evaluator
        self._outbox = outbox
        self._threshold_provider = threshold_provider

    async def run(self, now: datetime) -> EvaluationSummary:
        if self._threshold_provider is not None:
            self._evaluator.update_thresholds(self._threshold_provider.get_thresholds())

        tickets = await self._ticket_repo.list_active()
        flags_before = {t.ticket_id: t.is_first_response_breached for t in tickets}
        previous = {t.ticket_id: t.last_classification for t in tickets}

        summary = EvaluationSummary()
        counts: Counter = Counter()

        with log_latency(logger, "sla_evaluation", tickets=len(tickets)):
            for ticket, classification in self._evaluator.evaluate_batch(tickets, now, previous):
                summary.tickets_evaluated += 1
                counts[classification.value] += 1

                flag_changed = ticket.is_first_response_breached != flags_before[ticket.ticket_id]
                if classification != previous[ticket.ticket_id] or flag_changed:
                    ticket.last_classification = classification
                    await self._ticket_repo.save_evaluation(
                        ticket.ticket_id, classification, ticket.is_first_response_breached
                    )

        summary.events = self._outbox.drain()
        if summary.events:
            await self._event_repo.add_many(summary.events)

        summary.classifications = dict(counts)
        logger.info(
            "SLA evaluation pass finished",
            extra={
                "tickets_evaluated": summary.tickets_evaluated,
                "events_emitted": summary.events_emitted,
            }
        )
        return summary
