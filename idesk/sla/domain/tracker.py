"""
SLA State Tracker
=================

State machine governing when a ticket's resolution clock runs:

    NOT_STARTED -> RUNNING <-> PAUSED
                   RUNNING | PAUSED -> STOPPED

Every transition validates first and assigns afterwards, so a rejected
call leaves the ticket exactly as it was. ``now`` always comes from the
caller. The tracker is not safe to apply concurrently to the same ticket;
callers serialise per ticket (row lock or optimistic version).
"""

from datetime import datetime
from typing import Optional

from idesk.core.exceptions import ClockSkewError, InvalidStateTransition
from idesk.shared.infrastructure.logging import get_logger
from idesk.sla.domain.clock import SlaClock, require_aware
from idesk.sla.domain.entities import SlaState, SlaTransition, TicketSlaState
from idesk.sla.domain.policies import SlaPolicyStore, normalize_priority

logger = get_logger(__name__)


class SlaStateTracker:
    """Applies SLA clock transitions to TicketSlaState records."""

    def __init__(self, policy_store: SlaPolicyStore):
        self._policy_store = policy_store

    @staticmethod
    def _require(ticket: TicketSlaState, action: str, *allowed: SlaState) -> None:
        if ticket.sla_state not in allowed:
            raise InvalidStateTransition(action, ticket.sla_state.value, ticket.ticket_id)

    @staticmethod
    def _log(transition: SlaTransition) -> SlaTransition:
        logger.info(
            "SLA transition applied",
            extra={
                "ticket_id": transition.ticket_id,
                "action": transition.action,
                "from_state": transition.from_state.value,
                "to_state": transition.to_state.value,
                "paused_minutes_added": transition.paused_minutes_added,
            }
        )
        return transition

    def _closed_pause_minutes(self, ticket: TicketSlaState, now: datetime) -> int:
        paused_at = ticket.waiting_vendor_at
        if now < paused_at:
            raise ClockSkewError(ticket.ticket_id, paused_at, now)
        return SlaClock.elapsed_minutes(paused_at, now)

    def start(self, ticket: TicketSlaState, now: datetime) -> SlaTransition:
        """Start the clock; typically on the move to IN_PROGRESS."""
        require_aware(now, "now")
        self._require(ticket, "start", SlaState.NOT_STARTED)

        target = SlaClock.compute_first_response_target(
            now, ticket.priority, self._policy_store
        )

        ticket.sla_started_at = now
        if ticket.first_response_at is None:
            ticket.first_response_target = target
        ticket.sla_state = SlaState.RUNNING

        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="start",
            from_state=SlaState.NOT_STARTED,
            to_state=SlaState.RUNNING,
            at=now,
            note=f"SLA started, first response due {target.isoformat()}",
        ))

    def record_first_response(self, ticket: TicketSlaState, now: datetime) -> SlaTransition:
        """
        Stamp the first agent reply.

        A repeated call is tolerated (duplicate delivery) but never
        changes the stored value.
        """
        require_aware(now, "now")
        if ticket.first_response_at is not None:
            logger.warning(
                "First response already recorded, ignoring duplicate",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "first_response_at": ticket.first_response_at.isoformat(),
                    "duplicate_at": now.isoformat(),
                }
            )
            return SlaTransition(
                ticket_id=ticket.ticket_id,
                action="record_first_response",
                from_state=ticket.sla_state,
                to_state=ticket.sla_state,
                at=now,
            )

        self._require(ticket, "record_first_response", SlaState.RUNNING, SlaState.PAUSED)
        ticket.first_response_at = now

        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="record_first_response",
            from_state=ticket.sla_state,
            to_state=ticket.sla_state,
            at=now,
            note="First response recorded",
        ))

    def pause(self, ticket: TicketSlaState, now: datetime) -> SlaTransition:
        """Enter vendor wait. Pausing an already paused clock is rejected."""
        require_aware(now, "now")
        self._require(ticket, "pause", SlaState.RUNNING)

        ticket.waiting_vendor_at = now
        ticket.sla_state = SlaState.PAUSED

        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="pause",
            from_state=SlaState.RUNNING,
            to_state=SlaState.PAUSED,
            at=now,
            note="SLA paused (waiting for vendor)",
        ))

    def resume(self, ticket: TicketSlaState, now: datetime) -> SlaTransition:
        """
        Leave vendor wait and bank the paused minutes.

        Raises ClockSkewError when ``now`` precedes the pause start;
        the span is never clamped to zero.
        """
        require_aware(now, "now")
        self._require(ticket, "resume", SlaState.PAUSED)
        minutes = self._closed_pause_minutes(ticket, now)

        ticket.total_waiting_vendor_minutes += minutes
        ticket.waiting_vendor_at = None
        ticket.sla_state = SlaState.RUNNING

        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="resume",
            from_state=SlaState.PAUSED,
            to_state=SlaState.RUNNING,
            at=now,
            paused_minutes_added=minutes,
            note=f"SLA target adjusted by {minutes} minutes (paused duration)",
        ))

    def stop(self, ticket: TicketSlaState, now: datetime) -> SlaTransition:
        """Resolve or cancel. An open pause is closed and banked first."""
        require_aware(now, "now")
        self._require(ticket, "stop", SlaState.RUNNING, SlaState.PAUSED)
        from_state = ticket.sla_state

        minutes = 0
        if from_state == SlaState.PAUSED:
            minutes = self._closed_pause_minutes(ticket, now)

        ticket.total_waiting_vendor_minutes += minutes
        ticket.waiting_vendor_at = None
        ticket.resolved_at = now
        ticket.sla_state = SlaState.STOPPED

        note = "SLA stopped"
        if minutes:
            note += f", target adjusted by {minutes} minutes (paused duration)"
        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="stop",
            from_state=from_state,
            to_state=SlaState.STOPPED,
            at=now,
            paused_minutes_added=minutes,
            note=note,
        ))

    def change_priority(
        self,
        ticket: TicketSlaState,
        new_priority,
        now: Optional[datetime] = None
    ) -> SlaTransition:
        """
        Switch tier. Deadlines are derived, so only the priority and the
        cached first-response target (while still pending) change.
        """
        self._require(
            ticket, "change_priority",
            SlaState.NOT_STARTED, SlaState.RUNNING, SlaState.PAUSED
        )
        name = normalize_priority(new_priority)
        policy = self._policy_store.get(name)

        target = ticket.first_response_target
        if ticket.first_response_at is None:
            target = SlaClock.compute_first_response_target(
                ticket.sla_started_at, name, self._policy_store
            )

        old_priority = ticket.priority
        ticket.priority = name
        ticket.first_response_target = target

        return self._log(SlaTransition(
            ticket_id=ticket.ticket_id,
            action="change_priority",
            from_state=ticket.sla_state,
            to_state=ticket.sla_state,
            at=now or ticket.created_at,
            note=(
                f"Priority changed from {old_priority} to {name} "
                f"({policy.resolution_time_minutes} minutes resolution target)"
            ),
        ))

    def override_first_response_breach(
        self,
        ticket: TicketSlaState,
        breached: bool,
        now: Optional[datetime] = None
    ) -> SlaTransition:
        """Administrative override; the only way to clear the breach flag."""
        previous = ticket.is_first_response_breached
        ticket.is_first_response_breached = breached
        logger.warning(
            "First response breach flag overridden",
            extra={
                "ticket_id": ticket.ticket_id,
                "previous": previous,
                "breached": breached,
            }
        )
        return SlaTransition(
            ticket_id=ticket.ticket_id,
            action="override_first_response_breach",
            from_state=ticket.sla_state,
            to_state=ticket.sla_state,
            at=now or ticket.created_at,
            note=f"First response breach flag set to {breached} by administrator",
        )
