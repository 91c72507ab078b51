"""
SLA Clock
=========

Pure deadline arithmetic. Nothing here keeps state or reads the system
clock: every instant, ``now`` included, is supplied by the caller.
"""

from datetime import datetime, timedelta
from typing import Optional

from idesk.core.exceptions import ValidationError
from idesk.sla.domain.entities import TicketSlaState
from idesk.sla.domain.policies import SlaPolicyStore


def require_aware(value: datetime, name: str) -> datetime:
    """Reject naive datetimes; comparisons are on absolute instants only."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(
            f"{name} must be timezone-aware",
            {name: value.isoformat()}
        )
    return value


class SlaClock:
    """
    Stateless utility class, all SLA deadline calculation in one place.
    """

    @staticmethod
    def elapsed_minutes(start: datetime, end: datetime) -> int:
        """
        Whole minutes from ``start`` to ``end``, floored.

        Negative spans come back negative so the caller can reject them.
        """
        seconds = (end - start).total_seconds()
        return int(seconds // 60)

    @staticmethod
    def open_pause_minutes(ticket: TicketSlaState, now: datetime) -> int:
        """Minutes spent in the currently open vendor wait, if any."""
        if ticket.waiting_vendor_at is None:
            return 0
        return max(0, SlaClock.elapsed_minutes(ticket.waiting_vendor_at, now))

    @staticmethod
    def compute_first_response_target(
        sla_started_at: Optional[datetime],
        priority: str,
        policy_store: SlaPolicyStore
    ) -> Optional[datetime]:
        """
        Instant by which the first agent reply is due.

        Returns None while the clock has not started.
        """
        if sla_started_at is None:
            return None
        require_aware(sla_started_at, "sla_started_at")
        policy = policy_store.get(priority)
        return sla_started_at + timedelta(minutes=policy.response_time_minutes)

    @staticmethod
    def compute_resolution_deadline(
        ticket: TicketSlaState,
        policy_store: SlaPolicyStore,
        now: datetime
    ) -> Optional[datetime]:
        """
        Instant by which the ticket should be resolved.

        Formula: start + resolution target + accumulated vendor wait
        + the open vendor wait measured up to ``now``. While paused the
        deadline therefore slides forward with ``now``.
        """
        if ticket.sla_started_at is None:
            return None
        require_aware(ticket.sla_started_at, "sla_started_at")
        require_aware(now, "now")

        policy = policy_store.get(ticket.priority)
        paused = ticket.total_waiting_vendor_minutes + SlaClock.open_pause_minutes(ticket, now)
        return ticket.sla_started_at + timedelta(
            minutes=policy.resolution_time_minutes + paused
        )

    @staticmethod
    def remaining_minutes(deadline: Optional[datetime], now: datetime) -> Optional[int]:
        """Whole minutes left before ``deadline``; negative once overdue."""
        if deadline is None:
            return None
        return SlaClock.elapsed_minutes(now, deadline)
