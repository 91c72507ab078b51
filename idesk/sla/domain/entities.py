"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SlaState(str, Enum):
    """Where a ticket's resolution clock is in its lifecycle."""
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class SlaClassification(str, Enum):
    """Outcome of checking a ticket against its deadlines."""
    ON_TRACK = "ON_TRACK"
    RESPONSE_AT_RISK = "RESPONSE_AT_RISK"
    RESPONSE_BREACHED = "RESPONSE_BREACHED"
    RESOLUTION_AT_RISK = "RESOLUTION_AT_RISK"
    RESOLUTION_BREACHED = "RESOLUTION_BREACHED"
    STOPPED = "STOPPED"

    @property
    def is_breached(self) -> bool:
        return self in (
            SlaClassification.RESPONSE_BREACHED,
            SlaClassification.RESOLUTION_BREACHED,
        )

    @property
    def is_at_risk(self) -> bool:
        return self in (
            SlaClassification.RESPONSE_AT_RISK,
            SlaClassification.RESOLUTION_AT_RISK,
        )


@dataclass
class TicketSlaState:
    """
    SLA fields embedded in a ticket.

    Deadlines are never stored authoritatively: they are derived from
    these fields plus the policy in force at read time. The only cached
    deadline, ``first_response_target``, mirrors the indexed column of
    the tickets table and is refreshed whenever the start time or the
    priority changes before a first response exists.
    """

    ticket_id: str
    priority: str
    created_at: datetime

    sla_state: SlaState = SlaState.NOT_STARTED
    sla_started_at: Optional[datetime] = None

    first_response_at: Optional[datetime] = None
    first_response_target: Optional[datetime] = None
    is_first_response_breached: bool = False

    resolved_at: Optional[datetime] = None

    waiting_vendor_at: Optional[datetime] = None
    total_waiting_vendor_minutes: int = 0

    # De-duplication key owned by the caller, see BreachEvaluator
    last_classification: Optional[SlaClassification] = None

    def __post_init__(self):
        if self.total_waiting_vendor_minutes < 0:
            raise ValueError("total_waiting_vendor_minutes cannot be negative")

    @property
    def is_paused(self) -> bool:
        return self.sla_state == SlaState.PAUSED

    @property
    def is_stopped(self) -> bool:
        return self.sla_state == SlaState.STOPPED

    @property
    def awaiting_first_response(self) -> bool:
        return self.first_response_at is None

    def derive_state(self) -> SlaState:
        """
        Recover the clock state from the nullable timestamp columns.

        Used for rows persisted before the explicit state tag existed.
        """
        if self.resolved_at is not None:
            return SlaState.STOPPED
        if self.sla_started_at is None:
            return SlaState.NOT_STARTED
        if self.waiting_vendor_at is not None:
            return SlaState.PAUSED
        return SlaState.RUNNING


@dataclass(frozen=True)
class SlaTransition:
    """
    Record of a single state-machine step.

    ``note`` is the line appended to the ticket history by the caller.
    """

    ticket_id: str
    action: str
    from_state: SlaState
    to_state: SlaState
    at: datetime
    paused_minutes_added: int = 0
    note: str = ""

    @property
    def changed(self) -> bool:
        return self.from_state != self.to_state or self.paused_minutes_added > 0 or bool(self.note)
