"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from idesk.config import SlaEventType, SlaType, TicketPriority
from idesk.sla.domain.entities import SlaClassification


@dataclass(frozen=True)
class SlaPolicy:
    """Time targets for one priority tier, in minutes."""
    priority: str
    resolution_time_minutes: int
    response_time_minutes: int


DEFAULT_POLICIES: Dict[str, SlaPolicy] = {
    TicketPriority.LOW.value: SlaPolicy(TicketPriority.LOW.value, 48 * 60, 24 * 60),
    TicketPriority.MEDIUM.value: SlaPolicy(TicketPriority.MEDIUM.value, 24 * 60, 8 * 60),
    TicketPriority.HIGH.value: SlaPolicy(TicketPriority.HIGH.value, 8 * 60, 4 * 60),
    TicketPriority.CRITICAL.value: SlaPolicy(TicketPriority.CRITICAL.value, 2 * 60, 1 * 60),
}


class BreachThresholds(BaseModel):
    """
    Lead windows for at-risk warnings, loaded from YAML.

    Each window is a percentage of the policy target: with 20% and a
    240 minute response target, the ticket turns at-risk 48 minutes
    before the response deadline.
    """
    response_at_risk_percent: float = Field(
        default=20.0,
        ge=0,
        le=100,
        description="Lead window before the first-response target, as % of the response time"
    )
    resolution_at_risk_percent: float = Field(
        default=20.0,
        ge=0,
        le=100,
        description="Lead window before the resolution deadline, as % of the resolution time"
    )

    def response_lead_seconds(self, response_time_minutes: int) -> float:
        return response_time_minutes * 60 * self.response_at_risk_percent / 100

    def resolution_lead_seconds(self, resolution_time_minutes: int) -> float:
        return resolution_time_minutes * 60 * self.resolution_at_risk_percent / 100


def format_minutes(minutes: int) -> str:
    """Render a minute count the way notifications show it: ``1d 2h 5m``."""
    if minutes <= 0:
        return "0m"
    days, rest = divmod(minutes, 24 * 60)
    hours, mins = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if mins:
        parts.append(f"{mins}m")
    return " ".join(parts)


@dataclass(frozen=True)
class SlaEvent:
    """
    Warning or breach raised for one ticket and one clock.

    Consumed by the notification dispatcher; the engine itself only
    records and logs these.
    """
    ticket_id: str
    event_type: SlaEventType
    sla_type: SlaType
    classification: SlaClassification
    deadline: datetime
    detected_at: datetime
    remaining_minutes: int = 0
    id: Optional[str] = None

    @property
    def is_breach(self) -> bool:
        return self.event_type == SlaEventType.SLA_BREACHED

    def title(self) -> str:
        return "SLA Breached" if self.is_breach else "SLA Warning"

    def message(self) -> str:
        """Notification body text."""
        target = "first response" if self.sla_type == SlaType.RESPONSE else "resolution"
        if self.is_breach:
            return f"Ticket #{self.ticket_id} has breached its SLA target ({target})"
        return (
            f"Ticket #{self.ticket_id} SLA will expire in "
            f"{format_minutes(self.remaining_minutes)} ({target})"
        )
