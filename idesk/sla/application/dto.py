"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from idesk.sla.domain import SlaEvent, SlaPolicy, SlaTransition


# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["TODO", "IN_PROGRESS", "WAITING_VENDOR", "RESOLVED", "CANCELLED"]
SlaStateStr = Literal["NOT_STARTED", "RUNNING", "PAUSED", "STOPPED"]
ClassificationStr = Literal[
    "ON_TRACK", "RESPONSE_AT_RISK", "RESPONSE_BREACHED",
    "RESOLUTION_AT_RISK", "RESOLUTION_BREACHED", "STOPPED"
]


def _aware(v: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from clients are read as UTC."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ========== Request DTOs ==========

class SlaPolicyUpsertRequest(BaseModel):
    """
    Body for creating or replacing a priority's targets.

    Positivity is checked by the policy store so that API and internal
    callers share one rule.
    """
    resolution_time_minutes: int = Field(..., description="Target minutes to resolution")
    response_time_minutes: int = Field(..., description="Target minutes to first response")


class StatusChangeRequest(BaseModel):
    """Ticket status change forwarded by the ticket update handler."""
    old_status: TicketStatusStr = Field(..., description="Status before the change")
    new_status: TicketStatusStr = Field(..., description="Status after the change")
    changed_at: Optional[datetime] = Field(None, description="When the change happened (defaults to now)")

    @field_validator("changed_at")
    @classmethod
    def validate_changed_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class FirstResponseRequest(BaseModel):
    """First agent reply notification."""
    responded_at: Optional[datetime] = Field(None, description="Reply timestamp (defaults to now)")

    @field_validator("responded_at")
    @classmethod
    def validate_responded_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class PriorityChangeRequest(BaseModel):
    """New priority for a ticket."""
    priority: str = Field(..., min_length=1, description="Priority tier name")


# ========== Response DTOs ==========

class SlaPolicyResponse(BaseModel):
    """One priority's time targets."""
    priority: str
    resolution_time_minutes: int
    response_time_minutes: int

    @classmethod
    def from_policy(cls, policy: SlaPolicy) -> "SlaPolicyResponse":
        return cls(
            priority=policy.priority,
            resolution_time_minutes=policy.resolution_time_minutes,
            response_time_minutes=policy.response_time_minutes,
        )


class SlaTransitionResponse(BaseModel):
    """One applied state-machine step."""
    ticket_id: str
    action: str
    from_state: SlaStateStr
    to_state: SlaStateStr
    at: datetime
    paused_minutes_added: int = 0
    note: str = ""

    @classmethod
    def from_transition(cls, transition: SlaTransition) -> "SlaTransitionResponse":
        return cls(
            ticket_id=transition.ticket_id,
            action=transition.action,
            from_state=transition.from_state.value,
            to_state=transition.to_state.value,
            at=transition.at,
            paused_minutes_added=transition.paused_minutes_added,
            note=transition.note,
        )


class TicketSlaStatusResponse(BaseModel):
    """Deadline view of a ticket."""
    ticket_id: str
    priority: str
    sla_state: SlaStateStr
    classification: ClassificationStr
    sla_started_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    first_response_target: Optional[datetime] = None
    is_first_response_breached: bool = False
    resolved_at: Optional[datetime] = None
    resolution_deadline: Optional[datetime] = None
    response_remaining_minutes: Optional[int] = None
    resolution_remaining_minutes: Optional[int] = None
    waiting_vendor_at: Optional[datetime] = None
    total_waiting_vendor_minutes: int = 0
    paused_minutes: int = 0
    evaluated_at: datetime


class SlaEventResponse(BaseModel):
    """Warning or breach event."""
    ticket_id: str
    event_type: str
    sla_type: str
    classification: ClassificationStr
    deadline: datetime
    detected_at: datetime
    remaining_minutes: int
    title: str
    message: str

    @classmethod
    def from_event(cls, event: SlaEvent) -> "SlaEventResponse":
        return cls(
            ticket_id=event.ticket_id,
            event_type=event.event_type.value,
            sla_type=event.sla_type.value,
            classification=event.classification.value,
            deadline=event.deadline,
            detected_at=event.detected_at,
            remaining_minutes=event.remaining_minutes,
            title=event.title(),
            message=event.message(),
        )


class EvaluationSummaryResponse(BaseModel):
    """Result of an evaluation pass."""
    tickets_evaluated: int
    classifications: Dict[str, int] = Field(default_factory=dict)
    events: List[SlaEventResponse] = Field(default_factory=list)
