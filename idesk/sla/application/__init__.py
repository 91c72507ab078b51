"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from idesk.sla.application.dto import (
    SlaPolicyUpsertRequest,
    StatusChangeRequest,
    FirstResponseRequest,
    PriorityChangeRequest,
    SlaPolicyResponse,
    SlaTransitionResponse,
    TicketSlaStatusResponse,
    SlaEventResponse,
    EvaluationSummaryResponse,
)
from idesk.sla.application.services import (
    SlaPolicyService,
    SlaTicketService,
    SlaMonitorService,
    SlaEventOutbox,
    TicketSlaStatus,
    EvaluationSummary,
    ISlaPolicyRepository,
    ITicketSlaRepository,
    ISlaEventRepository,
    IThresholdProvider,
)

__all__ = [
    # DTOs
    "SlaPolicyUpsertRequest",
    "StatusChangeRequest",
    "FirstResponseRequest",
    "PriorityChangeRequest",
    "SlaPolicyResponse",
    "SlaTransitionResponse",
    "TicketSlaStatusResponse",
    "SlaEventResponse",
    "EvaluationSummaryResponse",
    # Services
    "SlaPolicyService",
    "SlaTicketService",
    "SlaMonitorService",
    "SlaEventOutbox",
    "TicketSlaStatus",
    "EvaluationSummary",
    # Repository Interfaces
    "ISlaPolicyRepository",
    "ITicketSlaRepository",
    "ISlaEventRepository",
    "IThresholdProvider",
]
