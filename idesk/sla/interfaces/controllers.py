"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA policy administration and per-ticket SLA hooks.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from idesk.infrastructure.database import get_session
from idesk.shared.infrastructure.logging import get_logger
from idesk.sla.application import (
    EvaluationSummaryResponse,
    FirstResponseRequest,
    ISlaEventRepository,
    IThresholdProvider,
    PriorityChangeRequest,
    SlaEventOutbox,
    SlaEventResponse,
    SlaMonitorService,
    SlaPolicyResponse,
    SlaPolicyService,
    SlaPolicyUpsertRequest,
    SlaTicketService,
    SlaTransitionResponse,
    StatusChangeRequest,
    TicketSlaStatus,
    TicketSlaStatusResponse,
)
from idesk.sla.domain import BreachEvaluator, SlaPolicyStore, SlaStateTracker
from idesk.sla.infrastructure import (
    SqlAlchemySlaEventRepository,
    SqlAlchemySlaPolicyRepository,
    SqlAlchemyTicketSlaRepository,
)

logger = get_logger(__name__)

config_router = APIRouter(prefix="/sla-config", tags=["SLA Configuration"])
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])


def _now(value: Optional[datetime] = None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ========== Dependencies ==========

def get_policy_store(request: Request) -> SlaPolicyStore:
    return request.app.state.policy_store


def get_threshold_provider(request: Request) -> Optional[IThresholdProvider]:
    return getattr(request.app.state, "config_manager", None)


def build_monitor_service(
    session: AsyncSession,
    policy_store: SlaPolicyStore,
    threshold_provider: Optional[IThresholdProvider] = None
) -> SlaMonitorService:
    """
    Wire a monitor with its own outbox.

    Shared by the evaluate endpoint and the scheduler job so concurrent
    passes never drain each other's events.
    """
    outbox = SlaEventOutbox()
    evaluator = BreachEvaluator(policy_store, event_sink=outbox)
    return SlaMonitorService(
        SqlAlchemyTicketSlaRepository(session),
        SqlAlchemySlaEventRepository(session),
        evaluator,
        outbox,
        threshold_provider,
    )


async def get_policy_service(
    policy_store: SlaPolicyStore = Depends(get_policy_store),
    session: AsyncSession = Depends(get_session)
) -> SlaPolicyService:
    return SlaPolicyService(policy_store, SqlAlchemySlaPolicyRepository(session))


async def get_ticket_service(
    request: Request,
    policy_store: SlaPolicyStore = Depends(get_policy_store),
    threshold_provider: Optional[IThresholdProvider] = Depends(get_threshold_provider),
    session: AsyncSession = Depends(get_session)
) -> SlaTicketService:
    evaluator = BreachEvaluator(
        policy_store,
        thresholds=threshold_provider.get_thresholds() if threshold_provider else None
    )
    return SlaTicketService(
        SqlAlchemyTicketSlaRepository(session),
        request.app.state.tracker,
        evaluator,
        policy_store,
    )


async def get_monitor_service(
    policy_store: SlaPolicyStore = Depends(get_policy_store),
    threshold_provider: Optional[IThresholdProvider] = Depends(get_threshold_provider),
    session: AsyncSession = Depends(get_session)
) -> SlaMonitorService:
    return build_monitor_service(session, policy_store, threshold_provider)


async def get_event_repository(
    session: AsyncSession = Depends(get_session)
) -> ISlaEventRepository:
    return SqlAlchemySlaEventRepository(session)


def _status_response(sla_status: TicketSlaStatus) -> TicketSlaStatusResponse:
    ticket = sla_status.ticket
    return TicketSlaStatusResponse(
        ticket_id=ticket.ticket_id,
        priority=ticket.priority,
        sla_state=ticket.sla_state.value,
        classification=sla_status.classification.value,
        sla_started_at=ticket.sla_started_at,
        first_response_at=ticket.first_response_at,
        first_response_target=sla_status.first_response_target,
        is_first_response_breached=ticket.is_first_response_breached,
        resolved_at=ticket.resolved_at,
        resolution_deadline=sla_status.resolution_deadline,
        response_remaining_minutes=sla_status.response_remaining_minutes,
        resolution_remaining_minutes=sla_status.resolution_remaining_minutes,
        waiting_vendor_at=ticket.waiting_vendor_at,
        total_waiting_vendor_minutes=ticket.total_waiting_vendor_minutes,
        paused_minutes=sla_status.paused_minutes,
        evaluated_at=sla_status.evaluated_at,
    )


# ========== Policy administration ==========

@config_router.get(
    "",
    response_model=List[SlaPolicyResponse],
    summary="List SLA policies",
    description="All priority tiers, longest resolution target first."
)
async def list_policies(
    service: SlaPolicyService = Depends(get_policy_service)
) -> List[SlaPolicyResponse]:
    return [SlaPolicyResponse.from_policy(p) for p in await service.list_policies()]


@config_router.put(
    "/{priority}",
    response_model=SlaPolicyResponse,
    summary="Create or replace a priority's SLA targets",
    description="""
    Targets are whole positive minutes. Changes apply to deadlines computed
    from now on; stored tickets are not rewritten.
    """
)
async def upsert_policy(
    priority: str,
    body: SlaPolicyUpsertRequest,
    service: SlaPolicyService = Depends(get_policy_service)
) -> SlaPolicyResponse:
    policy = await service.upsert_policy(
        priority, body.resolution_time_minutes, body.response_time_minutes
    )
    return SlaPolicyResponse.from_policy(policy)


@config_router.delete(
    "/{priority}",
    response_model=SlaPolicyResponse,
    summary="Remove a custom priority",
    description="Built-in priorities (LOW, MEDIUM, HIGH, CRITICAL) cannot be removed."
)
async def remove_policy(
    priority: str,
    service: SlaPolicyService = Depends(get_policy_service)
) -> SlaPolicyResponse:
    return SlaPolicyResponse.from_policy(await service.remove_policy(priority))


@config_router.post(
    "/reset",
    response_model=List[SlaPolicyResponse],
    summary="Reset SLA policies to the defaults"
)
async def reset_policies(
    service: SlaPolicyService = Depends(get_policy_service)
) -> List[SlaPolicyResponse]:
    return [SlaPolicyResponse.from_policy(p) for p in await service.reset_defaults()]


# ========== Ticket SLA ==========

@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSlaStatusResponse,
    summary="Get a ticket's SLA deadlines",
    description="Deadlines are derived from the current policy at read time."
)
async def get_ticket_sla(
    ticket_id: str,
    at: Optional[datetime] = Query(None, description="Evaluate as of this instant (defaults to now)"),
    service: SlaTicketService = Depends(get_ticket_service)
) -> TicketSlaStatusResponse:
    return _status_response(await service.get_status(ticket_id, _now(at)))


@router.post(
    "/tickets/{ticket_id}/status",
    response_model=List[SlaTransitionResponse],
    summary="Apply a ticket status change to the SLA clock",
    description="""
    - IN_PROGRESS starts or resumes the clock
    - WAITING_VENDOR pauses it, starting it first if needed
    - RESOLVED and CANCELLED stop it
    - TODO has no SLA effect
    """
)
async def change_status(
    ticket_id: str,
    body: StatusChangeRequest,
    service: SlaTicketService = Depends(get_ticket_service)
) -> List[SlaTransitionResponse]:
    transitions = await service.apply_status_change(
        ticket_id, body.old_status, body.new_status, _now(body.changed_at)
    )
    return [SlaTransitionResponse.from_transition(t) for t in transitions]


@router.post(
    "/tickets/{ticket_id}/first-response",
    response_model=SlaTransitionResponse,
    summary="Record the first agent reply"
)
async def record_first_response(
    ticket_id: str,
    body: Optional[FirstResponseRequest] = None,
    service: SlaTicketService = Depends(get_ticket_service)
) -> SlaTransitionResponse:
    responded_at = body.responded_at if body else None
    transition = await service.record_first_response(ticket_id, _now(responded_at))
    return SlaTransitionResponse.from_transition(transition)


@router.post(
    "/tickets/{ticket_id}/priority",
    response_model=SlaTransitionResponse,
    summary="Change a ticket's priority",
    description="Re-targets the first response deadline while no reply has been recorded."
)
async def change_priority(
    ticket_id: str,
    body: PriorityChangeRequest,
    service: SlaTicketService = Depends(get_ticket_service)
) -> SlaTransitionResponse:
    transition = await service.change_priority(ticket_id, body.priority, _now())
    return SlaTransitionResponse.from_transition(transition)


@router.get(
    "/tickets/{ticket_id}/events",
    response_model=List[SlaEventResponse],
    summary="List warning and breach events for a ticket"
)
async def list_ticket_events(
    ticket_id: str,
    repository: ISlaEventRepository = Depends(get_event_repository)
) -> List[SlaEventResponse]:
    return [SlaEventResponse.from_event(e) for e in await repository.list_for_ticket(ticket_id)]


@router.post(
    "/evaluate",
    response_model=EvaluationSummaryResponse,
    status_code=status.HTTP_200_OK,
    summary="Run an SLA evaluation pass now",
    description="Same pass the scheduler runs; events are recorded once per transition."
)
async def evaluate_now(
    at: Optional[datetime] = Query(None, description="Evaluate as of this instant (defaults to now)"),
    service: SlaMonitorService = Depends(get_monitor_service)
) -> EvaluationSummaryResponse:
    summary = await service.run(_now(at))
    return EvaluationSummaryResponse(
        tickets_evaluated=summary.tickets_evaluated,
        classifications=summary.classifications,
        events=[SlaEventResponse.from_event(e) for e in summary.events],
    )
