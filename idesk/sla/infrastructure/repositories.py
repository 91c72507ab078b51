"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the repository interfaces using SQLAlchemy.

Each repository works inside the caller's session; committing is the
session owner's job (see ``idesk.infrastructure.database``).
"""

from typing import List, Optional, Sequence

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from idesk.core import RepositoryException
from idesk.shared.infrastructure.logging import get_logger
from idesk.sla.application.services import (
    ISlaEventRepository,
    ISlaPolicyRepository,
    ITicketSlaRepository,
)
from idesk.sla.domain import (
    SlaClassification,
    SlaEvent,
    SlaPolicy,
    SlaState,
    TicketSlaState,
)
from idesk.config import SlaEventType, SlaType
from idesk.sla.infrastructure.models import SlaEventModel, SlaPolicyModel, TicketSlaModel

logger = get_logger(__name__)


class SqlAlchemySlaPolicyRepository(ISlaPolicyRepository):
    """Persists the policy table backing the in-memory store."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_all(self) -> List[SlaPolicy]:
        result = await self._session.execute(select(SlaPolicyModel))
        return [
            SlaPolicy(
                priority=row.priority,
                resolution_time_minutes=row.resolution_time_minutes,
                response_time_minutes=row.response_time_minutes,
            )
            for row in result.scalars().all()
        ]

    async def save(self, policy: SlaPolicy) -> None:
        try:
            model = await self._session.get(SlaPolicyModel, policy.priority)
            if model is None:
                model = SlaPolicyModel(priority=policy.priority)
                self._session.add(model)
            model.resolution_time_minutes = policy.resolution_time_minutes
            model.response_time_minutes = policy.response_time_minutes
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to save SLA policy {policy.priority}", {"error": str(e)}
            ) from e

    async def delete(self, priority: str) -> None:
        await self._session.execute(
            delete(SlaPolicyModel).where(SlaPolicyModel.priority == priority)
        )
        await self._session.flush()

    async def replace_all(self, policies: Sequence[SlaPolicy]) -> None:
        try:
            await self._session.execute(delete(SlaPolicyModel))
            self._session.add_all([
                SlaPolicyModel(
                    priority=p.priority,
                    resolution_time_minutes=p.resolution_time_minutes,
                    response_time_minutes=p.response_time_minutes,
                )
                for p in policies
            ])
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to replace SLA policies", {"error": str(e)}) from e


class SqlAlchemyTicketSlaRepository(ITicketSlaRepository):
    """
    Reads and writes the SLA columns of the tickets table.

    ``get_for_update`` takes a row lock held until the session's
    transaction ends, which serialises concurrent transitions on one
    ticket.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: TicketSlaModel) -> TicketSlaState:
        ticket = TicketSlaState(
            ticket_id=model.id,
            priority=model.priority,
            created_at=model.created_at,
            sla_started_at=model.sla_started_at,
            first_response_at=model.first_response_at,
            first_response_target=model.first_response_target,
            is_first_response_breached=bool(model.is_first_response_breached),
            resolved_at=model.resolved_at,
            waiting_vendor_at=model.waiting_vendor_at,
            total_waiting_vendor_minutes=model.total_waiting_vendor_minutes or 0,
            last_classification=(
                SlaClassification(model.last_classification)
                if model.last_classification else None
            ),
        )
        # Legacy rows carry no explicit tag
        ticket.sla_state = SlaState(model.sla_state) if model.sla_state else ticket.derive_state()
        return ticket

    @staticmethod
    def _apply(model: TicketSlaModel, ticket: TicketSlaState) -> None:
        model.priority = ticket.priority
        model.sla_state = ticket.sla_state.value
        model.sla_started_at = ticket.sla_started_at
        model.first_response_at = ticket.first_response_at
        model.first_response_target = ticket.first_response_target
        model.is_first_response_breached = ticket.is_first_response_breached
        model.resolved_at = ticket.resolved_at
        model.waiting_vendor_at = ticket.waiting_vendor_at
        model.total_waiting_vendor_minutes = ticket.total_waiting_vendor_minutes
        model.last_classification = (
            ticket.last_classification.value if ticket.last_classification else None
        )

    async def get(self, ticket_id: str) -> Optional[TicketSlaState]:
        model = await self._session.get(TicketSlaModel, ticket_id)
        return self._to_domain(model) if model else None

    async def get_for_update(self, ticket_id: str) -> Optional[TicketSlaState]:
        stmt = (
            select(TicketSlaModel)
            .where(TicketSlaModel.id == ticket_id)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def save(self, ticket: TicketSlaState) -> None:
        try:
            model = await self._session.get(TicketSlaModel, ticket.ticket_id)
            if model is None:
                model = TicketSlaModel(id=ticket.ticket_id, created_at=ticket.created_at)
                self._session.add(model)
            self._apply(model, ticket)
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist ticket SLA state",
                extra={"ticket_id": ticket.ticket_id, "error": str(e)}
            )
            raise RepositoryException(
                f"Failed to save SLA state for ticket {ticket.ticket_id}", {"error": str(e)}
            ) from e

    async def list_active(self) -> List[TicketSlaState]:
        """Tickets whose SLA has started and not yet stopped."""
        stmt = (
            select(TicketSlaModel)
            .where(
                and_(
                    TicketSlaModel.sla_started_at.is_not(None),
                    TicketSlaModel.resolved_at.is_(None),
                    or_(
                        TicketSlaModel.sla_state.is_(None),
                        TicketSlaModel.sla_state != SlaState.STOPPED.value,
                    ),
                )
            )
            .order_by(TicketSlaModel.sla_started_at.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def save_evaluation(
        self,
        ticket_id: str,
        last_classification: SlaClassification,
        first_response_breached: bool
    ) -> None:
        values = {"last_classification": last_classification.value}
        if first_response_breached:
            values["is_first_response_breached"] = True
        try:
            await self._session.execute(
                update(TicketSlaModel)
                .where(TicketSlaModel.id == ticket_id)
                .values(**values)
            )
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist SLA evaluation",
                extra={"ticket_id": ticket_id, "error": str(e)}
            )
            raise RepositoryException(
                f"Failed to save SLA evaluation for ticket {ticket_id}", {"error": str(e)}
            ) from e


class SqlAlchemySlaEventRepository(ISlaEventRepository):
    """Append-only store of emitted warning and breach events."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add_many(self, events: Sequence[SlaEvent]) -> None:
        self._session.add_all([
            SlaEventModel(
                ticket_id=event.ticket_id,
                event_type=event.event_type.value,
                sla_type=event.sla_type.value,
                classification=event.classification.value,
                deadline=event.deadline,
                detected_at=event.detected_at,
                remaining_minutes=event.remaining_minutes,
            )
            for event in events
        ])
        await self._session.flush()

    async def list_for_ticket(self, ticket_id: str) -> List[SlaEvent]:
        stmt = (
            select(SlaEventModel)
            .where(SlaEventModel.ticket_id == ticket_id)
            .order_by(SlaEventModel.detected_at.asc())
        )
        result = await self._session.execute(stmt)
        return [
            SlaEvent(
                id=str(model.id),
                ticket_id=model.ticket_id,
                event_type=SlaEventType(model.event_type),
                sla_type=SlaType(model.sla_type),
                classification=SlaClassification(model.classification),
                deadline=model.deadline,
                detected_at=model.detected_at,
                remaining_minutes=model.remaining_minutes,
            )
            for model in result.scalars().all()
        ]
