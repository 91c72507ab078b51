"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of the domain objects; mapping
to and from the domain happens in the repositories.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from idesk.infrastructure.database import Base


class SlaPolicyModel(Base):
    """
    One row per priority tier.

    Maps to the 'sla_configs' table.
    """
    __tablename__ = "sla_configs"

    priority: Mapped[str] = mapped_column(String(50), primary_key=True)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class TicketSlaModel(Base):
    """
    SLA columns of a ticket.

    Maps to the 'tickets' table. ``sla_state`` is nullable for rows written
    before the explicit tag existed; those are recovered from timestamps.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    sla_state: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    sla_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    first_response_target: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_first_response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    waiting_vendor_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_waiting_vendor_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_classification: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    __table_args__ = (
        Index("idx_tickets_sla_started_at", "sla_started_at"),
        Index("idx_tickets_first_response_target", "first_response_target"),
        Index("idx_tickets_is_first_response_breached", "is_first_response_breached"),
    )


class SlaEventModel(Base):
    """
    Warning or breach event.

    Maps to the 'sla_events' table.
    """
    __tablename__ = "sla_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    event_type: Mapped[str] = mapped_column(String(30), nullable=False)  # SLA_WARNING or SLA_BREACHED
    sla_type: Mapped[str] = mapped_column(String(20), nullable=False)  # response or resolution
    classification: Mapped[str] = mapped_column(String(30), nullable=False)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    remaining_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
