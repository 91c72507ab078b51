"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Threshold config watcher and evaluation scheduler
"""

from idesk.sla.infrastructure.models import SlaPolicyModel, TicketSlaModel, SlaEventModel
from idesk.sla.infrastructure.repositories import (
    SqlAlchemySlaPolicyRepository,
    SqlAlchemyTicketSlaRepository,
    SqlAlchemySlaEventRepository,
)
from idesk.sla.infrastructure.external import SlaConfigManager, SlaScheduler

__all__ = [
    "SlaPolicyModel",
    "TicketSlaModel",
    "SlaEventModel",
    "SqlAlchemySlaPolicyRepository",
    "SqlAlchemyTicketSlaRepository",
    "SqlAlchemySlaEventRepository",
    "SlaConfigManager",
    "SlaScheduler",
]
