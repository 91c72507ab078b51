"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: TicketSlaState and the transition record
- Value Objects: SlaPolicy, BreachThresholds, SlaEvent
- Domain Services: SlaPolicyStore, SlaClock, SlaStateTracker, BreachEvaluator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from idesk.sla.domain.entities import (
    SlaClassification,
    SlaState,
    SlaTransition,
    TicketSlaState,
)
from idesk.sla.domain.value_objects import (
    DEFAULT_POLICIES,
    BreachThresholds,
    SlaEvent,
    SlaPolicy,
)
from idesk.sla.domain.policies import SlaPolicyStore, normalize_priority, is_builtin_priority
from idesk.sla.domain.clock import SlaClock
from idesk.sla.domain.tracker import SlaStateTracker
from idesk.sla.domain.evaluator import BreachEvaluator, Evaluation

__all__ = [
    # Entities
    "SlaClassification",
    "SlaState",
    "SlaTransition",
    "TicketSlaState",
    # Value Objects
    "DEFAULT_POLICIES",
    "BreachThresholds",
    "SlaEvent",
    "SlaPolicy",
    # Domain Services
    "SlaPolicyStore",
    "normalize_priority",
    "is_builtin_priority",
    "SlaClock",
    "SlaStateTracker",
    "BreachEvaluator",
    "Evaluation",
]
