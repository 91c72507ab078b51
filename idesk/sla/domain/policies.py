"""
SLA Policy Store
================

Authoritative in-memory mapping from priority tier to time targets.

The store is an explicit object: build one at startup, seed it once with
``reset_to_defaults()`` when the persisted policy table is empty, and pass
it to every consumer. Persistence is layered on top by the application
service, the store itself has no I/O.
"""

from typing import Dict, Iterable, List

from idesk.config import BUILTIN_PRIORITIES
from idesk.core.exceptions import ConflictError, PolicyNotFoundError, ValidationError
from idesk.sla.domain.value_objects import DEFAULT_POLICIES, SlaPolicy

_BUILTIN_NAMES = frozenset(p.value for p in BUILTIN_PRIORITIES)


def normalize_priority(priority) -> str:
    """Canonical spelling of a priority name (enum members included)."""
    value = getattr(priority, "value", priority)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            "priority must be a non-empty string",
            {"priority": repr(priority)}
        )
    return value.strip().upper()


def is_builtin_priority(priority) -> bool:
    return normalize_priority(priority) in _BUILTIN_NAMES


def _validate_minutes(name: str, value) -> int:
    # bool is an int subclass, True must not pass as one minute
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            f"{name} must be a positive integer",
            {name: value}
        )
    return value


class SlaPolicyStore:
    """Holds exactly one policy per priority name."""

    def __init__(self, policies: Iterable[SlaPolicy] = ()):
        self._policies: Dict[str, SlaPolicy] = {}
        self.load(policies)

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, priority) -> bool:
        try:
            return normalize_priority(priority) in self._policies
        except ValidationError:
            return False

    def is_empty(self) -> bool:
        return not self._policies

    def load(self, policies: Iterable[SlaPolicy]) -> None:
        """Replace the contents with already-persisted policies."""
        loaded: Dict[str, SlaPolicy] = {}
        for policy in policies:
            name = normalize_priority(policy.priority)
            loaded[name] = SlaPolicy(
                priority=name,
                resolution_time_minutes=_validate_minutes(
                    "resolution_time_minutes", policy.resolution_time_minutes
                ),
                response_time_minutes=_validate_minutes(
                    "response_time_minutes", policy.response_time_minutes
                ),
            )
        self._policies = loaded

    def get_all(self) -> List[SlaPolicy]:
        """All policies, most lenient (longest resolution time) first."""
        return sorted(
            self._policies.values(),
            key=lambda p: (-p.resolution_time_minutes, p.priority)
        )

    def get(self, priority) -> SlaPolicy:
        name = normalize_priority(priority)
        try:
            return self._policies[name]
        except KeyError:
            raise PolicyNotFoundError(name) from None

    def upsert(
        self,
        priority,
        resolution_time_minutes: int,
        response_time_minutes: int
    ) -> SlaPolicy:
        """
        Create or replace the policy for ``priority``.

        Tickets of that priority pick the new targets up on their next
        deadline read; nothing is cascaded.
        """
        name = normalize_priority(priority)
        policy = SlaPolicy(
            priority=name,
            resolution_time_minutes=_validate_minutes(
                "resolution_time_minutes", resolution_time_minutes
            ),
            response_time_minutes=_validate_minutes(
                "response_time_minutes", response_time_minutes
            ),
        )
        self._policies[name] = policy
        return policy

    def reset_to_defaults(self) -> List[SlaPolicy]:
        """
        Drop every policy, custom tiers included, and reseed the built-ins.
        """
        self._policies = dict(DEFAULT_POLICIES)
        return self.get_all()

    def remove(self, priority) -> SlaPolicy:
        name = normalize_priority(priority)
        if name in _BUILTIN_NAMES:
            raise ConflictError(
                f"Built-in priority {name} cannot be removed",
                {"priority": name}
            )
        try:
            return self._policies.pop(name)
        except KeyError:
            raise PolicyNotFoundError(name) from None
