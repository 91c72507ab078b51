"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConflictException(ApplicationException):
    """Exception when an operation conflicts with protected state."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class PolicyNotFoundError(ResourceNotFoundException):
    """No SLA policy exists for the requested priority."""

    def __init__(self, priority: str):
        self.priority = priority
        super().__init__("SLA policy", priority, {"priority": priority})


class TicketNotFoundError(ResourceNotFoundException):
    """No SLA record exists for the requested ticket."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__("Ticket", ticket_id, {"ticket_id": ticket_id})


class InvalidStateTransition(DomainException):
    """
    An SLA transition was requested from a state that does not allow it.

    Never retried automatically: the caller must re-derive the intended
    state or surface the error to an operator.
    """

    def __init__(
        self,
        action: str,
        current_state: str,
        ticket_id: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.action = action
        self.current_state = current_state
        self.ticket_id = ticket_id
        super().__init__(
            message or f"Cannot {action} SLA clock in state {current_state}",
            details or {
                "ticket_id": ticket_id,
                "action": action,
                "current_state": current_state,
            }
        )


class ClockSkewError(InvalidStateTransition):
    """A resume was stamped earlier than the pause it closes."""

    def __init__(self, ticket_id: Optional[str], paused_at, resumed_at):
        self.paused_at = paused_at
        self.resumed_at = resumed_at
        super().__init__(
            "resume",
            "PAUSED",
            ticket_id,
            message=(
                f"Resume at {resumed_at.isoformat()} precedes pause at "
                f"{paused_at.isoformat()}"
            ),
            details={
                "ticket_id": ticket_id,
                "paused_at": paused_at.isoformat(),
                "resumed_at": resumed_at.isoformat(),
            }
        )


# Names used throughout the SLA engine
ValidationError = ValidationException
ConflictError = ConflictException
