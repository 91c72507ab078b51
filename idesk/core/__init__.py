"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from idesk.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ValidationError,
    ConflictException,
    ConflictError,
    ResourceNotFoundException,
    ConfigurationException,
    PolicyNotFoundError,
    TicketNotFoundError,
    InvalidStateTransition,
    ClockSkewError,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ValidationError",
    "ConflictException",
    "ConflictError",
    "ResourceNotFoundException",
    "ConfigurationException",
    "PolicyNotFoundError",
    "TicketNotFoundError",
    "InvalidStateTransition",
    "ClockSkewError",
]
