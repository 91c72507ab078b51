"""Shared HTTP layer: middleware and exception handlers."""

from idesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    MetricsMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

__all__ = [
    "CorrelationIDMiddleware",
    "MetricsMiddleware",
    "LoggingMiddleware",
    "application_exception_handler",
    "global_exception_handler",
]
