"""iDesk SLA tracking and breach detection engine."""

__version__ = "1.0.0"
