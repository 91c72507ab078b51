"""
SLA Interfaces Layer
====================

FastAPI route handlers for the SLA module. This is the outermost layer:
it handles HTTP requests/responses and delegates to application services.
"""

from idesk.sla.interfaces.controllers import config_router, router as sla_router, build_monitor_service

__all__ = ["config_router", "sla_router", "build_monitor_service"]
