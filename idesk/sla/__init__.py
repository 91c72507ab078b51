"""
SLA Tracking Module
===================

Bounded context for ticket SLA tracking and breach detection.

Responsibilities:
- Keep per-priority response and resolution targets
- Run each ticket's SLA clock through its start/pause/resume/stop lifecycle
- Derive deadlines from the clock state and the policy in force
- Classify tickets and raise one warning or breach event per transition
"""

__version__ = "1.0.0"
