"""
SLA Interfaces Layer
====================

FastAPI route handlers for deadlines, pauses and reminders.
"""

from taskflow.sla.interfaces.controllers import sla_router

__all__ = ["sla_router"]
