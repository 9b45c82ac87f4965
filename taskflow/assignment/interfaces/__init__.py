"""
Assignment Interfaces Layer
===========================

FastAPI route handlers for the assignment module.
"""

from taskflow.assignment.interfaces.controllers import assignment_router

__all__ = ["assignment_router"]
