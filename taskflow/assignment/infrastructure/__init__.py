"""
Assignment Infrastructure Layer
===============================

Database-backed implementation of the assignment repository.
"""

from taskflow.assignment.infrastructure.repositories import SQLAlchemyAssignmentRepository

__all__ = ["SQLAlchemyAssignmentRepository"]
