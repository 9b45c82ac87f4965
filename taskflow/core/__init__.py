"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from taskflow.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    NotFoundError,
    PermissionDenied,
    AlreadyPausedError,
    NotPausedError,
    EscalationStateError,
    NoEligibleCandidateError,
    GuardrailViolation,
    ConcurrencyConflict,
    ConfigurationException,
    ExternalServiceException,
)
from taskflow.core.permissions import (
    Actor,
    Operation,
    SYSTEM_ACTOR,
    authorize,
    can,
)
from taskflow.core.result import OperationResult

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "NotFoundError",
    "PermissionDenied",
    "AlreadyPausedError",
    "NotPausedError",
    "EscalationStateError",
    "NoEligibleCandidateError",
    "GuardrailViolation",
    "ConcurrencyConflict",
    "ConfigurationException",
    "ExternalServiceException",
    "Actor",
    "Operation",
    "SYSTEM_ACTOR",
    "authorize",
    "can",
    "OperationResult",
]
