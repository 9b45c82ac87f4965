"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Every exception carries a stable ``code`` so application services can turn
expected business conditions into typed results and controllers can map
them onto HTTP statuses without inspecting exception classes.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "APPLICATION_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    code = "DOMAIN_ERROR"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    code = "REPOSITORY_ERROR"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    code = "VALIDATION_ERROR"


class NotFoundError(ApplicationException):
    """Exception when a referenced entity does not exist."""

    code = "NOT_FOUND"

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


class PermissionDenied(ApplicationException):
    """The acting role may not perform the operation."""

    code = "FORBIDDEN"

    def __init__(self, role: str, operation: str):
        self.role = role
        self.operation = operation
        super().__init__(
            f"Role {role} is not allowed to {operation}",
            {"role": role, "operation": operation}
        )


class AlreadyPausedError(DomainException):
    """Raised when pausing a task whose SLA clock is already paused."""

    code = "ALREADY_PAUSED"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__("Task is already paused", {"task_id": task_id})


class NotPausedError(DomainException):
    """Raised when resuming a task that has no open pause interval."""

    code = "NOT_PAUSED"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__("Task is not paused", {"task_id": task_id})


class EscalationStateError(DomainException):
    """An escalation cannot move to the requested status from its current one."""

    code = "INVALID_ESCALATION_STATE"

    def __init__(self, notification_id: str, current: str, requested: str):
        self.notification_id = notification_id
        super().__init__(
            f"Escalation is {current} and cannot become {requested}",
            {"notification_id": notification_id, "current": current, "requested": requested},
        )


class NoEligibleCandidateError(DomainException):
    """No candidate qualifies for the task; assignment needs a human."""

    code = "NO_ELIGIBLE_CANDIDATE"

    def __init__(self, task_id: str, details: Optional[dict] = None):
        self.task_id = task_id
        super().__init__(
            "No suitable candidate found, assign manually",
            {"task_id": task_id, **(details or {})}
        )


class GuardrailViolation(DomainException):
    """A WIP or per-day assignment limit would be exceeded."""

    code = "GUARDRAIL_VIOLATION"


class ConcurrencyConflict(DomainException):
    """An optimistic conditional update lost the race."""

    code = "CONCURRENCY_CONFLICT"


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    code = "CONFIGURATION_ERROR"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)
