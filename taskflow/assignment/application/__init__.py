"""
Assignment Application Layer
============================

Services, repository interfaces and DTOs.
"""

from taskflow.assignment.application.services import (
    IAssignmentRepository,
    IAssignmentSettingsProvider,
    LoadBalancerService,
    WorkloadTracker,
)
from taskflow.assignment.application.dto import (
    AssignTaskRequest,
    AssignToUserRequest,
    AssignmentResponse,
    RebalanceResponse,
    TeamWorkloadResponse,
    WipLimitResponse,
    WorkloadResponse,
)

__all__ = [
    "IAssignmentRepository",
    "IAssignmentSettingsProvider",
    "LoadBalancerService",
    "WorkloadTracker",
    "AssignTaskRequest",
    "AssignToUserRequest",
    "AssignmentResponse",
    "RebalanceResponse",
    "TeamWorkloadResponse",
    "WipLimitResponse",
    "WorkloadResponse",
]
