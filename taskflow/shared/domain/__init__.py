"""
Shared Domain
=============

Entities read by more than one bounded context. Business rules specific to
assignment or SLA tracking stay inside those modules.
"""

from taskflow.shared.domain.entities import (
    UserProfile,
    Category,
    Task,
    RequestItem,
    PauseInterval,
    SubtaskAggregate,
    aggregate_subtask_status,
)
from taskflow.shared.domain.categories import (
    build_category_path,
    split_category_path,
    is_related_category,
)

__all__ = [
    "UserProfile",
    "Category",
    "Task",
    "RequestItem",
    "PauseInterval",
    "SubtaskAggregate",
    "aggregate_subtask_status",
    "build_category_path",
    "split_category_path",
    "is_related_category",
]
