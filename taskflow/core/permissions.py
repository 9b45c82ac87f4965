"""
Capability Policy
=================

Single role → operation table consulted by every public core operation.

Callers never compare roles themselves; they ask ``can(actor, operation)``
or call ``authorize`` which raises ``PermissionDenied``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from taskflow.config import Role
from taskflow.core.exceptions import PermissionDenied


class Operation(str, Enum):
    """Operations guarded by the capability policy."""
    ASSIGN_TASK = "assign_task"
    REBALANCE_TEAM = "rebalance_team"
    VIEW_WORKLOAD = "view_workload"
    VIEW_TEAM_WORKLOAD = "view_team_workload"
    COMPUTE_DUE_DATE = "compute_due_date"
    PAUSE_TASK = "pause_task"
    RESUME_TASK = "resume_task"
    VIEW_SLA = "view_sla"
    REFRESH_CATEGORY_STATS = "refresh_category_stats"
    MANAGE_ABSENCE = "manage_absence"
    RUN_REMINDER_POLL = "run_reminder_poll"
    OVERRIDE_GUARDRAILS = "override_guardrails"
    VIEW_NOTIFICATIONS = "view_notifications"
    VIEW_TEAM_NOTIFICATIONS = "view_team_notifications"
    MANAGE_NOTIFICATIONS = "manage_notifications"


_STAFF = frozenset({
    Operation.VIEW_WORKLOAD,
    Operation.COMPUTE_DUE_DATE,
    Operation.PAUSE_TASK,
    Operation.RESUME_TASK,
    Operation.VIEW_SLA,
    Operation.VIEW_NOTIFICATIONS,
})

_LEADER = _STAFF | frozenset({
    Operation.ASSIGN_TASK,
    Operation.REBALANCE_TEAM,
    Operation.VIEW_TEAM_WORKLOAD,
    Operation.MANAGE_ABSENCE,
    Operation.VIEW_TEAM_NOTIFICATIONS,
})

CAPABILITIES: Dict[Role, FrozenSet[Operation]] = {
    Role.STAFF: _STAFF,
    Role.LEADER: _LEADER,
    Role.ADMIN: frozenset(Operation),
}


@dataclass(frozen=True)
class Actor:
    """Identity of whoever invokes a core operation."""
    user_id: str
    role: Role


# Scheduler and cron-triggered invocations run as this actor.
SYSTEM_ACTOR = Actor(user_id="system", role=Role.ADMIN)


def can(actor: Optional[Actor], operation: Operation) -> bool:
    """Check whether the actor's role allows the operation."""
    if actor is None:
        return False
    return operation in CAPABILITIES.get(Role(actor.role), frozenset())


def authorize(actor: Optional[Actor], operation: Operation) -> None:
    """Raise ``PermissionDenied`` unless the actor may perform the operation."""
    if not can(actor, operation):
        role = actor.role.value if actor is not None else "ANONYMOUS"
        raise PermissionDenied(role, operation.value)
