"""
Assignment Controllers (API Routes)
===================================

FastAPI routes for workload, assignment and rebalancing.

Controllers are thin - they delegate to application services and render
the returned ``OperationResult``.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.assignment.application import (
    AssignTaskRequest,
    AssignToUserRequest,
    AssignmentResponse,
    IAssignmentSettingsProvider,
    LoadBalancerService,
    RebalanceResponse,
    TeamWorkloadResponse,
    WipLimitResponse,
    WorkloadResponse,
    WorkloadTracker,
)
from taskflow.assignment.domain import AssignmentSettings
from taskflow.assignment.infrastructure import SQLAlchemyAssignmentRepository
from taskflow.config import FallbackStrategy, MatchingMode
from taskflow.core import Actor
from taskflow.infrastructure.database import get_session
from taskflow.infrastructure.policy import get_policy_manager
from taskflow.shared.api.responses import result_response
from taskflow.shared.api.security import get_actor
from taskflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/assignment", tags=["Assignment"])


# ========== Example payloads for Swagger ==========

ASSIGN_REQUEST_EXAMPLE = {
    "matching_mode": "balanced",
    "fallback_strategy": "smart_balance",
    "allow_cross_team_fallback": False,
}

ASSIGN_RESPONSE_EXAMPLE = {
    "success": True,
    "data": {
        "task_id": "7b0c1f0e-4c36-4c53-9d0b-1c2f3a4b5c6d",
        "assignee_id": "u-alice",
        "strategy": "score",
        "score": 0.666667,
        "candidates": [
            {
                "user_id": "u-alice",
                "score": 0.666667,
                "weighted_load": 2.0,
                "rejected_reason": None,
                "breakdown": {"workload_fit": 0.666667, "skill": 0.5, "seniority": 0.0},
            },
            {
                "user_id": "u-bob",
                "score": None,
                "weighted_load": 0.0,
                "rejected_reason": "absent",
                "breakdown": {},
            },
        ],
    },
}

NO_CANDIDATE_EXAMPLE = {
    "success": False,
    "error_code": "NO_ELIGIBLE_CANDIDATE",
    "error": "No suitable candidate found, assign manually",
    "details": {"task_id": "7b0c1f0e-4c36-4c53-9d0b-1c2f3a4b5c6d", "strategy": "manual_gate"},
}


# ========== Dependencies ==========

def get_settings_provider() -> IAssignmentSettingsProvider:
    """Hot-reloadable policy shared by the whole process."""
    return get_policy_manager()


async def get_assignment_repository(
    session: AsyncSession = Depends(get_session),
) -> SQLAlchemyAssignmentRepository:
    return SQLAlchemyAssignmentRepository(session)


async def get_workload_tracker(
    repository: SQLAlchemyAssignmentRepository = Depends(get_assignment_repository),
    settings_provider: IAssignmentSettingsProvider = Depends(get_settings_provider),
) -> WorkloadTracker:
    return WorkloadTracker(repository, settings_provider)


async def get_load_balancer(
    repository: SQLAlchemyAssignmentRepository = Depends(get_assignment_repository),
    settings_provider: IAssignmentSettingsProvider = Depends(get_settings_provider),
    tracker: WorkloadTracker = Depends(get_workload_tracker),
) -> LoadBalancerService:
    return LoadBalancerService(repository, settings_provider, workload_tracker=tracker)


def _apply_overrides(
    base: AssignmentSettings, overrides: Optional[AssignTaskRequest]
) -> Optional[AssignmentSettings]:
    """Merge per-call overrides into the configured settings; None when there are none."""
    if overrides is None:
        return None
    changes = overrides.model_dump(exclude_none=True)
    if not changes:
        return None
    matching = base.matching.model_copy(update={
        "mode": MatchingMode(changes.get("matching_mode", base.matching.mode.value)),
        "fallback_strategy": FallbackStrategy(
            changes.get("fallback_strategy", base.matching.fallback_strategy.value)
        ),
        "allow_cross_team_fallback": changes.get(
            "allow_cross_team_fallback", base.matching.allow_cross_team_fallback
        ),
    })
    return base.model_copy(update={"matching": matching})


# ========== Route Handlers ==========

@router.post(
    "/tasks/{task_id}/assign",
    response_model=AssignmentResponse,
    summary="Assign the best candidate to a task",
    description="""
    Score every member of the task's team and assign the best eligible one.

    **Scoring**: workload fit against the team average, skill match against
    the task category, seniority boost and burnout penalty.

    **Guardrails** (hard rejections): inactive, absent, daily assignment limit,
    WIP limit, cooldown.

    When no candidate reaches the minimum viable score the configured fallback
    strategy decides (`smart_balance`, `round_robin`, `random_spread`,
    `manual_gate`). `NO_ELIGIBLE_CANDIDATE` is returned with status 200 and
    `success: false`.
    """,
    responses={
        200: {
            "description": "Assignment decision or no eligible candidate",
            "content": {
                "application/json": {
                    "examples": {
                        "assigned": {"value": ASSIGN_RESPONSE_EXAMPLE},
                        "no_candidate": {"value": NO_CANDIDATE_EXAMPLE},
                    }
                }
            },
        },
        403: {"description": "Role may not assign tasks"},
        404: {"description": "Task not found"},
        409: {"description": "Assignee changed concurrently"},
    },
)
async def assign_task(
    task_id: str,
    overrides: Optional[AssignTaskRequest] = Body(None, examples=[ASSIGN_REQUEST_EXAMPLE]),
    actor: Actor = Depends(get_actor),
    service: LoadBalancerService = Depends(get_load_balancer),
    settings_provider: IAssignmentSettingsProvider = Depends(get_settings_provider),
):
    settings = _apply_overrides(settings_provider.get_assignment_settings(), overrides)
    result = await service.assign(task_id, actor, settings=settings)
    return result_response(result)


@router.post(
    "/tasks/{task_id}/assign-to",
    response_model=AssignmentResponse,
    summary="Assign a task to a named user",
    description="""
    Manual assignment by a leader. The user must belong to the task's team
    (admins may assign across teams) and must be active and present.

    Daily assignment, WIP and cooldown limits answer `409 GUARDRAIL_VIOLATION`
    unless `force` is set by an admin.
    """,
    responses={
        403: {"description": "Role may not assign, force, or reach this team"},
        404: {"description": "Task or user not found"},
        409: {"description": "Guardrail violated or assignee changed concurrently"},
        422: {"description": "Task closed or user unavailable"},
    },
)
async def assign_task_to_user(
    task_id: str,
    request: AssignToUserRequest,
    actor: Actor = Depends(get_actor),
    service: LoadBalancerService = Depends(get_load_balancer),
):
    result = await service.assign_to(task_id, request.user_id, actor, force=request.force)
    return result_response(result)


@router.get(
    "/teams/{team_id}/rebalance",
    response_model=RebalanceResponse,
    summary="Suggest task moves to even out team load",
    description="""
    Propose moving open, unstarted tasks from members loaded above the
    overload ratio to members below the team average. Nothing is written.
    """,
)
async def suggest_rebalance(
    team_id: str,
    actor: Actor = Depends(get_actor),
    service: LoadBalancerService = Depends(get_load_balancer),
):
    result = await service.suggest_rebalance(team_id, actor)
    return result_response(result)


@router.get(
    "/users/{user_id}/workload",
    response_model=WorkloadResponse,
    summary="Current weighted workload of a user",
)
async def get_user_workload(
    user_id: str,
    actor: Actor = Depends(get_actor),
    tracker: WorkloadTracker = Depends(get_workload_tracker),
):
    result = await tracker.get_workload(user_id, actor)
    return result_response(result)


@router.get(
    "/users/{user_id}/wip-limit",
    response_model=WipLimitResponse,
    summary="Headroom under a user's WIP limit",
)
async def get_user_wip_limit(
    user_id: str,
    actor: Actor = Depends(get_actor),
    tracker: WorkloadTracker = Depends(get_workload_tracker),
):
    result = await tracker.check_wip_limit(user_id, actor)
    return result_response(result)


@router.get(
    "/teams/{team_id}/workload",
    response_model=TeamWorkloadResponse,
    summary="Workloads of every team member, heaviest first",
)
async def get_team_workload(
    team_id: str,
    actor: Actor = Depends(get_actor),
    tracker: WorkloadTracker = Depends(get_workload_tracker),
):
    result = await tracker.team_workload(team_id, actor)
    return result_response(result)


assignment_router = router
