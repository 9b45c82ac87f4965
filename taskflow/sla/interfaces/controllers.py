"""
SLA Controllers (API Routes)
=============================

FastAPI routes for due dates, SLA pauses, reminders, category stats,
the notification inbox and escalation handling.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core import Actor, SYSTEM_ACTOR
from taskflow.infrastructure.database import get_session
from taskflow.infrastructure.policy import get_policy_manager
from taskflow.shared.api.responses import result_response
from taskflow.shared.api.security import get_actor, verify_cron_secret
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application import (
    AbsenceRequest, AbsenceResponse, DeadlineRangeResponse,
    DeadlineService, DeadlineValidationRequest, DeadlineValidationResponse,
    DueDateRequest, DueDateResponse, EffectiveDeadlineResponse,
    EscalationListResponse, EscalationStatsResponse,
    INotificationDispatcher, ISLAPolicyProvider, NotificationFeedResponse,
    NotificationResponse, NotificationService, PauseHistoryResponse,
    PauseRequest, PauseResponse, PauseStatsResponse, PollResponse,
    ReadAllResponse, ReminderEscalationService, ResolveEscalationRequest,
    SLAPauseService, SLAStatusResponse, StatsRefreshResponse,
    SubtaskStatusResponse, TimelineDeviationResponse, UpcomingRemindersResponse,
)
from taskflow.sla.infrastructure import (
    SQLAlchemyDeadlineRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyPauseRepository,
    SQLAlchemyReminderRepository,
    WebhookNotificationDispatcher,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])


# ========== Example payloads for Swagger ==========

PAUSE_REQUEST_EXAMPLE = {
    "reason": "CLARIFICATION",
    "notes": "Waiting for the customer to confirm scope",
}

PAUSE_RESPONSE_EXAMPLE = {
    "success": True,
    "data": {
        "task_id": "7b0c1f0e-4c36-4c53-9d0b-1c2f3a4b5c6d",
        "reason": "CLARIFICATION",
        "paused_at": "2024-01-15T10:00:00Z",
        "resumed_at": None,
        "duration_ms": None,
        "total_paused_ms": 0,
    },
}

EFFECTIVE_DEADLINE_EXAMPLE = {
    "success": True,
    "data": {
        "task_id": "7b0c1f0e-4c36-4c53-9d0b-1c2f3a4b5c6d",
        "due_at": "2024-01-16T10:00:00Z",
        "effective_due_at": "2024-01-16T15:00:00Z",
        "total_paused_ms": 18000000,
        "is_paused": False,
        "paused_since": None,
    },
}

STATS_REFRESH_EXAMPLE = {
    "success": True,
    "data": {
        "updated": 1,
        "failed": 1,
        "results": [
            {
                "category_id": "c-bugs",
                "category_name": "Bug Fixes",
                "category_path": "engineering/bug-fixes",
                "stats": {"avg_hours": 20.0, "median_hours": 20.0, "sample_count": 3},
                "error": None,
            },
            {
                "category_id": "c-docs",
                "category_name": "Docs",
                "category_path": "engineering/docs",
                "stats": None,
                "error": "No completed items",
            },
        ],
    },
}

POLL_RESPONSE_EXAMPLE = {
    "success": True,
    "data": {
        "checked": 42,
        "reminders": 3,
        "escalations": 1,
        "redelivered": 0,
        "duplicates": 0,
        "dispatch_failures": 0,
        "unrouted": 0,
    },
}


# ========== Service builders ==========

def build_deadline_service(session: AsyncSession, policy: ISLAPolicyProvider) -> DeadlineService:
    return DeadlineService(SQLAlchemyDeadlineRepository(session), policy)


def build_pause_service(session: AsyncSession) -> SLAPauseService:
    return SLAPauseService(SQLAlchemyPauseRepository(session))


def build_reminder_service(
    session: AsyncSession,
    dispatcher: INotificationDispatcher,
    policy: ISLAPolicyProvider,
) -> ReminderEscalationService:
    return ReminderEscalationService(SQLAlchemyReminderRepository(session), dispatcher, policy)


def build_notification_service(
    session: AsyncSession, policy: ISLAPolicyProvider
) -> NotificationService:
    return NotificationService(SQLAlchemyNotificationRepository(session), policy)


# ========== Dependencies ==========

def get_sla_policy() -> ISLAPolicyProvider:
    """Hot-reloadable policy shared by the whole process."""
    return get_policy_manager()


def get_notification_dispatcher(request: Request) -> INotificationDispatcher:
    """Dispatcher created at startup; a fresh webhook dispatcher otherwise."""
    dispatcher = getattr(request.app.state, "notification_dispatcher", None)
    if dispatcher is None:
        dispatcher = WebhookNotificationDispatcher()
        request.app.state.notification_dispatcher = dispatcher
    return dispatcher


async def get_deadline_service(
    session: AsyncSession = Depends(get_session),
    policy: ISLAPolicyProvider = Depends(get_sla_policy),
) -> DeadlineService:
    return build_deadline_service(session, policy)


async def get_pause_service(session: AsyncSession = Depends(get_session)) -> SLAPauseService:
    return build_pause_service(session)


async def get_reminder_service(
    session: AsyncSession = Depends(get_session),
    dispatcher: INotificationDispatcher = Depends(get_notification_dispatcher),
    policy: ISLAPolicyProvider = Depends(get_sla_policy),
) -> ReminderEscalationService:
    return build_reminder_service(session, dispatcher, policy)


async def get_notification_service(
    session: AsyncSession = Depends(get_session),
    policy: ISLAPolicyProvider = Depends(get_sla_policy),
) -> NotificationService:
    return build_notification_service(session, policy)


# ========== Deadline routes ==========

@router.post(
    "/tasks/{task_id}/due-date",
    response_model=DueDateResponse,
    summary="Compute a task's due date",
    description="""
    Due date = creation time + the category's average completion hours, or the
    configured default when the category has too little history.

    An existing due date is returned unchanged unless `recalculate` is set.
    """,
)
async def compute_task_due_date(
    task_id: str,
    request: Optional[DueDateRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    recalculate = request.recalculate if request else False
    result = await service.compute_due_date(task_id, "task", recalculate, actor)
    return result_response(result)


@router.post(
    "/requests/{request_id}/due-date",
    response_model=DueDateResponse,
    summary="Compute a request's due date",
)
async def compute_request_due_date(
    request_id: str,
    request: Optional[DueDateRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    recalculate = request.recalculate if request else False
    result = await service.compute_due_date(request_id, "request", recalculate, actor)
    return result_response(result)


@router.get(
    "/deadline-range",
    response_model=DeadlineRangeResponse,
    summary="Allowed and suggested deadline for new work",
)
async def get_deadline_range(
    category_id: Optional[str] = Query(None, description="Category of the new work"),
    start: Optional[datetime] = Query(None, description="Work start; defaults to now"),
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    result = await service.deadline_range(category_id, start, actor)
    return result_response(result)


@router.post(
    "/deadline-validation",
    response_model=DeadlineValidationResponse,
    summary="Check a proposed deadline against the allowed range",
)
async def validate_deadline(
    request: DeadlineValidationRequest,
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    result = await service.validate_deadline(request.deadline, request.start, actor)
    return result_response(result)


@router.get(
    "/tasks/{task_id}/timeline",
    response_model=TimelineDeviationResponse,
    summary="Planned vs. actual duration of a completed task",
)
async def get_timeline_deviation(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    result = await service.timeline_deviation(task_id, actor)
    return result_response(result)


@router.get(
    "/tasks/{task_id}/subtasks",
    response_model=SubtaskStatusResponse,
    summary="Whether a parent task may be completed",
)
async def get_subtask_status(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    result = await service.subtask_status(task_id, actor)
    return result_response(result)


@router.post(
    "/categories/refresh-stats",
    response_model=StatsRefreshResponse,
    summary="Recompute rolling completion stats of every category",
    responses={
        200: {
            "description": "Per-category refresh results",
            "content": {"application/json": {"example": STATS_REFRESH_EXAMPLE}},
        }
    },
)
async def refresh_category_stats(
    actor: Actor = Depends(get_actor),
    service: DeadlineService = Depends(get_deadline_service),
):
    result = await service.update_all_category_stats(actor)
    return result_response(result)


# ========== Pause routes ==========

@router.post(
    "/tasks/{task_id}/pause",
    response_model=PauseResponse,
    summary="Pause a task's SLA clock",
    description="""
    Stops the SLA clock. The stored due date is not changed; the effective
    deadline moves forward for as long as the task stays paused.

    **Reasons**: `MEETING`, `CUSTOMER_VISIT`, `CLARIFICATION`, `ABSENCE`, `MANUAL`

    Returns 409 `ALREADY_PAUSED` when the clock is already stopped.
    """,
    responses={
        200: {
            "description": "Task paused",
            "content": {"application/json": {"example": PAUSE_RESPONSE_EXAMPLE}},
        },
        409: {"description": "Task already paused"},
    },
)
async def pause_task(
    task_id: str,
    request: PauseRequest = Body(..., examples=[PAUSE_REQUEST_EXAMPLE]),
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.pause(task_id, request.reason, actor, notes=request.notes)
    return result_response(result)


@router.post(
    "/tasks/{task_id}/resume",
    response_model=PauseResponse,
    summary="Resume a paused task's SLA clock",
    responses={409: {"description": "Task is not paused"}},
)
async def resume_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.resume(task_id, actor)
    return result_response(result)


@router.get(
    "/tasks/{task_id}/effective-deadline",
    response_model=EffectiveDeadlineResponse,
    summary="Due date shifted by all pause time",
    responses={
        200: {
            "description": "Effective deadline",
            "content": {"application/json": {"example": EFFECTIVE_DEADLINE_EXAMPLE}},
        }
    },
)
async def get_effective_deadline(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.effective_due_date(task_id, actor)
    return result_response(result)


@router.get(
    "/tasks/{task_id}/pauses",
    response_model=PauseHistoryResponse,
    summary="Pause intervals of a task, oldest first",
)
async def get_pause_history(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.pause_history(task_id, actor)
    return result_response(result)


@router.get(
    "/tasks/{task_id}/pause-stats",
    response_model=PauseStatsResponse,
    summary="Pause totals of a task",
)
async def get_pause_stats(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.pause_stats(task_id, actor)
    return result_response(result)


@router.post(
    "/users/{user_id}/absence",
    response_model=AbsenceResponse,
    summary="Mark a user absent or back",
    description="""
    Going absent pauses every running task of the user (reason `ABSENCE`);
    coming back resumes the tasks that were paused for absence.
    """,
)
async def set_user_absence(
    user_id: str,
    request: AbsenceRequest,
    actor: Actor = Depends(get_actor),
    service: SLAPauseService = Depends(get_pause_service),
):
    result = await service.set_absence(user_id, request.is_absent, actor, reason=request.reason)
    return result_response(result)


# ========== Status and scheduler routes ==========

@router.get(
    "/tasks/{task_id}/status",
    response_model=SLAStatusResponse,
    summary="Current SLA state of a task",
)
async def get_sla_status(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: ReminderEscalationService = Depends(get_reminder_service),
):
    result = await service.sla_status(task_id, actor)
    return result_response(result)


@router.post(
    "/cron/reminders",
    response_model=PollResponse,
    summary="Run one reminder and escalation poll",
    description="Called by an external cron with `Authorization: Bearer <CRON_SECRET>`.",
    dependencies=[Depends(verify_cron_secret)],
    responses={
        200: {
            "description": "Poll summary",
            "content": {"application/json": {"example": POLL_RESPONSE_EXAMPLE}},
        },
        401: {"description": "Missing or wrong cron secret"},
    },
)
async def run_reminder_poll(service: ReminderEscalationService = Depends(get_reminder_service)):
    result = await service.poll(actor=SYSTEM_ACTOR)
    return result_response(result)


@router.post(
    "/cron/category-stats",
    response_model=StatsRefreshResponse,
    summary="Refresh category stats from cron",
    dependencies=[Depends(verify_cron_secret)],
    responses={401: {"description": "Missing or wrong cron secret"}},
)
async def run_category_stats(service: DeadlineService = Depends(get_deadline_service)):
    result = await service.update_all_category_stats(SYSTEM_ACTOR)
    return result_response(result)


# ========== Notification and escalation routes ==========

@router.get(
    "/users/{user_id}/notifications",
    response_model=NotificationFeedResponse,
    summary="A user's notifications, newest first",
)
async def list_user_notifications(
    user_id: str,
    unread_only: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(20, ge=1, le=NotificationService.MAX_LIMIT),
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.list_notifications(user_id, actor, unread_only=unread_only, limit=limit)
    return result_response(result)


@router.post(
    "/notifications/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification read",
    responses={403: {"description": "Not the recipient"}},
)
async def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.mark_read(notification_id, actor)
    return result_response(result)


@router.post(
    "/users/{user_id}/notifications/read-all",
    response_model=ReadAllResponse,
    summary="Mark every notification of a user read",
)
async def mark_all_notifications_read(
    user_id: str,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.mark_all_read(user_id, actor)
    return result_response(result)


@router.post(
    "/escalations/{notification_id}/acknowledge",
    response_model=NotificationResponse,
    summary="Acknowledge a pending escalation",
    responses={409: {"description": "Escalation is no longer pending"}},
)
async def acknowledge_escalation(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.acknowledge_escalation(notification_id, actor)
    return result_response(result)


@router.post(
    "/escalations/{notification_id}/resolve",
    response_model=NotificationResponse,
    summary="Resolve an escalation",
    responses={409: {"description": "Escalation already resolved"}},
)
async def resolve_escalation(
    notification_id: str,
    request: Optional[ResolveEscalationRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    notes = request.notes if request else None
    result = await service.resolve_escalation(notification_id, actor, notes=notes)
    return result_response(result)


@router.get(
    "/users/{user_id}/escalations",
    response_model=EscalationListResponse,
    summary="Unresolved escalations addressed to a user",
)
async def list_active_escalations(
    user_id: str,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.active_escalations(user_id, actor)
    return result_response(result)


@router.get(
    "/escalations/stats",
    response_model=EscalationStatsResponse,
    summary="Escalation counts per status",
)
async def get_escalation_stats(
    user_id: Optional[str] = Query(None, description="Limit to one recipient"),
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.escalation_stats(actor, user_id=user_id)
    return result_response(result)


@router.get(
    "/users/{user_id}/upcoming-reminders",
    response_model=UpcomingRemindersResponse,
    summary="Reminders still ahead for a user's tasks",
)
async def list_upcoming_reminders(
    user_id: str,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.upcoming_reminders(user_id, actor)
    return result_response(result)


sla_router = router
