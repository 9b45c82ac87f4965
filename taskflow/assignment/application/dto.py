"""
Assignment Application DTOs
===========================

Data Transfer Objects for the assignment API layer.

These Pydantic models handle serialization and validation for API requests
and responses.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from taskflow.shared.api.responses import ResultEnvelope


# ========== Type Aliases for Literals ==========
MatchingModeStr = Literal["strict", "balanced", "flexible"]
FallbackStrategyStr = Literal["smart_balance", "round_robin", "manual_gate", "random_spread"]
RejectionReasonStr = Literal[
    "inactive", "absent", "daily_limit_reached", "wip_limit_reached", "cooldown"
]


# ========== Request DTOs ==========

class AssignTaskRequest(BaseModel):
    """Per-call overrides of the configured matching policy."""
    matching_mode: Optional[MatchingModeStr] = Field(None, description="Override matching mode")
    fallback_strategy: Optional[FallbackStrategyStr] = Field(
        None, description="Override fallback strategy"
    )
    allow_cross_team_fallback: Optional[bool] = Field(
        None, description="Override cross-team widening"
    )


class AssignToUserRequest(BaseModel):
    """Manual assignment to a named user."""
    user_id: str = Field(..., min_length=1, description="User who receives the task")
    force: bool = Field(
        False, description="Assign past daily, WIP and cooldown limits (admins only)"
    )


# ========== Response DTOs ==========

class WorkloadDTO(BaseModel):
    user_id: str
    open_count: int = Field(..., description="Non-terminal tasks assigned")
    weighted_load: float = Field(..., description="Priority and age weighted load")
    wip_limit: int
    utilization: float = Field(..., description="Open tasks as % of WIP limit")
    is_at_limit: bool


class WipLimitDTO(BaseModel):
    user_id: str
    exceeded: bool = Field(..., description="At or over the WIP limit")
    current: int = Field(..., description="Open tasks assigned")
    limit: int
    available: int = Field(..., description="Tasks that fit before the limit")
    utilization_percent: float


class CandidateScoreDTO(BaseModel):
    user_id: str
    score: Optional[float] = Field(None, description="Score in [0, 1]; null when rejected")
    weighted_load: float
    rejected_reason: Optional[RejectionReasonStr] = None
    breakdown: Dict[str, float] = Field(default_factory=dict)


class AssignmentDecisionDTO(BaseModel):
    task_id: str
    assignee_id: str
    strategy: str = Field(..., description="'score', 'manual' or the fallback strategy used")
    score: Optional[float] = None
    candidates: List[CandidateScoreDTO] = Field(default_factory=list)


class RebalanceSuggestionDTO(BaseModel):
    task_id: str
    from_user_id: str
    to_user_id: str
    reasoning: str
    priority_score: float


class WorkloadResponse(ResultEnvelope):
    data: Optional[WorkloadDTO] = None


class WipLimitResponse(ResultEnvelope):
    data: Optional[WipLimitDTO] = None


class TeamWorkloadResponse(ResultEnvelope):
    data: Optional[List[WorkloadDTO]] = None


class AssignmentResponse(ResultEnvelope):
    data: Optional[AssignmentDecisionDTO] = None


class RebalanceResponse(ResultEnvelope):
    data: Optional[List[RebalanceSuggestionDTO]] = None
