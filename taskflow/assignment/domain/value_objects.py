"""
Assignment Value Objects
========================

Immutable assignment configuration.

``AssignmentSettings`` enumerates every option the load balancer honours.
It is frozen and passed into each call, so a policy reload never changes
the rules halfway through an assignment.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taskflow.config import MatchingMode, FallbackStrategy


class MatchLevel(str, Enum):
    """How a candidate's category experience relates to the task's category."""
    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"


# Skill sub-score per (matching mode, match level). A partial match is
# experience in an ancestor, descendant or sibling category.
SKILL_MATCH_POLICY: Dict[MatchingMode, Dict[MatchLevel, float]] = {
    MatchingMode.STRICT: {
        MatchLevel.EXACT: 1.0,
        MatchLevel.PARTIAL: 0.0,
        MatchLevel.NONE: 0.0,
    },
    MatchingMode.BALANCED: {
        MatchLevel.EXACT: 1.0,
        MatchLevel.PARTIAL: 0.5,
        MatchLevel.NONE: 0.0,
    },
    MatchingMode.FLEXIBLE: {
        MatchLevel.EXACT: 1.0,
        MatchLevel.PARTIAL: 0.75,
        MatchLevel.NONE: 0.25,
    },
}

# Skill sub-score when the task has no category to match against.
UNCATEGORIZED_SKILL_SCORE = 0.5


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class MatchingSettings(_Frozen):
    """Skill matching and fallback behaviour."""
    mode: MatchingMode = Field(default=MatchingMode.BALANCED)
    allow_partial_match: bool = Field(
        default=True,
        description="When false, partial matches score like no match"
    )
    fallback_strategy: FallbackStrategy = Field(default=FallbackStrategy.SMART_BALANCE)
    allow_cross_team_fallback: bool = Field(
        default=False,
        description="Score members of other teams when nobody in the task's team qualifies"
    )


class GuardrailSettings(_Frozen):
    """Hard limits and thresholds."""
    max_assignments_per_user_per_day: int = Field(
        default=0, ge=0, description="0 disables the per-day limit"
    )
    enforce_wip_limit: bool = Field(default=True)
    default_wip_limit: int = Field(default=5, ge=1, description="Used when a user has no own limit")
    cooldown_minutes: int = Field(
        default=0, ge=0, description="Minimum gap between two assignments to one user"
    )
    backlog_aging_boost: float = Field(
        default=0.1, ge=0, description="Extra workload weight per day of task age"
    )
    max_aging_boost: float = Field(default=1.0, ge=0, description="Cap on the age boost per task")
    min_viable_score: float = Field(
        default=0.35, ge=0, le=1, description="Best score must reach this or the fallback applies"
    )
    rebalance_overload_ratio: float = Field(
        default=1.25, gt=1, description="Load above team average × ratio counts as overloaded"
    )
    rebalance_max_moves_per_user: int = Field(default=2, ge=1)


class ScoreModifierSettings(_Frozen):
    """Additive boosts and penalties applied on top of the weighted blend."""
    seniority_boost: float = Field(default=0.1, ge=0, le=1)
    max_position_level: int = Field(default=5, ge=1)
    cross_skill_boost: float = Field(
        default=0.1, ge=0, le=1, description="Added to partial-match skill scores"
    )
    burnout_penalty: float = Field(default=0.15, ge=0, le=1)
    burnout_window_days: int = Field(default=7, ge=1)
    burnout_completion_threshold: int = Field(
        default=15, ge=1, description="Completions within the window that signal strain"
    )
    burnout_overdue_threshold: int = Field(
        default=3, ge=1, description="Overdue open tasks that signal strain"
    )


class ScoreWeights(_Frozen):
    """Relative weights of the workload and skill sub-scores."""
    workload: float = Field(default=0.5, ge=0)
    skill: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def _check_positive(self) -> "ScoreWeights":
        if self.workload + self.skill <= 0:
            raise ValueError("score weights must not both be zero")
        return self

    def normalized(self) -> tuple[float, float]:
        total = self.workload + self.skill
        return self.workload / total, self.skill / total


class AutomationSettings(_Frozen):
    """Automatic escalation of stalled work."""
    auto_escalate_stalled: bool = Field(default=False)
    escalate_after_hours: float = Field(
        default=12, gt=0, description="Hours past the effective deadline before escalating"
    )


class AssignmentSettings(_Frozen):
    """Complete, immutable assignment policy."""
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)
    score_modifiers: ScoreModifierSettings = Field(default_factory=ScoreModifierSettings)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
