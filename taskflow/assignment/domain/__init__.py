"""
Assignment Domain Layer
=======================

Pure business logic for workload, scoring and balancing.
"""

from taskflow.assignment.domain.entities import (
    AssignmentDecision,
    CandidateSignals,
    RebalanceSuggestion,
    RejectionReason,
    ScoreResult,
    ScoringContext,
    WipLimitCheck,
    Workload,
)
from taskflow.assignment.domain.value_objects import (
    AssignmentSettings,
    AutomationSettings,
    GuardrailSettings,
    MatchLevel,
    MatchingSettings,
    ScoreModifierSettings,
    ScoreWeights,
    SKILL_MATCH_POLICY,
)
from taskflow.assignment.domain.scoring import AssignmentScorer, WorkloadCalculator
from taskflow.assignment.domain.balancing import FallbackSelector, RebalancePlanner

__all__ = [
    "AssignmentDecision",
    "CandidateSignals",
    "RebalanceSuggestion",
    "RejectionReason",
    "ScoreResult",
    "ScoringContext",
    "WipLimitCheck",
    "Workload",
    "AssignmentSettings",
    "AutomationSettings",
    "GuardrailSettings",
    "MatchLevel",
    "MatchingSettings",
    "ScoreModifierSettings",
    "ScoreWeights",
    "SKILL_MATCH_POLICY",
    "AssignmentScorer",
    "WorkloadCalculator",
    "FallbackSelector",
    "RebalancePlanner",
]
