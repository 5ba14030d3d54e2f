"""
Data models for the feedback calibration engine.

This package contains:
- Stored entity models (scores, voice snapshots, feedback, calibration state and history)
- Operation result schemas
- Requester permission model
"""

from .database import (
    ADJUSTMENT_BOUND,
    COMPARISON_DIGITS,
    CalibrationHistoryEntry,
    CalibrationState,
    Evaluator,
    FeedbackRecord,
    FeedbackType,
    MissingMetricPolicy,
    Score,
    ScoringParameter,
    VoiceMetric,
    VoiceMetricSnapshot,
)
from .outputs import (
    CalibrationHistoryView,
    CalibrationRunResult,
    DeleteFeedbackResult,
    EvaluatorFeedbackCount,
    FeedbackPage,
    GuidanceContextEntry,
    ParameterCalibrationResult,
    ScoreFeedbackAverages,
)
from .permissions import Requester

__all__ = [
    # Stored entities
    "ADJUSTMENT_BOUND",
    "COMPARISON_DIGITS",
    "CalibrationHistoryEntry",
    "CalibrationState",
    "Evaluator",
    "FeedbackRecord",
    "FeedbackType",
    "MissingMetricPolicy",
    "Score",
    "ScoringParameter",
    "VoiceMetric",
    "VoiceMetricSnapshot",

    # Operation results
    "CalibrationHistoryView",
    "CalibrationRunResult",
    "DeleteFeedbackResult",
    "EvaluatorFeedbackCount",
    "FeedbackPage",
    "GuidanceContextEntry",
    "ParameterCalibrationResult",
    "ScoreFeedbackAverages",

    # Permissions
    "Requester",
]
