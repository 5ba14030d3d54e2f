"""
Persistent entity models for the calibration engine.

These Pydantic models map to the store tables:
- scores
- voice_metric_snapshots
- feedback_records
- calibration_states
- calibration_history
- calibration_runs (written by CalibrationQueries.insert_run)

Timestamps are timezone-aware UTC datetimes.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ADJUSTMENT_BOUND = 2.0
SCORE_MIN = 1
SCORE_MAX = 5

# Derived scores and threshold comparisons are rounded to this many digits so
# that float noise (0.1 stored as 0.10000000000000003) does not leak through.
COMPARISON_DIGITS = 9


class FeedbackType(str, Enum):
    """Kinds of evaluator corrections."""
    SCORE = "score"
    VOICE_QUALITY = "voice_quality"


class VoiceMetric(str, Enum):
    """Named voice-quality sub-scores."""
    CLARITY = "clarity"
    VOLUME = "volume"
    PACE = "pace"
    TONE = "tone"
    OVERALL = "overall"


class MissingMetricPolicy(str, Enum):
    """How a voice overall is recomputed when a component was never observed."""
    ZERO = "zero"  # unset components count as 0
    EXCLUDE = "exclude"  # renormalise weights over observed components
    REQUIRE_ALL = "require_all"  # leave overall untouched until all four exist


class ScoringParameter(BaseModel):
    """Entry of the external scoring-parameter catalog."""
    id: str
    label: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def default_label(cls, values):
        """Derive a readable label from the id when none is given."""
        if isinstance(values, dict) and not values.get("label") and values.get("id"):
            values = {**values, "label": str(values["id"]).replace("_", " ")}
        return values


class Evaluator(BaseModel):
    """Evaluator identity as exposed by the external user directory."""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.email or "Unknown"


class Score(BaseModel):
    """Maps to the scores table."""
    id: str
    evaluation_id: str
    parameter_id: str
    value: int = Field(ge=SCORE_MIN, le=SCORE_MAX)
    note: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VoiceMetricSnapshot(BaseModel):
    """Maps to the voice_metric_snapshots table; one row per evaluation."""
    evaluation_id: str
    clarity: Optional[float] = None
    volume: Optional[float] = None
    pace: Optional[float] = None
    tone: Optional[float] = None
    overall: Optional[float] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    def get_metric(self, metric: VoiceMetric) -> Optional[float]:
        return getattr(self, metric.value)

    def set_metric(self, metric: VoiceMetric, value: float) -> None:
        setattr(self, metric.value, value)


class FeedbackRecord(BaseModel):
    """
    Maps to the feedback_records table.

    Exactly one of score_ref / voice_metric is set, matching feedback_type.
    Records are immutable once created; only whole-record deletion is allowed.
    """
    id: str
    evaluation_id: str
    evaluator_id: str
    feedback_type: FeedbackType
    score_ref: Optional[str] = None
    voice_metric: Optional[VoiceMetric] = None
    original_score: Optional[float] = None
    adjusted_score: Optional[float] = None
    comment: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, v):
        if not v or not v.strip():
            raise ValueError("comment must be non-empty text")
        return v.strip()

    @model_validator(mode="after")
    def validate_target(self):
        """Target reference must match the feedback type."""
        if self.feedback_type == FeedbackType.SCORE:
            if not self.score_ref or self.voice_metric is not None:
                raise ValueError("score feedback requires score_ref and no voice_metric")
        else:
            if self.voice_metric is None or self.score_ref:
                raise ValueError("voice_quality feedback requires voice_metric and no score_ref")
        return self


class CalibrationState(BaseModel):
    """Maps to the calibration_states table; one row per scoring parameter."""
    parameter_id: str
    adjustment: float = Field(default=0.0, ge=-ADJUSTMENT_BOUND, le=ADJUSTMENT_BOUND)
    guidance: str = ""
    total_feedback_count: int = Field(default=0, ge=0)
    last_batch_avg_adjustment: float = 0.0
    last_analyzed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def default(cls, parameter_id: str) -> "CalibrationState":
        """Zero-valued state for a parameter that was never calibrated."""
        return cls(parameter_id=parameter_id)


class CalibrationHistoryEntry(BaseModel):
    """Maps to the calibration_history table. Append-only."""
    id: str
    parameter_id: str
    previous_adjustment: float
    new_adjustment: float
    previous_guidance: str = ""
    new_guidance: str = ""
    feedback_count: int
    period_start: datetime
    period_end: datetime
    evaluator_ids: List[str] = Field(default_factory=list)
    summary: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
