"""
Result schemas returned by the engine's operations.

These are response shapes, not stored rows: analysis run results, delete
outcomes, history entries with resolved evaluator names and paginated
feedback queries.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .database import FeedbackRecord


class ParameterCalibrationResult(BaseModel):
    """Outcome of one analysis batch for one parameter."""
    feedback_count: int = 0
    avg_adjustment: float = 0.0
    guidance: str = ""
    evaluators: List[str] = Field(default_factory=list, description="Distinct evaluator display names")
    new_adjustment: Optional[float] = Field(
        default=None, description="Persisted adjustment after this batch; None when state was not touched"
    )
    history_written: bool = False
    error: Optional[str] = Field(default=None, description="Set when the parameter's update failed")

    @property
    def succeeded(self) -> bool:
        return self.error is None


class CalibrationRunResult(BaseModel):
    """Outcome of a whole analysis batch. Heterogeneous per parameter."""
    period_start: datetime
    period_end: datetime
    total_feedbacks_analyzed: int = 0
    results: Dict[str, ParameterCalibrationResult] = Field(default_factory=dict)

    @property
    def failed_parameters(self) -> List[str]:
        return [pid for pid, result in self.results.items() if result.error is not None]


class DeleteFeedbackResult(BaseModel):
    """
    Outcome of a feedback deletion.

    Deleting feedback never rolls back the score or voice-metric override it
    caused. ``override_retained`` flags that case so callers can decide
    whether to re-run scoring.
    """
    feedback_id: str
    deleted: bool = True
    override_retained: bool = False
    warning: Optional[str] = None


class CalibrationHistoryView(BaseModel):
    """History entry as returned to callers, evaluator ids resolved to names."""
    id: str
    parameter_id: str
    previous_adjustment: float
    new_adjustment: float
    previous_guidance: str
    new_guidance: str
    feedback_count: int
    period_start: datetime
    period_end: datetime
    summary: str
    evaluators: List[str] = Field(default_factory=list)
    created_at: datetime


class EvaluatorFeedbackCount(BaseModel):
    evaluator_id: str
    evaluator_name: str
    feedback_count: int


class ScoreFeedbackAverages(BaseModel):
    """Averages over score-type feedback matching a query."""
    count: int = 0
    avg_original_score: Optional[float] = None
    avg_adjusted_score: Optional[float] = None


class FeedbackPage(BaseModel):
    """One page of a filtered feedback query plus summary statistics."""
    feedbacks: List[FeedbackRecord] = Field(default_factory=list)
    page: int
    limit: int
    total_count: int
    total_pages: int
    by_evaluator: List[EvaluatorFeedbackCount] = Field(default_factory=list)
    score_averages: ScoreFeedbackAverages = Field(default_factory=ScoreFeedbackAverages)


class GuidanceContextEntry(BaseModel):
    """Calibration hint a scorer embeds in its prompt context for one parameter."""
    adjustment: float
    guidance: str
