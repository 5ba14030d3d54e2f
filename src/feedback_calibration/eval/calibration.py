"""
Calibration analysis over evaluator feedback.

This module turns a window of score corrections into a per-parameter
calibration signal:
1. Select score feedback with an adjusted value inside the window
2. Average the corrections (adjusted - original) per parameter
3. Pick guidance text from the direction and size of the average
4. Blend the average into the stored adjustment (exponential smoothing)
5. Clamp to the allowed bound, persist, and log a history entry when the
   outcome changed materially

Each parameter's state is read and replaced inside its own transaction, so
a store failure on one parameter is reported in that parameter's result and
the batch moves on. Every run is logged in calibration_runs, whether or not
it changed any state.
"""

import logging
import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from ..config import CalibrationSettings
from ..database.connection import Database, utcnow
from ..database.directory import EvaluatorDirectory, display_name_or_id
from ..database.queries import CalibrationQueries, FeedbackQueries, new_id
from ..exceptions import PersistenceError, ValidationError
from ..models.database import (
    ADJUSTMENT_BOUND,
    COMPARISON_DIGITS,
    CalibrationHistoryEntry,
    CalibrationState,
    FeedbackRecord,
    ScoringParameter,
)
from ..models.outputs import CalibrationRunResult, ParameterCalibrationResult


logger = logging.getLogger(__name__)


@dataclass
class FeedbackBatch:
    """Score corrections for one parameter within one analysis window."""
    parameter: ScoringParameter
    records: List[FeedbackRecord]
    evaluator_names: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def deltas(self) -> List[float]:
        # Missing originals count as 0
        return [r.adjusted_score - (r.original_score or 0) for r in self.records]

    @property
    def avg_delta(self) -> float:
        return statistics.mean(self.deltas) if self.records else 0.0

    @property
    def evaluator_ids(self) -> List[str]:
        return list(dict.fromkeys(r.evaluator_id for r in self.records))

    @property
    def comments(self) -> List[str]:
        return [r.comment for r in self.records]


def select_guidance(label: str, avg_delta: float, feedback_count: int, comments: Sequence[str],
                    threshold: float = 0.3, aligned_min_feedback: int = 3,
                    max_samples: int = 5) -> str:
    """
    Guidance text for a batch; the first matching rule wins.

    Above +threshold evaluators rate higher than the AI, below -threshold
    lower; otherwise enough feedback means the AI is aligned, and too little
    feedback yields no guidance.
    """
    sample = "; ".join(comments[:max_samples])
    delta = round(avg_delta, COMPARISON_DIGITS)

    if delta > threshold:
        return (f"Evaluators tend to rate {label} higher than AI. "
                f"Consider being more generous. Common feedback: {sample}")
    if delta < -threshold:
        return (f"Evaluators tend to rate {label} lower than AI. "
                f"Consider being more strict. Common feedback: {sample}")
    if feedback_count >= aligned_min_feedback:
        return f"AI scoring is generally aligned with evaluators for {label}. Recent feedback: {sample}"
    return ""


def smooth_adjustment(previous: Optional[float], avg_delta: float, previous_weight: float = 0.3) -> float:
    """
    Blend the batch average into the previous adjustment.

    First-time calibration has no history to smooth against and adopts the
    batch average directly.
    """
    if previous is None:
        return avg_delta
    return previous_weight * previous + (1.0 - previous_weight) * avg_delta


def clamp_adjustment(value: float, bound: float = ADJUSTMENT_BOUND) -> float:
    return max(-bound, min(bound, value))


def should_write_history(previous: Optional[CalibrationState], new_adjustment: float,
                         guidance: str, change_threshold: float = 0.1) -> bool:
    """History is written for a first calibration or a material change."""
    if previous is None:
        return True
    change = round(abs(new_adjustment - previous.adjustment), COMPARISON_DIGITS)
    return change > change_threshold or guidance != previous.guidance


def build_summary(feedback_count: int, avg_delta: float, evaluator_names: Sequence[str]) -> str:
    return (f"Analyzed {feedback_count} feedbacks. Average adjustment: {avg_delta:.2f}. "
            f"Evaluators: {', '.join(evaluator_names)}")


class CalibrationAnalyzer:
    """Batch recomputation of calibration state from the feedback ledger."""

    def __init__(self, database: Database, directory: EvaluatorDirectory,
                 parameters: Sequence[ScoringParameter],
                 settings: Optional[CalibrationSettings] = None,
                 clock: Callable[[], datetime] = utcnow):
        """
        Args:
            database: Initialized store
            directory: Evaluator lookups for display names
            parameters: The scoring-parameter catalog to analyze
            settings: Thresholds and weights (defaults when omitted)
            clock: Source of "now", injectable for tests
        """
        if not parameters:
            raise ValueError("parameter catalog must not be empty")
        self.database = database
        self.directory = directory
        self.parameters = list(parameters)
        self.settings = settings or CalibrationSettings()
        self.clock = clock

    def analyze(self, period_days: Optional[int] = None) -> CalibrationRunResult:
        """
        Recompute calibration for every catalog parameter over a trailing window.

        Args:
            period_days: Window length in days (positive integer); defaults to
                the configured default period

        Returns:
            Run result with a per-parameter entry. Entries are heterogeneous:
            parameters without feedback report zeros, failed parameters carry
            an ``error``.
        """
        if period_days is None:
            period_days = self.settings.default_period_days
        if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days < 1:
            raise ValidationError(f"period_days must be a positive integer, got {period_days!r}")

        period_end = self.clock()
        period_start = period_end - timedelta(days=period_days)
        logger.info(f"Running calibration analysis for {period_start.isoformat()} to {period_end.isoformat()}")

        results: Dict[str, ParameterCalibrationResult] = {}
        for parameter in self.parameters:
            try:
                results[parameter.id] = self._analyze_parameter(parameter, period_start, period_end)
            except PersistenceError as e:
                logger.error(f"Calibration update failed for {parameter.id}: {e}")
                results[parameter.id] = ParameterCalibrationResult(error=str(e))

        total = sum(result.feedback_count for result in results.values())
        self._record_run(period_start, period_end, total)
        logger.info(f"Calibration analysis complete: {total} feedbacks across {len(results)} parameters")

        return CalibrationRunResult(
            period_start=period_start,
            period_end=period_end,
            total_feedbacks_analyzed=total,
            results=results,
        )

    def _record_run(self, period_start: datetime, period_end: datetime, total: int) -> None:
        """Log the run so pending-feedback counts restart even when nothing was written."""
        try:
            with self.database.transaction() as conn:
                CalibrationQueries.insert_run(conn, period_start, period_end, total, period_end)
        except PersistenceError as e:
            logger.error(f"Failed to record calibration run: {e}")

    def _analyze_parameter(self, parameter: ScoringParameter, period_start: datetime,
                           period_end: datetime) -> ParameterCalibrationResult:
        """
        Compute and write one parameter's calibration.

        Feedback records are immutable, so the batch is read and evaluator
        names are resolved before the write transaction opens. The previous
        state is read inside the transaction that replaces it.
        """
        settings = self.settings

        with self.database.read() as conn:
            records = FeedbackQueries.select_for_calibration(conn, parameter.id, period_start, period_end)
        if not records:
            return ParameterCalibrationResult()

        batch = FeedbackBatch(parameter=parameter, records=records)
        batch.evaluator_names = list(dict.fromkeys(
            display_name_or_id(self.directory, evaluator_id) for evaluator_id in batch.evaluator_ids
        ))
        avg_delta = batch.avg_delta

        guidance = select_guidance(
            parameter.label, avg_delta, batch.count, batch.comments,
            threshold=settings.guidance_threshold,
            aligned_min_feedback=settings.aligned_min_feedback,
            max_samples=settings.max_comment_samples,
        )

        with self.database.transaction() as conn:
            previous = CalibrationQueries.get_state(conn, parameter.id)
            raw = smooth_adjustment(
                previous.adjustment if previous else None, avg_delta, settings.previous_weight
            )
            clamped = clamp_adjustment(raw)

            state = CalibrationState(
                parameter_id=parameter.id,
                adjustment=clamped,
                guidance=guidance or (previous.guidance if previous else ""),
                total_feedback_count=(previous.total_feedback_count if previous else 0) + batch.count,
                last_batch_avg_adjustment=avg_delta,
                last_analyzed_at=period_end,
            )
            CalibrationQueries.upsert_state(conn, state)

            history_written = should_write_history(
                previous, clamped, guidance, settings.history_change_threshold
            )
            if history_written:
                CalibrationQueries.insert_history(conn, CalibrationHistoryEntry(
                    id=new_id(),
                    parameter_id=parameter.id,
                    previous_adjustment=previous.adjustment if previous else 0.0,
                    new_adjustment=clamped,
                    previous_guidance=previous.guidance if previous else "",
                    new_guidance=guidance,
                    feedback_count=batch.count,
                    period_start=period_start,
                    period_end=period_end,
                    evaluator_ids=batch.evaluator_ids,
                    summary=build_summary(batch.count, avg_delta, batch.evaluator_names),
                    created_at=period_end,
                ))

        logger.debug(
            f"{parameter.id}: {batch.count} feedbacks, avg {avg_delta:.3f}, "
            f"adjustment {clamped:.3f} (raw {raw:.3f}), history {'written' if history_written else 'skipped'}"
        )

        return ParameterCalibrationResult(
            feedback_count=batch.count,
            avg_adjustment=avg_delta,
            guidance=guidance,
            evaluators=batch.evaluator_names,
            new_adjustment=clamped,
            history_written=history_written,
        )
