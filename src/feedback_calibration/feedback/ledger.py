"""
Feedback ledger: recording, deleting and querying evaluator corrections.

Submitting feedback validates the input, appends the record and applies its
immediate override in one transaction. Deleting feedback removes the record
only; the override it caused stays in place and the delete result says so.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional, Union

from ..database.connection import Database, utcnow
from ..database.directory import EvaluatorDirectory, display_name_or_id
from ..database.queries import FeedbackFilters, FeedbackQueries, ScoreQueries, VoiceMetricQueries, new_id
from ..exceptions import ForbiddenError, NotFoundError, ValidationError
from ..models.database import (
    SCORE_MAX,
    SCORE_MIN,
    FeedbackRecord,
    FeedbackType,
    MissingMetricPolicy,
    Score,
    VoiceMetric,
)
from ..models.outputs import DeleteFeedbackResult, EvaluatorFeedbackCount, FeedbackPage, ScoreFeedbackAverages
from ..models.permissions import Requester
from .overrides import ImmediateOverrideApplier


logger = logging.getLogger(__name__)


OVERRIDE_RETAINED_WARNING = (
    "Feedback deleted; the score override it applied was not rolled back. "
    "Re-run scoring if the original value should be restored."
)


@dataclass
class FeedbackTarget:
    """
    What a feedback event corrects.

    Score feedback names either ``score_id`` or ``parameter_id`` (looked up
    within the evaluation). Voice feedback names ``voice_metric``.
    """
    score_id: Optional[str] = None
    parameter_id: Optional[str] = None
    voice_metric: Optional[Union[VoiceMetric, str]] = None


def _parse_feedback_type(value: Union[FeedbackType, str, None]) -> FeedbackType:
    if not value:
        raise ValidationError("feedback type is required")
    try:
        return FeedbackType(value)
    except ValueError:
        raise ValidationError(f"Unknown feedback type: {value!r}") from None


def _parse_voice_metric(value: Union[VoiceMetric, str, None]) -> VoiceMetric:
    if not value:
        raise ValidationError("voice_quality feedback requires a voice metric")
    try:
        return VoiceMetric(value)
    except ValueError:
        raise ValidationError(f"Unknown voice metric: {value!r}") from None


def _check_number(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")


def _as_window_end(value: Union[datetime, date]) -> datetime:
    """A bare date as a window end covers that whole day."""
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def _as_window_start(value: Union[datetime, date]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class FeedbackLedger:
    """Append-mostly log of evaluator corrections with immediate overrides."""

    def __init__(self, database: Database, directory: EvaluatorDirectory,
                 policy: MissingMetricPolicy = MissingMetricPolicy.ZERO,
                 clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.directory = directory
        self.applier = ImmediateOverrideApplier(policy)
        self.clock = clock

    def submit(self, evaluation_id: str, evaluator_id: str,
               feedback_type: Union[FeedbackType, str], target: FeedbackTarget,
               comment: str, original_score: Optional[float] = None,
               adjusted_score: Optional[float] = None) -> FeedbackRecord:
        """
        Record one feedback event and apply its override atomically.

        Raises:
            ValidationError: empty comment, unknown type or metric, unresolved
                score target, or a score correction outside 1-5.
        """
        if not evaluation_id:
            raise ValidationError("evaluation_id is required")
        if not evaluator_id:
            raise ValidationError("evaluator_id is required")
        kind = _parse_feedback_type(feedback_type)
        if comment is None or not str(comment).strip():
            raise ValidationError("Comment is required")
        comment = str(comment).strip()
        _check_number("original_score", original_score)
        _check_number("adjusted_score", adjusted_score)

        voice_metric = None
        if kind == FeedbackType.VOICE_QUALITY:
            voice_metric = _parse_voice_metric(target.voice_metric)
        elif adjusted_score is not None:
            if adjusted_score != int(adjusted_score) or not SCORE_MIN <= adjusted_score <= SCORE_MAX:
                raise ValidationError(
                    f"adjusted_score must be a whole number between {SCORE_MIN} and {SCORE_MAX}"
                )

        now = self.clock()
        with self.database.transaction() as conn:
            score_ref = None
            if kind == FeedbackType.SCORE:
                score = self._resolve_score(conn, evaluation_id, target)
                score_ref = score.id
                if original_score is None:
                    original_score = score.value
            elif original_score is None:
                snapshot = VoiceMetricQueries.get(conn, evaluation_id)
                if snapshot is not None:
                    original_score = snapshot.get_metric(voice_metric)

            record = FeedbackRecord(
                id=new_id(),
                evaluation_id=evaluation_id,
                evaluator_id=evaluator_id,
                feedback_type=kind,
                score_ref=score_ref,
                voice_metric=voice_metric,
                original_score=original_score,
                adjusted_score=adjusted_score,
                comment=comment,
                created_at=now,
            )
            FeedbackQueries.insert(conn, record)
            self.applier.apply(conn, record, now)

        logger.info(f"Created feedback {record.id} ({kind.value}) on evaluation {evaluation_id} by {evaluator_id}")
        return record

    def _resolve_score(self, conn, evaluation_id: str, target: FeedbackTarget) -> Score:
        """Find the score a score-type feedback refers to."""
        score = None
        if target.score_id:
            score = ScoreQueries.get(conn, target.score_id)
            if score is not None and score.evaluation_id != evaluation_id:
                raise ValidationError(
                    f"Score {target.score_id} does not belong to evaluation {evaluation_id}"
                )
        elif target.parameter_id:
            score = ScoreQueries.find(conn, evaluation_id, target.parameter_id)

        if score is None:
            raise ValidationError(
                f"No score found for evaluation {evaluation_id} "
                f"(score_id={target.score_id!r}, parameter_id={target.parameter_id!r})"
            )
        return score

    def delete(self, feedback_id: str, requester: Requester,
               evaluation_id: Optional[str] = None) -> DeleteFeedbackResult:
        """
        Delete a feedback record.

        The score or voice-metric override the record caused is NOT rolled
        back; ``override_retained`` on the result reports that.

        Raises:
            NotFoundError: no such feedback.
            ValidationError: feedback belongs to another evaluation.
            ForbiddenError: requester is neither the author nor an admin.
        """
        if not feedback_id:
            raise ValidationError("feedback_id is required")

        with self.database.transaction() as conn:
            record = FeedbackQueries.get(conn, feedback_id)
            if record is None:
                raise NotFoundError(f"Feedback not found: {feedback_id}")
            if evaluation_id is not None and record.evaluation_id != evaluation_id:
                raise ValidationError(f"Feedback {feedback_id} does not belong to evaluation {evaluation_id}")
            if not requester.can_delete_feedback(record):
                raise ForbiddenError(f"Not authorized to delete feedback {feedback_id}")
            FeedbackQueries.delete(conn, feedback_id)

        override_retained = record.adjusted_score is not None
        logger.info(f"Deleted feedback {feedback_id} (override retained: {override_retained})")
        return DeleteFeedbackResult(
            feedback_id=feedback_id,
            override_retained=override_retained,
            warning=OVERRIDE_RETAINED_WARNING if override_retained else None,
        )

    def get(self, feedback_id: str) -> FeedbackRecord:
        with self.database.read() as conn:
            record = FeedbackQueries.get(conn, feedback_id)
        if record is None:
            raise NotFoundError(f"Feedback not found: {feedback_id}")
        return record

    def list_for_evaluation(self, evaluation_id: str) -> List[FeedbackRecord]:
        """All feedback for one evaluation, newest first."""
        with self.database.read() as conn:
            records, _ = FeedbackQueries.search(conn, FeedbackFilters(evaluation_id=evaluation_id))
        return records

    def query(self, start: Optional[Union[datetime, date]] = None,
              end: Optional[Union[datetime, date]] = None,
              evaluator_id: Optional[str] = None,
              parameter_id: Optional[str] = None,
              feedback_type: Optional[Union[FeedbackType, str]] = None,
              page: int = 1, limit: int = 100) -> FeedbackPage:
        """Filtered, paginated feedback with per-evaluator counts and score averages."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        filters = FeedbackFilters(
            start=_as_window_start(start) if start is not None else None,
            end=_as_window_end(end) if end is not None else None,
            evaluator_id=evaluator_id,
            parameter_id=parameter_id,
            feedback_type=_parse_feedback_type(feedback_type) if feedback_type else None,
        )

        with self.database.read() as conn:
            records, total = FeedbackQueries.search(conn, filters, offset=(page - 1) * limit, limit=limit)
            counts = FeedbackQueries.counts_by_evaluator(conn, filters)
            n_scores, avg_original, avg_adjusted = FeedbackQueries.score_averages(conn, filters)

        by_evaluator = [
            EvaluatorFeedbackCount(
                evaluator_id=evaluator,
                evaluator_name=display_name_or_id(self.directory, evaluator),
                feedback_count=count,
            )
            for evaluator, count in counts.items()
        ]

        return FeedbackPage(
            feedbacks=records,
            page=page,
            limit=limit,
            total_count=total,
            total_pages=math.ceil(total / limit),
            by_evaluator=by_evaluator,
            score_averages=ScoreFeedbackAverages(
                count=n_scores,
                avg_original_score=avg_original,
                avg_adjusted_score=avg_adjusted,
            ),
        )
