"""
Public entry point of the feedback calibration engine.

``CalibrationEngine`` wires the store, the feedback ledger, the calibration
analyzer and the read surface together and exposes the operations an HTTP
layer, CLI or scheduler calls.
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Union

from .config import CalibrationSettings, Settings
from .database.connection import Database, create_database, utcnow
from .database.directory import EvaluatorDirectory, InMemoryEvaluatorDirectory
from .database.queries import CalibrationQueries, FeedbackQueries, ScoreQueries, VoiceMetricQueries
from .eval.analysis import FeedbackStatistics, FeedbackStatisticsAnalyzer
from .eval.calibration import CalibrationAnalyzer
from .eval.history import CalibrationReader
from .exceptions import ForbiddenError, ValidationError
from .feedback.ledger import FeedbackLedger, FeedbackTarget
from .models.database import (
    SCORE_MAX,
    SCORE_MIN,
    CalibrationState,
    FeedbackRecord,
    FeedbackType,
    Score,
    ScoringParameter,
    VoiceMetricSnapshot,
)
from .models.outputs import (
    CalibrationHistoryView,
    CalibrationRunResult,
    DeleteFeedbackResult,
    FeedbackPage,
    GuidanceContextEntry,
)
from .models.permissions import Requester


logger = logging.getLogger(__name__)


class CalibrationEngine:
    """Feedback capture, immediate overrides and calibration analysis over one store."""

    def __init__(self, database: Database, directory: Optional[EvaluatorDirectory] = None,
                 settings: Optional[CalibrationSettings] = None,
                 parameters: Optional[Sequence[ScoringParameter]] = None,
                 clock: Callable[[], datetime] = utcnow):
        """
        Args:
            database: Store to operate on (initialized here if needed)
            directory: Evaluator lookups; an empty in-memory directory by default
            settings: Calibration settings; loaded from the environment when omitted
            parameters: Scoring-parameter catalog; defaults to the configured one
            clock: Source of "now", injectable for tests
        """
        if not database.is_initialized:
            database.initialize()

        self.database = database
        self.directory = directory or InMemoryEvaluatorDirectory()
        self.settings = settings or CalibrationSettings()
        self.parameters = list(parameters) if parameters else self.settings.catalog()
        self.clock = clock

        self.ledger = FeedbackLedger(
            database, self.directory, policy=self.settings.voice_missing_metric_policy, clock=clock
        )
        self.analyzer = CalibrationAnalyzer(
            database, self.directory, self.parameters, settings=self.settings, clock=clock
        )
        self.reader = CalibrationReader(database, self.directory, self.parameters)
        self.statistics = FeedbackStatisticsAnalyzer(
            database, self.parameters, bias_threshold=self.settings.guidance_threshold, clock=clock
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None,
                      directory: Optional[EvaluatorDirectory] = None) -> "CalibrationEngine":
        """Build an engine with a store opened from configuration."""
        settings = settings or Settings.load()
        database = create_database(settings.store)
        return cls(database, directory=directory, settings=settings.calibration)

    def close(self) -> None:
        self.database.close()

    # Score store

    def record_score(self, evaluation_id: str, parameter_id: str, value: int, note: str = "") -> Score:
        """Create or overwrite the score for (evaluation, parameter)."""
        if not evaluation_id or not parameter_id:
            raise ValidationError("evaluation_id and parameter_id are required")
        if isinstance(value, bool) or not isinstance(value, int) or not SCORE_MIN <= value <= SCORE_MAX:
            raise ValidationError(f"Score must be between {SCORE_MIN} and {SCORE_MAX}")

        with self.database.transaction() as conn:
            score = ScoreQueries.upsert(conn, evaluation_id, parameter_id, value, note or "", self.clock())
        logger.info(f"Recorded score {parameter_id}={value} for evaluation {evaluation_id}")
        return score

    def get_scores(self, evaluation_id: str) -> List[Score]:
        with self.database.read() as conn:
            return ScoreQueries.list_for_evaluation(conn, evaluation_id)

    def record_voice_metrics(self, snapshot: VoiceMetricSnapshot) -> VoiceMetricSnapshot:
        """Store the scorer's voice metrics for an evaluation as given."""
        now = self.clock()
        with self.database.transaction() as conn:
            VoiceMetricQueries.save(conn, snapshot, now)
        return snapshot.model_copy(update={"updated_at": now})

    def get_voice_metrics(self, evaluation_id: str) -> Optional[VoiceMetricSnapshot]:
        with self.database.read() as conn:
            return VoiceMetricQueries.get(conn, evaluation_id)

    # Feedback ledger

    def submit_feedback(self, evaluation_id: str, evaluator_id: str,
                        feedback_type: Union[FeedbackType, str], target: FeedbackTarget,
                        comment: str, original_score: Optional[float] = None,
                        adjusted_score: Optional[float] = None) -> FeedbackRecord:
        """
        Record evaluator feedback and apply its override immediately.

        May trigger an automatic calibration run once enough feedback has
        accumulated since the last analysis; that run never fails the
        submission.
        """
        record = self.ledger.submit(
            evaluation_id, evaluator_id, feedback_type, target, comment,
            original_score=original_score, adjusted_score=adjusted_score,
        )
        self.maybe_auto_calibrate()
        return record

    def delete_feedback(self, feedback_id: str, requester_id: str, requester_is_admin: bool = False,
                        evaluation_id: Optional[str] = None) -> DeleteFeedbackResult:
        """Delete feedback; its override is retained and flagged on the result."""
        requester = Requester.from_flags(requester_id, requester_is_admin)
        return self.ledger.delete(feedback_id, requester, evaluation_id=evaluation_id)

    def get_feedback(self, feedback_id: str) -> FeedbackRecord:
        return self.ledger.get(feedback_id)

    def list_feedback(self, evaluation_id: str) -> List[FeedbackRecord]:
        return self.ledger.list_for_evaluation(evaluation_id)

    def query_feedback(self, start: Optional[Union[datetime, date]] = None,
                       end: Optional[Union[datetime, date]] = None,
                       evaluator_id: Optional[str] = None,
                       parameter_id: Optional[str] = None,
                       feedback_type: Optional[Union[FeedbackType, str]] = None,
                       page: int = 1, limit: int = 100) -> FeedbackPage:
        return self.ledger.query(
            start=start, end=end, evaluator_id=evaluator_id, parameter_id=parameter_id,
            feedback_type=feedback_type, page=page, limit=limit,
        )

    # Calibration

    def run_calibration_analysis(self, period_days: Optional[int] = None,
                                 requester: Optional[Requester] = None) -> CalibrationRunResult:
        """Run a calibration batch; when a requester is given it must be an admin."""
        if requester is not None and not requester.can_run_analysis():
            raise ForbiddenError("Admin access required to run calibration analysis")
        return self.analyzer.analyze(period_days)

    def maybe_auto_calibrate(self) -> Optional[CalibrationRunResult]:
        """
        Run an analysis when feedback since the last analysis reaches the threshold.

        Failures are logged and swallowed so they never fail the caller.
        """
        threshold = self.settings.auto_calibration_threshold
        if threshold == 0:
            return None

        try:
            with self.database.read() as conn:
                since = CalibrationQueries.latest_analysis_at(conn)
                pending = FeedbackQueries.count_since(conn, since)

            if pending < threshold:
                return None

            logger.info(f"Auto-calibration triggered ({pending} feedbacks since last analysis)")
            return self.analyzer.analyze()
        except Exception as e:
            logger.error(f"Auto-calibration failed: {e}")
            return None

    def get_calibration_state(self) -> Dict[str, CalibrationState]:
        return self.reader.get_state()

    def get_calibration_history(self, parameter_id: Optional[str] = None,
                                limit: int = 50) -> List[CalibrationHistoryView]:
        return self.reader.get_history(parameter_id=parameter_id, limit=limit)

    def get_guidance_context(self) -> Dict[str, GuidanceContextEntry]:
        return self.reader.get_guidance_context()

    def get_feedback_statistics(self, period_days: Optional[int] = None) -> Dict[str, FeedbackStatistics]:
        if period_days is None:
            period_days = self.settings.default_period_days
        return self.statistics.analyze(period_days)
