"""
Tests for the feedback ledger.

Covers submission validation, immediate score and voice overrides,
transactional atomicity, deletion rules and feedback queries.
"""

import sqlite3
from datetime import date
from unittest.mock import patch

import pytest

from feedback_calibration.config import CalibrationSettings
from feedback_calibration.database.queries import ScoreQueries
from feedback_calibration.engine import CalibrationEngine
from feedback_calibration.exceptions import ForbiddenError, NotFoundError, PersistenceError, ValidationError
from feedback_calibration.feedback import OVERRIDE_RETAINED_WARNING, FeedbackTarget
from feedback_calibration.models import FeedbackType, MissingMetricPolicy, VoiceMetric, VoiceMetricSnapshot


@pytest.fixture
def scored_engine(engine):
    """Engine with one evaluation scored on two parameters."""
    engine.record_score("eval-1", "empathy", 3, note="AI: some empathy shown")
    engine.record_score("eval-1", "confidence", 4)
    return engine


class TestSubmitValidation:
    """Input validation happens before anything is written."""

    @pytest.mark.parametrize("comment", ["", "   ", None])
    def test_empty_comment_rejected(self, scored_engine, comment):
        with pytest.raises(ValidationError, match="Comment is required"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
                comment, adjusted_score=4,
            )
        assert scored_engine.list_feedback("eval-1") == []

    def test_unknown_type_rejected(self, scored_engine):
        with pytest.raises(ValidationError, match="Unknown feedback type"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "transcript", FeedbackTarget(parameter_id="empathy"), "why"
            )

    def test_unresolvable_score_target(self, scored_engine):
        """Score feedback for a parameter with no score on the evaluation fails."""
        with pytest.raises(ValidationError, match="No score found"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="closure_quality"),
                "missing score", adjusted_score=2,
            )

    def test_unknown_score_id(self, scored_engine):
        with pytest.raises(ValidationError):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "score", FeedbackTarget(score_id="nope"), "bad ref"
            )

    def test_score_from_other_evaluation(self, scored_engine):
        other = scored_engine.record_score("eval-2", "empathy", 2)
        with pytest.raises(ValidationError, match="does not belong"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "score", FeedbackTarget(score_id=other.id), "wrong evaluation"
            )

    @pytest.mark.parametrize("adjusted", [0, 6, 3.5])
    def test_adjusted_score_out_of_range(self, scored_engine, adjusted):
        with pytest.raises(ValidationError, match="between 1 and 5"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
                "out of range", adjusted_score=adjusted,
            )

    def test_voice_feedback_requires_metric(self, scored_engine):
        with pytest.raises(ValidationError, match="voice metric"):
            scored_engine.submit_feedback("eval-1", "eval-alice", "voice_quality", FeedbackTarget(), "no metric")

    def test_unknown_voice_metric(self, scored_engine):
        with pytest.raises(ValidationError, match="Unknown voice metric"):
            scored_engine.submit_feedback(
                "eval-1", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="pitch"), "pitch"
            )


class TestScoreOverride:
    """Score feedback overwrites the referenced score."""

    def test_adjusted_score_written_back(self, scored_engine, clock):
        record = scored_engine.submit_feedback(
            "eval-1", "eval-alice", FeedbackType.SCORE, FeedbackTarget(parameter_id="empathy"),
            "  Candidate acknowledged the customer's frustration  ", original_score=3, adjusted_score=4,
        )

        assert record.feedback_type == FeedbackType.SCORE
        assert record.comment == "Candidate acknowledged the customer's frustration"
        assert record.created_at == clock.now
        assert record.voice_metric is None

        scores = {s.parameter_id: s for s in scored_engine.get_scores("eval-1")}
        assert scores["empathy"].value == 4
        assert scores["empathy"].id == record.score_ref
        # Note is untouched by the override path
        assert scores["empathy"].note == "AI: some empathy shown"
        assert scores["confidence"].value == 4

    def test_explicit_score_id(self, scored_engine):
        score = scored_engine.get_scores("eval-1")[0]
        record = scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(score_id=score.id), "too low", adjusted_score=5,
        )
        assert record.score_ref == score.id

    def test_original_score_captured_when_omitted(self, scored_engine):
        record = scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"), "too low", adjusted_score=5,
        )
        assert record.original_score == 3

    def test_comment_only_feedback_leaves_score(self, scored_engine):
        scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"), "score is fair",
        )
        scores = {s.parameter_id: s for s in scored_engine.get_scores("eval-1")}
        assert scores["empathy"].value == 3

    def test_override_failure_rolls_back_feedback(self, scored_engine):
        """Record and override persist together or not at all."""
        with patch.object(ScoreQueries, "update_value", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(PersistenceError):
                scored_engine.submit_feedback(
                    "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
                    "too low", adjusted_score=5,
                )

        assert scored_engine.list_feedback("eval-1") == []
        scores = {s.parameter_id: s for s in scored_engine.get_scores("eval-1")}
        assert scores["empathy"].value == 3


class TestVoiceOverride:
    """Voice feedback updates the snapshot and its weighted overall."""

    def test_tone_correction_recomputes_overall(self, engine):
        engine.record_voice_metrics(
            VoiceMetricSnapshot(evaluation_id="eval-1", clarity=4, volume=4, pace=4, tone=4, overall=4)
        )

        record = engine.submit_feedback(
            "eval-1", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="tone"),
            "Tone was flat", adjusted_score=2,
        )

        assert record.voice_metric == VoiceMetric.TONE
        assert record.score_ref is None
        assert record.original_score == 4

        snapshot = engine.get_voice_metrics("eval-1")
        assert snapshot.tone == 2
        assert snapshot.overall == 3.7

    def test_missing_snapshot_uses_zero_fallback(self, engine):
        """Unobserved components count as zero in the recomputed overall."""
        engine.submit_feedback(
            "eval-9", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="clarity"),
            "Very clear", adjusted_score=4,
        )

        snapshot = engine.get_voice_metrics("eval-9")
        assert snapshot.clarity == 4
        assert snapshot.volume is None
        assert snapshot.overall == 1.4

    def test_exclude_policy(self, database, directory, parameters, clock):
        settings = CalibrationSettings(
            auto_calibration_threshold=0, voice_missing_metric_policy=MissingMetricPolicy.EXCLUDE
        )
        engine = CalibrationEngine(database, directory=directory, settings=settings,
                                   parameters=parameters, clock=clock)
        engine.submit_feedback(
            "eval-9", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="clarity"),
            "Very clear", adjusted_score=4,
        )

        assert engine.get_voice_metrics("eval-9").overall == pytest.approx(4.0)

    def test_overall_correction(self, engine):
        engine.record_voice_metrics(
            VoiceMetricSnapshot(evaluation_id="eval-1", clarity=4, volume=4, pace=4, tone=4, overall=4)
        )
        engine.submit_feedback(
            "eval-1", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="overall"),
            "Overall weaker than metrics suggest", adjusted_score=3,
        )

        snapshot = engine.get_voice_metrics("eval-1")
        assert snapshot.overall == 3
        assert snapshot.tone == 4


class TestDeleteFeedback:
    """Deletion rules and the retained-override warning."""

    @pytest.fixture
    def feedback(self, scored_engine):
        return scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
            "too low", original_score=3, adjusted_score=5,
        )

    def test_author_can_delete(self, scored_engine, feedback):
        result = scored_engine.delete_feedback(feedback.id, "eval-alice")

        assert result.deleted
        assert scored_engine.list_feedback("eval-1") == []

    def test_override_is_retained(self, scored_engine, feedback):
        """Deleting does not roll back the score override, and says so."""
        result = scored_engine.delete_feedback(feedback.id, "eval-alice")

        assert result.override_retained is True
        assert result.warning == OVERRIDE_RETAINED_WARNING
        scores = {s.parameter_id: s for s in scored_engine.get_scores("eval-1")}
        assert scores["empathy"].value == 5

    def test_comment_only_feedback_has_no_warning(self, scored_engine):
        record = scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="confidence"), "looks right",
        )
        result = scored_engine.delete_feedback(record.id, "eval-alice")

        assert result.override_retained is False
        assert result.warning is None

    def test_other_evaluator_forbidden(self, scored_engine, feedback):
        with pytest.raises(ForbiddenError):
            scored_engine.delete_feedback(feedback.id, "eval-bob")
        assert len(scored_engine.list_feedback("eval-1")) == 1

    def test_admin_can_delete(self, scored_engine, feedback):
        result = scored_engine.delete_feedback(feedback.id, "admin-1", requester_is_admin=True)
        assert result.deleted

    def test_missing_feedback(self, scored_engine):
        with pytest.raises(NotFoundError):
            scored_engine.delete_feedback("does-not-exist", "admin-1", requester_is_admin=True)

    def test_get_after_delete(self, scored_engine, feedback):
        assert scored_engine.get_feedback(feedback.id).comment == "too low"

        scored_engine.delete_feedback(feedback.id, "eval-alice")

        with pytest.raises(NotFoundError):
            scored_engine.get_feedback(feedback.id)

    def test_wrong_evaluation(self, scored_engine, feedback):
        with pytest.raises(ValidationError, match="does not belong"):
            scored_engine.delete_feedback(feedback.id, "eval-alice", evaluation_id="eval-2")


class TestFeedbackQueries:
    """Listing and filtered queries."""

    @pytest.fixture
    def populated(self, scored_engine, clock):
        scored_engine.record_score("eval-2", "empathy", 2)
        scored_engine.submit_feedback(
            "eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
            "first", original_score=3, adjusted_score=4,
        )
        clock.advance(days=1)
        scored_engine.submit_feedback(
            "eval-1", "eval-bob", "score", FeedbackTarget(parameter_id="confidence"),
            "second", original_score=4, adjusted_score=2,
        )
        clock.advance(days=1)
        scored_engine.submit_feedback(
            "eval-2", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
            "third", original_score=2, adjusted_score=3,
        )
        scored_engine.submit_feedback(
            "eval-2", "eval-alice", "voice_quality", FeedbackTarget(voice_metric="pace"),
            "fourth", adjusted_score=3,
        )
        return scored_engine

    def test_list_for_evaluation_newest_first(self, populated):
        comments = [r.comment for r in populated.list_feedback("eval-1")]
        assert comments == ["second", "first"]

    def test_query_filters(self, populated):
        page = populated.query_feedback(evaluator_id="eval-alice")
        assert page.total_count == 3

        page = populated.query_feedback(parameter_id="empathy")
        assert [r.comment for r in page.feedbacks] == ["third", "first"]

        page = populated.query_feedback(feedback_type="voice_quality")
        assert [r.comment for r in page.feedbacks] == ["fourth"]

    def test_end_date_covers_whole_day(self, populated, clock):
        page = populated.query_feedback(end=date(2024, 6, 11))
        assert sorted(r.comment for r in page.feedbacks) == ["first", "second"]

        page = populated.query_feedback(start=date(2024, 6, 12))
        assert sorted(r.comment for r in page.feedbacks) == ["fourth", "third"]

    def test_pagination(self, populated):
        page = populated.query_feedback(page=2, limit=3)

        assert page.total_count == 4
        assert page.total_pages == 2
        assert len(page.feedbacks) == 1
        assert page.feedbacks[0].comment == "first"

    def test_stats(self, populated):
        page = populated.query_feedback()

        counts = {c.evaluator_id: c for c in page.by_evaluator}
        assert counts["eval-alice"].feedback_count == 3
        assert counts["eval-alice"].evaluator_name == "Alice"
        assert counts["eval-bob"].evaluator_name == "bob@example.com"

        assert page.score_averages.count == 3
        assert page.score_averages.avg_original_score == pytest.approx(3.0)
        assert page.score_averages.avg_adjusted_score == pytest.approx(3.0)

    def test_invalid_page(self, populated):
        with pytest.raises(ValidationError):
            populated.query_feedback(page=0)
