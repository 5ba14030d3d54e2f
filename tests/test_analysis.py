"""
Tests for correction statistics.
"""

from datetime import datetime, timezone

import pytest

from feedback_calibration.eval import compute_feedback_statistics
from feedback_calibration.exceptions import ValidationError
from feedback_calibration.feedback import FeedbackTarget
from feedback_calibration.models import FeedbackRecord, FeedbackType


def make_record(original, adjusted, n=0):
    return FeedbackRecord(
        id=f"fb-{n}",
        evaluation_id=f"eval-{n}",
        evaluator_id="eval-alice",
        feedback_type=FeedbackType.SCORE,
        score_ref=f"score-{n}",
        original_score=original,
        adjusted_score=adjusted,
        comment="correction",
        created_at=datetime(2024, 6, 10, tzinfo=timezone.utc),
    )


class TestComputeFeedbackStatistics:

    def test_basic_statistics(self):
        records = [make_record(3, 4, 1), make_record(3, 5, 2), make_record(4, 4, 3)]

        stats = compute_feedback_statistics("empathy", records)

        assert stats.n_samples == 3
        assert stats.mean_original == pytest.approx(10 / 3)
        assert stats.mean_adjusted == pytest.approx(13 / 3)
        assert stats.mean_delta == pytest.approx(1.0)
        assert stats.mean_absolute_delta == pytest.approx(1.0)
        assert stats.delta_std == pytest.approx(1.0)
        assert stats.upward_share == pytest.approx(2 / 3)
        assert stats.downward_share == 0.0
        assert stats.unchanged_share == pytest.approx(1 / 3)
        assert stats.systematic_bias_detected

    def test_balanced_corrections_show_no_bias(self):
        records = [make_record(3, 4, 1), make_record(4, 3, 2)]

        stats = compute_feedback_statistics("confidence", records)

        assert stats.mean_delta == pytest.approx(0.0)
        assert stats.mean_absolute_delta == pytest.approx(1.0)
        assert not stats.systematic_bias_detected

    def test_single_record_has_zero_spread(self):
        stats = compute_feedback_statistics("empathy", [make_record(2, 5)])
        assert stats.delta_std == 0.0

    def test_no_corrections(self):
        assert compute_feedback_statistics("empathy", []) is None
        assert compute_feedback_statistics("empathy", [make_record(3, None)]) is None

    def test_to_dict(self):
        stats = compute_feedback_statistics("empathy", [make_record(2, 3)])
        data = stats.to_dict()

        assert data["parameter_id"] == "empathy"
        assert data["n_samples"] == 1


class TestFeedbackStatisticsAnalyzer:

    def test_per_parameter_statistics(self, engine):
        engine.record_score("eval-1", "empathy", 2)
        engine.record_score("eval-1", "confidence", 5)
        engine.submit_feedback("eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
                               "more empathy than scored", adjusted_score=4)
        engine.submit_feedback("eval-1", "eval-bob", "score", FeedbackTarget(parameter_id="confidence"),
                               "hesitant throughout", adjusted_score=4)

        statistics = engine.get_feedback_statistics(7)

        assert set(statistics) == {"empathy", "confidence"}
        assert statistics["empathy"].mean_delta == pytest.approx(2.0)
        assert statistics["confidence"].mean_delta == pytest.approx(-1.0)

    def test_does_not_touch_calibration_state(self, engine):
        engine.record_score("eval-1", "empathy", 2)
        engine.submit_feedback("eval-1", "eval-alice", "score", FeedbackTarget(parameter_id="empathy"),
                               "too low", adjusted_score=4)

        engine.get_feedback_statistics(7)

        assert engine.get_calibration_state()["empathy"].last_analyzed_at is None

    def test_invalid_period(self, engine):
        with pytest.raises(ValidationError):
            engine.statistics.analyze(0)

    def test_zero_period_not_replaced_by_default(self, engine):
        with pytest.raises(ValidationError):
            engine.get_feedback_statistics(0)
