"""
Immediate overrides triggered by a single feedback event.

A score correction overwrites the referenced score's value. A voice-quality
correction sets the named metric on the evaluation's snapshot and recomputes
the weighted overall. Overrides are one-directional: deleting the feedback
later does not undo them.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Dict, Optional

from ..database.queries import ScoreQueries, VoiceMetricQueries
from ..models.database import (
    COMPARISON_DIGITS,
    FeedbackRecord,
    FeedbackType,
    MissingMetricPolicy,
    VoiceMetric,
    VoiceMetricSnapshot,
)


logger = logging.getLogger(__name__)


VOICE_WEIGHTS: Dict[VoiceMetric, float] = {
    VoiceMetric.CLARITY: 0.35,
    VoiceMetric.VOLUME: 0.25,
    VoiceMetric.PACE: 0.25,
    VoiceMetric.TONE: 0.15,
}


def compute_overall(snapshot: VoiceMetricSnapshot,
                    policy: MissingMetricPolicy = MissingMetricPolicy.ZERO) -> Optional[float]:
    """
    Weighted overall voice score, rounded to COMPARISON_DIGITS.

    Returns None when the policy cannot produce a value (no observed
    component under EXCLUDE, any missing component under REQUIRE_ALL).
    """
    values = {metric: snapshot.get_metric(metric) for metric in VOICE_WEIGHTS}

    if policy == MissingMetricPolicy.ZERO:
        overall = sum(weight * (values[metric] or 0) for metric, weight in VOICE_WEIGHTS.items())
        return round(overall, COMPARISON_DIGITS)

    observed = {metric: value for metric, value in values.items() if value is not None}

    if policy == MissingMetricPolicy.REQUIRE_ALL:
        if len(observed) < len(VOICE_WEIGHTS):
            return None
        overall = sum(VOICE_WEIGHTS[metric] * value for metric, value in observed.items())
        return round(overall, COMPARISON_DIGITS)

    # EXCLUDE: renormalise over what was observed
    if not observed:
        return None
    total_weight = sum(VOICE_WEIGHTS[metric] for metric in observed)
    overall = sum(VOICE_WEIGHTS[metric] * value for metric, value in observed.items()) / total_weight
    return round(overall, COMPARISON_DIGITS)


def apply_voice_correction(snapshot: VoiceMetricSnapshot, metric: VoiceMetric, value: float,
                           policy: MissingMetricPolicy = MissingMetricPolicy.ZERO) -> VoiceMetricSnapshot:
    """Return a copy of the snapshot with the metric corrected and overall recomputed."""
    updated = snapshot.model_copy(deep=True)
    updated.set_metric(metric, value)

    # A direct correction of overall is kept as given
    if metric == VoiceMetric.OVERALL:
        return updated

    overall = compute_overall(updated, policy)
    if overall is not None:
        updated.overall = overall
    return updated


class ImmediateOverrideApplier:
    """Writes a feedback record's adjusted value back into the score or voice snapshot."""

    def __init__(self, policy: MissingMetricPolicy = MissingMetricPolicy.ZERO):
        self.policy = policy

    def apply(self, conn: sqlite3.Connection, record: FeedbackRecord, now: datetime) -> bool:
        """
        Apply the override for a record inside the caller's transaction.

        Returns True when something was written.
        """
        if record.adjusted_score is None:
            return False

        if record.feedback_type == FeedbackType.SCORE:
            ScoreQueries.update_value(conn, record.score_ref, int(record.adjusted_score), now)
            logger.debug(f"Score {record.score_ref} overridden to {record.adjusted_score}")
            return True

        snapshot = VoiceMetricQueries.get(conn, record.evaluation_id)
        if snapshot is None:
            snapshot = VoiceMetricSnapshot(evaluation_id=record.evaluation_id)

        updated = apply_voice_correction(snapshot, record.voice_metric, record.adjusted_score, self.policy)
        VoiceMetricQueries.save(conn, updated, now)
        logger.debug(
            f"Voice metric {record.voice_metric.value} for evaluation {record.evaluation_id} "
            f"set to {record.adjusted_score}; overall now {updated.overall}"
        )
        return True
