"""
Agreement statistics between AI scores and evaluator corrections.

Summarizes, per scoring parameter, how far evaluators move the AI's scores:
mean original and adjusted values, mean and absolute correction, spread, and
the share of upward/downward corrections. Read-only; never touches
calibration state.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from ..database.connection import Database, utcnow
from ..database.queries import FeedbackQueries
from ..exceptions import ValidationError
from ..models.database import FeedbackRecord, ScoringParameter


logger = logging.getLogger(__name__)


@dataclass
class FeedbackStatistics:
    """Correction statistics for one parameter."""
    parameter_id: str
    n_samples: int
    mean_original: float
    mean_adjusted: float
    mean_delta: float  # positive = evaluators score higher than the AI
    mean_absolute_delta: float
    delta_std: float
    upward_share: float
    downward_share: float
    unchanged_share: float
    systematic_bias_detected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_feedback_statistics(parameter_id: str, records: Sequence[FeedbackRecord],
                                bias_threshold: float = 0.3) -> Optional[FeedbackStatistics]:
    """Statistics over score corrections; None when there are none."""
    pairs = [(r.original_score or 0.0, r.adjusted_score) for r in records if r.adjusted_score is not None]
    if not pairs:
        return None

    original = np.array([p[0] for p in pairs], dtype=float)
    adjusted = np.array([p[1] for p in pairs], dtype=float)
    deltas = adjusted - original
    n = len(deltas)

    mean_delta = float(np.mean(deltas))
    return FeedbackStatistics(
        parameter_id=parameter_id,
        n_samples=n,
        mean_original=float(np.mean(original)),
        mean_adjusted=float(np.mean(adjusted)),
        mean_delta=mean_delta,
        mean_absolute_delta=float(np.mean(np.abs(deltas))),
        delta_std=float(np.std(deltas, ddof=1)) if n > 1 else 0.0,
        upward_share=float(np.count_nonzero(deltas > 0)) / n,
        downward_share=float(np.count_nonzero(deltas < 0)) / n,
        unchanged_share=float(np.count_nonzero(deltas == 0)) / n,
        systematic_bias_detected=abs(mean_delta) > bias_threshold,
    )


class FeedbackStatisticsAnalyzer:
    """Computes correction statistics per catalog parameter over a trailing window."""

    def __init__(self, database: Database, parameters: Sequence[ScoringParameter],
                 bias_threshold: float = 0.3, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.parameters = list(parameters)
        self.bias_threshold = bias_threshold
        self.clock = clock

    def analyze(self, period_days: int = 7) -> Dict[str, FeedbackStatistics]:
        """Statistics for parameters that received corrections in the window."""
        if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days < 1:
            raise ValidationError(f"period_days must be a positive integer, got {period_days!r}")

        period_end = self.clock()
        period_start = period_end - timedelta(days=period_days)

        statistics_by_parameter = {}
        with self.database.read() as conn:
            for parameter in self.parameters:
                records = FeedbackQueries.select_for_calibration(conn, parameter.id, period_start, period_end)
                stats = compute_feedback_statistics(parameter.id, records, self.bias_threshold)
                if stats is not None:
                    statistics_by_parameter[parameter.id] = stats

        logger.info(f"Computed feedback statistics for {len(statistics_by_parameter)} parameters")
        return statistics_by_parameter
