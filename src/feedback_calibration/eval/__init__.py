"""
Calibration analysis and reporting.

Provides the batch calibration analyzer, the calibration state/history read
surface and correction statistics per scoring parameter.
"""

from .calibration import (
    CalibrationAnalyzer,
    FeedbackBatch,
    build_summary,
    clamp_adjustment,
    select_guidance,
    should_write_history,
    smooth_adjustment,
)

from .history import CalibrationReader

from .analysis import (
    FeedbackStatistics,
    FeedbackStatisticsAnalyzer,
    compute_feedback_statistics,
)


__all__ = [
    # Calibration
    'CalibrationAnalyzer',
    'FeedbackBatch',
    'build_summary',
    'clamp_adjustment',
    'select_guidance',
    'should_write_history',
    'smooth_adjustment',

    # State and history
    'CalibrationReader',

    # Statistics
    'FeedbackStatistics',
    'FeedbackStatisticsAnalyzer',
    'compute_feedback_statistics',
]
