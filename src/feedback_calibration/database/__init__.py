"""
Persistence layer for the calibration engine.

Provides the SQLite connection with atomic write transactions, table-level
query helpers and the evaluator directory interface.
"""

from .connection import (
    Database,
    create_database,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

from .queries import (
    CalibrationQueries,
    FeedbackFilters,
    FeedbackQueries,
    ScoreQueries,
    VoiceMetricQueries,
)

from .directory import (
    EvaluatorDirectory,
    InMemoryEvaluatorDirectory,
    display_name_or_id,
    resolve_display_names,
)

__all__ = [
    # Connection
    'Database',
    'create_database',
    'from_db_timestamp',
    'to_db_timestamp',
    'utcnow',

    # Queries
    'CalibrationQueries',
    'FeedbackFilters',
    'FeedbackQueries',
    'ScoreQueries',
    'VoiceMetricQueries',

    # Evaluator directory
    'EvaluatorDirectory',
    'InMemoryEvaluatorDirectory',
    'display_name_or_id',
    'resolve_display_names',
]
