"""
Read surface for calibration state and history.

Callers always get an entry for every catalog parameter, whether or not it
has been calibrated, and history entries come back with evaluator ids
resolved to display names at read time.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..database.connection import Database
from ..database.directory import EvaluatorDirectory, resolve_display_names
from ..database.queries import CalibrationQueries
from ..exceptions import ValidationError
from ..models.database import CalibrationState, ScoringParameter
from ..models.outputs import CalibrationHistoryView, GuidanceContextEntry


logger = logging.getLogger(__name__)


class CalibrationReader:
    """Queries over calibration_states and calibration_history."""

    def __init__(self, database: Database, directory: EvaluatorDirectory,
                 parameters: Sequence[ScoringParameter]):
        self.database = database
        self.directory = directory
        self.parameters = list(parameters)

    def get_state(self) -> Dict[str, CalibrationState]:
        """Persisted state per catalog parameter, or the zero default when never calibrated."""
        with self.database.read() as conn:
            stored = {state.parameter_id: state for state in CalibrationQueries.list_states(conn)}

        return {
            parameter.id: stored.get(parameter.id) or CalibrationState.default(parameter.id)
            for parameter in self.parameters
        }

    def get_history(self, parameter_id: Optional[str] = None, limit: int = 50) -> List[CalibrationHistoryView]:
        """History entries newest-first, optionally for one parameter."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        with self.database.read() as conn:
            entries = CalibrationQueries.list_history(conn, parameter_id=parameter_id, limit=limit)

        return [
            CalibrationHistoryView(
                id=entry.id,
                parameter_id=entry.parameter_id,
                previous_adjustment=entry.previous_adjustment,
                new_adjustment=entry.new_adjustment,
                previous_guidance=entry.previous_guidance,
                new_guidance=entry.new_guidance,
                feedback_count=entry.feedback_count,
                period_start=entry.period_start,
                period_end=entry.period_end,
                summary=entry.summary,
                evaluators=resolve_display_names(self.directory, entry.evaluator_ids),
                created_at=entry.created_at,
            )
            for entry in entries
        ]

    def get_guidance_context(self) -> Dict[str, GuidanceContextEntry]:
        """
        Calibration hints for a scorer's prompt context.

        Only parameters with guidance are included; the scorer treats them
        as guidance, not as an override of its own judgment.
        """
        return {
            parameter_id: GuidanceContextEntry(adjustment=state.adjustment, guidance=state.guidance)
            for parameter_id, state in self.get_state().items()
            if state.guidance
        }
