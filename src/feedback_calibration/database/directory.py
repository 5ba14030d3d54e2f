"""
Evaluator directory lookups.

Evaluator identities live in the external user store. The engine only needs
display names, so it talks to a small directory interface that callers back
with whatever user store they have.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ..models.database import Evaluator


logger = logging.getLogger(__name__)


class EvaluatorDirectory(ABC):
    """Resolves evaluator ids to identities."""

    @abstractmethod
    def get_evaluator(self, evaluator_id: str) -> Optional[Evaluator]:
        """Return the evaluator or None when unknown."""
        raise NotImplementedError

    def get_evaluators(self, evaluator_ids: Iterable[str]) -> Dict[str, Evaluator]:
        """Bulk lookup; unknown ids are absent from the result."""
        found = {}
        for evaluator_id in evaluator_ids:
            evaluator = self.get_evaluator(evaluator_id)
            if evaluator is not None:
                found[evaluator_id] = evaluator
        return found


class InMemoryEvaluatorDirectory(EvaluatorDirectory):
    """Directory backed by a dict, for embedding and tests."""

    def __init__(self, evaluators: Optional[Iterable[Evaluator]] = None):
        self._evaluators: Dict[str, Evaluator] = {}
        for evaluator in evaluators or []:
            self.add(evaluator)

    def add(self, evaluator: Evaluator) -> None:
        self._evaluators[evaluator.id] = evaluator

    def get_evaluator(self, evaluator_id: str) -> Optional[Evaluator]:
        return self._evaluators.get(evaluator_id)


def display_name_or_id(directory: EvaluatorDirectory, evaluator_id: str) -> str:
    """
    Display name for analysis summaries.

    Falls back to the raw id when the directory does not know the evaluator
    or the lookup fails.
    """
    try:
        evaluator = directory.get_evaluator(evaluator_id)
    except Exception as e:
        logger.warning(f"Evaluator lookup failed for {evaluator_id}: {e}")
        return evaluator_id
    return evaluator.display_name if evaluator else evaluator_id


def resolve_display_names(directory: EvaluatorDirectory, evaluator_ids: List[str]) -> List[str]:
    """
    Display names for history views.

    Ids that cannot be resolved are omitted; a failing directory yields an
    empty list rather than an error.
    """
    if not evaluator_ids:
        return []
    try:
        found = directory.get_evaluators(evaluator_ids)
    except Exception as e:
        logger.warning(f"Could not resolve evaluator names for {evaluator_ids}: {e}")
        return []
    return [found[eid].display_name for eid in evaluator_ids if eid in found]
