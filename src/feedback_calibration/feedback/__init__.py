"""
Feedback ledger and immediate override applier.
"""

from .ledger import FeedbackLedger, FeedbackTarget, OVERRIDE_RETAINED_WARNING
from .overrides import (
    VOICE_WEIGHTS,
    ImmediateOverrideApplier,
    apply_voice_correction,
    compute_overall,
)

__all__ = [
    'FeedbackLedger',
    'FeedbackTarget',
    'OVERRIDE_RETAINED_WARNING',
    'VOICE_WEIGHTS',
    'ImmediateOverrideApplier',
    'apply_voice_correction',
    'compute_overall',
]
