"""
Evaluator Feedback Calibration Engine

Captures evaluator corrections to AI-generated scores and voice metrics,
applies them immediately, and aggregates them into a bounded per-parameter
calibration signal with an auditable history.
"""

__version__ = "0.1.0"
