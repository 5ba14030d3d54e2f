"""Typed errors raised across the calibration engine."""


class CalibrationEngineError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(CalibrationEngineError):
    """Raised when input is malformed or a required reference cannot be resolved."""
    pass


class NotFoundError(CalibrationEngineError):
    """Raised when a referenced feedback record, score or evaluation does not exist."""
    pass


class ForbiddenError(CalibrationEngineError):
    """Raised when the requester is not allowed to perform the operation."""
    pass


class PersistenceError(CalibrationEngineError):
    """Raised when the underlying store fails to read or write."""
    pass
