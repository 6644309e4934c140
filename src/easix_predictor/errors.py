"""
EASIX Landmark Predictor - Error Taxonomy
=========================================

Typed failures raised by the prediction engine. Two kinds are per-call
data problems (InsufficientObservations, SingularMatrix); InvalidConfiguration
is a startup-time fatal condition raised while loading model parameters.
"""

from typing import Optional


class EasixModelError(Exception):
    """Base class for all engine errors."""
    pass


class PredictionError(EasixModelError):
    """A single prediction call could not be completed."""
    pass


class InsufficientObservations(PredictionError):
    """Fewer than two valid observations on or before the landmark day."""

    def __init__(self, n_valid: int, landmark_time: float):
        self.n_valid = n_valid
        self.landmark_time = landmark_time
        super().__init__(
            f"Need at least 2 observations before landmark (day {landmark_time:g}) "
            f"to make prediction, got {n_valid}"
        )


class SingularMatrix(PredictionError):
    """Marginal covariance (or OLS design) is numerically non-invertible."""

    def __init__(
        self,
        message: str = "Matrix is singular or nearly singular",
        column: Optional[int] = None,
        pivot: Optional[float] = None,
    ):
        self.column = column
        self.pivot = pivot
        super().__init__(message)


class InvalidConfiguration(EasixModelError, ValueError):
    """Model parameter document is missing fields or numerically invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)
