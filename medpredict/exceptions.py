"""
Domain exceptions for prediction estimation and history persistence.

Validation errors are raised before any state changes. Persistence write
errors are raised after the in-memory change has been applied, so callers
can warn that the history may not survive a restart.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from medpredict.models.models import PredictionRecord


class MedPredictError(Exception):
    """Base class for all application errors."""


class InvalidCategoryError(MedPredictError, ValueError):
    """A category outside the fixed set of disease categories was given."""

    def __init__(self, category: Any):
        self.category = category
        super().__init__(f"Unknown disease category: {category!r}")


class InvalidProbabilityError(MedPredictError, ValueError):
    """A probability that is not a finite number in [0, 1] was given."""

    def __init__(self, probability: Any):
        self.probability = probability
        super().__init__(
            f"Probability must be a finite number between 0 and 1, got {probability!r}"
        )


class InvalidParametersError(MedPredictError, ValueError):
    """Input parameters are not a mapping of names to primitive values."""


class PersistenceError(MedPredictError):
    """Durable storage could not be read or written."""


class PersistenceWriteError(PersistenceError):
    """
    Writing the history snapshot failed.

    The in-memory history already reflects the change. ``record`` holds the
    record created by ``add`` (``None`` for ``clear``).
    """

    def __init__(self, message: str, record: PredictionRecord | None = None):
        self.record = record
        super().__init__(message)


class PersistenceReadError(PersistenceError):
    """Reading the history snapshot failed."""


class CorruptSnapshotError(PersistenceReadError):
    """The stored snapshot could not be decoded into a history."""
