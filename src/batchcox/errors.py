"""Error taxonomy for batch Cox screening.

Only ``ConfigurationError`` aborts a call. Everything that goes wrong for a
single candidate is recorded as a ``SpecFailure`` (see ``batchcox.models``)
and the run continues.
"""
from __future__ import annotations
from enum import Enum


class FailureReason(str, Enum):
    """Why a single model specification could not be fitted.

    Attributes:
        MISSING_COLUMN: A referenced column is absent from the dataset
        INVALID_TYPE: A referenced column is neither numeric nor declared categorical
        INSUFFICIENT_ROWS: Too few complete rows remain after dropping missing data
        NO_EVENTS: No events among the complete rows
        ZERO_VARIANCE: The candidate is constant within the analyzed rows
        NON_CONVERGENCE: The solver failed (separation, singular information matrix)
        STORE_WRITE: The fitted model could not be persisted to disk
    """
    MISSING_COLUMN = "missing_column"
    INVALID_TYPE = "invalid_type"
    INSUFFICIENT_ROWS = "insufficient_rows"
    NO_EVENTS = "no_events"
    ZERO_VARIANCE = "zero_variance"
    NON_CONVERGENCE = "non_convergence"
    STORE_WRITE = "store_write"


class BatchCoxError(Exception):
    """Base class for all batchcox errors."""


class ConfigurationError(BatchCoxError, ValueError):
    """Invalid call configuration, raised before anything is fitted."""


class ModelLookupError(BatchCoxError, KeyError):
    """A model was requested by a name that was never fitted or stored."""

    def __init__(self, missing, available=()):
        self.missing = list(missing)
        self.available = list(available)
        super().__init__(
            f"No stored model for {self.missing}. "
            f"Available: {self.available[:10]}{'...' if len(self.available) > 10 else ''}"
        )

    def __str__(self):
        return self.args[0]


class StoreIntegrityError(BatchCoxError, OSError):
    """Writing a fitted model to the on-disk store failed."""


class AllSpecsFailedError(BatchCoxError):
    """Every specification in a run failed.

    Attributes:
        failures: DataFrame with one row per failed candidate
        result: The BatchResult of the run (its result table is empty)
    """

    def __init__(self, failures, result=None):
        self.failures = failures
        self.result = result
        n = len(failures)
        reasons = ", ".join(sorted(set(map(str, failures["reason"])))) if n else ""
        super().__init__(f"All {n} model specifications failed ({reasons})")
