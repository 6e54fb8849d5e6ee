"""Wall-clock timing of run phases, reported to the performance log.

Example:
    >>> with Timer(logger, "Fitting 500 models", n_items=500) as timer:
    ...     result = run_batch(df, covariates, controls, "time", "status")
    >>> timer.duration
    12.7
"""
import time
import logging
from typing import Optional

from batchcox.logging_config import log_performance


class Timer:
    """Context manager that logs how long a block took.

    Args:
        logger: Logger instance
        description: What the block does
        n_items: Units of work in the block; adds a per-second rate to the record
    """

    def __init__(self, logger: logging.Logger, description: str, n_items: Optional[int] = None):
        self.logger = logger
        self.description = description
        self.n_items = n_items
        self.duration = None
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        self.logger.debug(f"Started: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._start
        if exc_type is not None:
            self.logger.error(f"{self.description} aborted after {self.duration:.2f}s: {exc_val}")
            return False

        metrics = {"duration_sec": round(self.duration, 2)}
        if self.n_items and self.duration > 0:
            metrics["per_sec"] = round(self.n_items / self.duration, 1)
        log_performance(self.logger, f"Completed: {self.description}", **metrics)
        return False
