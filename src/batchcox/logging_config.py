"""Logging setup for screening runs.

One package logger, ``batchcox``, fans out to:
- the console (level chosen by the caller)
- ``<output_dir>/logs/<run_name>_<timestamp>.log`` with everything
- ``..._performance.log`` with timing and throughput records only
- ``..._warnings.log`` with spec failures, solver warnings and errors

Example:
    >>> logger = setup_logging(output_dir="outputs/brca", run_name="tp53_screen")
    >>> log_performance(logger, "Batch completed", n_models=500, duration_sec=41.2)
"""
import logging
import sys
import time
import warnings
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

DETAILED_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
PERFORMANCE_FORMAT = '%(asctime)s | %(message)s'
CONSOLE_FORMAT = '%(levelname)-8s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class PerformanceFilter(logging.Filter):
    """Pass only records emitted through log_performance."""

    def filter(self, record):
        return getattr(record, 'is_performance', False)


class MinLevelFilter(logging.Filter):
    """Pass records at or above a level, whatever the handler's own level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno >= self.level


def _file_handler(path: Path, level: int, fmt: str, log_filter: Optional[logging.Filter] = None):
    handler = logging.FileHandler(path, mode='w', encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT))
    if log_filter is not None:
        handler.addFilter(log_filter)
    return handler


def setup_logging(
    output_dir: Optional[str] = None,
    log_level: int = logging.INFO,
    console_output: bool = True,
    run_name: str = "screen",
) -> logging.Logger:
    """Configure the ``batchcox`` logger.

    Calling it again replaces the previous handlers, so one process can run
    several screens into different output directories.

    Args:
        output_dir: Directory for log files; console only if None
        log_level: Minimum console log level
        console_output: Whether to log to stdout
        run_name: Prefix of the log file names

    Returns:
        Configured package logger
    """
    logger = logging.getLogger("batchcox")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(log_level)
        console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
        logger.addHandler(console)

    if output_dir is None:
        return logger

    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    stem = f"{run_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    logger.addHandler(_file_handler(log_dir / f"{stem}.log", logging.DEBUG, DETAILED_FORMAT))
    logger.addHandler(_file_handler(log_dir / f"{stem}_performance.log", logging.INFO,
                                    PERFORMANCE_FORMAT, PerformanceFilter()))
    logger.addHandler(_file_handler(log_dir / f"{stem}_warnings.log", logging.WARNING,
                                    DETAILED_FORMAT, MinLevelFilter(logging.WARNING)))

    logger.info(f"Writing logs to {log_dir.absolute()}")
    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log an INFO record routed to the performance log.

    Example:
        >>> log_performance(logger, "Batch 3 completed", n_models=100, duration_sec=4.2)
        # "Batch 3 completed | n_models=100 | duration_sec=4.2"
    """
    parts = [message, *(f"{k}={v}" for k, v in kwargs.items())]
    logger.info(" | ".join(parts), extra={'is_performance': True})


class SolverWarningTally:
    """Counts solver warnings by kind for the end-of-run summary."""

    KINDS = (
        ('convergence', ('convergencewarning', 'did not converge', 'convergence halted', 'step size')),
        ('separation', ('complete separation', 'low variance', 'collinear')),
        ('numerical', ('overflow', 'underflow', 'invalid value', 'divide by zero')),
        ('statistical', ('hessian', 'variance matrix', 'proportional hazard')),
    )

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.counts = Counter()

    def classify(self, message: str) -> str:
        text = message.lower()
        for kind, keywords in self.KINDS:
            if any(k in text for k in keywords):
                return kind
        return 'other'

    def record(self, message: str) -> str:
        kind = self.classify(message)
        self.counts[kind] += 1
        self.logger.warning(f"[{kind}] {message}")
        return kind

    def summary(self) -> dict:
        return dict(self.counts)


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Log Python warnings raised inside the block through ``logger``.

    Warnings raised in worker processes are not seen here.

    Example:
        >>> with capture_warnings(logger) as tally:
        ...     run_batch(df, covariates, controls, "time", "status")
        >>> tally.summary()
        {'convergence': 3}
    """
    tally = SolverWarningTally(logger)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("default")
        try:
            yield tally
        finally:
            for w in caught:
                tally.record(f"{w.category.__name__}: {w.message}")
            if tally.counts:
                logger.info("Solver warnings: " + ", ".join(
                    f"{k}={v}" for k, v in sorted(tally.counts.items())))


class ProgressLogger:
    """Logs how far a run has got, with throughput.

    Example:
        >>> progress = ProgressLogger(logger, total=500, desc="Models fitted", log_interval=50)
        >>> progress.update()
        # "Models fitted: 50/500 (10.0%) | 12.4/s"
    """

    def __init__(self, logger: logging.Logger, total: int, desc: str, log_interval: int = 1):
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = max(1, log_interval)
        self.done = 0
        self.started = time.perf_counter()

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        self.done += n
        if self.done % self.log_interval and self.done != self.total:
            return
        pct = 100.0 * self.done / self.total if self.total else 100.0
        elapsed = time.perf_counter() - self.started
        parts = [f"{self.desc}: {self.done}/{self.total} ({pct:.1f}%)"]
        if elapsed > 0:
            parts.append(f"{self.done / elapsed:.1f}/s")
        for k, v in (metrics or {}).items():
            parts.append(f"{k}={v:.4g}" if isinstance(v, float) else f"{k}={v}")
        self.logger.info(" | ".join(parts))
