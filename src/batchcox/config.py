"""Configuration for batch execution and model fitting options.

This module provides the single configuration record threaded through a
batch run:
- ExecutionConfig: sequential loop or parallel batches dispatched with joblib
- BatchOptions: model retention policy, completeness threshold, solver settings

All validation happens once, when the record is constructed, and raises
ConfigurationError before any model is fitted.
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import os
import multiprocessing
import json

from batchcox.errors import ConfigurationError


class ExecutionMode(str, Enum):
    """Execution strategy for a batch run.

    Attributes:
        SEQUENTIAL: All fits run one after another on the calling thread
        PARALLEL: Covariates are split into contiguous batches, one joblib task each
    """
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


GLOBAL_METHODS = ("likelihood", "wald")
JOBLIB_BACKENDS = ("loky", "threading", "multiprocessing")


@dataclass
class ExecutionConfig:
    """Configuration for execution mode and parallelization.

    Attributes:
        mode: Execution mode (sequential, parallel)
        n_jobs: Number of parallel jobs. -1 means use all cores
        batch_size: Number of specifications per parallel work unit
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')
        verbose: Verbosity level for joblib (0=silent, 10=progress, 50=detailed)

    Example:
        >>> # Default configuration (sequential)
        >>> config = ExecutionConfig()

        >>> # Parallel batches of 50 covariates on all cores
        >>> config = ExecutionConfig(mode=ExecutionMode.PARALLEL, n_jobs=-1, batch_size=50)
    """
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    n_jobs: int = 1
    batch_size: int = 100
    backend: str = "loky"
    verbose: int = 0

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.mode, str):
            try:
                self.mode = ExecutionMode(self.mode)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown execution mode {self.mode!r}; "
                    f"expected one of {[m.value for m in ExecutionMode]}"
                ) from None

        if self.n_jobs == -1:
            self.n_jobs = multiprocessing.cpu_count()
        elif self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be -1 or positive, got {self.n_jobs}")

        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")

        if self.backend not in JOBLIB_BACKENDS:
            raise ConfigurationError(
                f"backend must be one of {JOBLIB_BACKENDS}, got {self.backend!r}"
            )

        if self.mode == ExecutionMode.SEQUENTIAL:
            self.n_jobs = 1

    def is_parallel(self) -> bool:
        """Check if parallel execution is enabled.

        Returns:
            True if batches are dispatched through joblib

        Example:
            >>> ExecutionConfig().is_parallel()
            False
            >>> ExecutionConfig(mode="parallel", n_jobs=4).is_parallel()
            True
        """
        return self.mode == ExecutionMode.PARALLEL

    def __str__(self) -> str:
        return (
            f"ExecutionConfig(mode={self.mode.value}, "
            f"n_jobs={self.n_jobs}, "
            f"batch_size={self.batch_size})"
        )


def select_execution_mode(
    n_specs: int,
    batch_size: int = 100,
    n_cores: Optional[int] = None,
    force_mode: Optional[ExecutionMode] = None
) -> ExecutionMode:
    """Auto-select execution mode from the size of the batch.

    Selection logic:
    - Everything fits in one batch: sequential (pool start-up not worth it)
    - More than one batch and more than one core: parallel

    Args:
        n_specs: Number of model specifications in the run
        batch_size: Specifications per parallel work unit
        n_cores: Number of available CPU cores (auto-detected if None)
        force_mode: Force a specific mode (overrides auto-detection)

    Returns:
        Recommended execution mode

    Example:
        >>> select_execution_mode(20)
        <ExecutionMode.SEQUENTIAL: 'sequential'>
        >>> select_execution_mode(20000, n_cores=8)
        <ExecutionMode.PARALLEL: 'parallel'>
    """
    if force_mode is not None:
        return ExecutionMode(force_mode)

    if n_cores is None:
        n_cores = multiprocessing.cpu_count()

    if n_specs <= batch_size or n_cores < 2:
        return ExecutionMode.SEQUENTIAL
    return ExecutionMode.PARALLEL


def create_execution_config(
    mode: Optional[str] = None,
    n_specs: int = 0,
    n_jobs: int = -1,
    batch_size: int = 100,
    verbose: int = 0
) -> ExecutionConfig:
    """Factory function to create ExecutionConfig with sensible defaults.

    Args:
        mode: 'sequential', 'parallel', 'auto' or None (same as 'auto')
        n_specs: Number of specifications, used for auto-detection
        n_jobs: Number of parallel jobs (-1 = all cores)
        batch_size: Specifications per parallel work unit
        verbose: Joblib verbosity level

    Returns:
        ExecutionConfig instance

    Example:
        >>> config = create_execution_config("parallel", n_jobs=4, batch_size=10)
        >>> config = create_execution_config(n_specs=5000)
    """
    if mode is None or mode == "auto":
        execution_mode = select_execution_mode(n_specs, batch_size=batch_size)
    else:
        execution_mode = mode

    return ExecutionConfig(
        mode=execution_mode,
        n_jobs=n_jobs,
        batch_size=batch_size,
        verbose=verbose,
    )


@dataclass
class BatchOptions:
    """Options for one batch run.

    Attributes:
        return_models: Keep fitted models accessible in the returned result
        keep_models: Persist fitted models to a per-run directory on disk
        model_dir: Root directory for persisted models (temp dir if None)
        execution: Execution mode and parallelization configuration
        min_complete_rows: Minimum complete rows required to fit a specification
        ci_level: Confidence level for hazard ratio intervals
        penalizer: L2 penalizer passed to the solver (0 = plain partial likelihood)
        global_method: Model-level test, 'likelihood' or 'wald'
        track: Log run parameters and counts to MLflow

    Example:
        >>> options = BatchOptions(keep_models=True, model_dir="models")
        >>> options = BatchOptions(execution=ExecutionConfig(mode="parallel", batch_size=10))
    """
    return_models: bool = False
    keep_models: bool = False
    model_dir: Optional[str] = None
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    min_complete_rows: int = 10
    """Specifications with fewer complete rows fail with 'insufficient_rows'.

    Completeness is checked per specification over the columns that
    specification references, never once over the whole dataset.
    """

    ci_level: float = 0.95
    penalizer: float = 0.0
    global_method: str = "likelihood"
    track: bool = False

    def __post_init__(self):
        if isinstance(self.execution, dict):
            self.execution = ExecutionConfig(**self.execution)
        if not 0.0 < self.ci_level < 1.0:
            raise ConfigurationError(f"ci_level must be in (0, 1), got {self.ci_level}")
        if self.min_complete_rows < 2:
            raise ConfigurationError(
                f"min_complete_rows must be at least 2, got {self.min_complete_rows}"
            )
        if self.penalizer < 0:
            raise ConfigurationError(f"penalizer must be non-negative, got {self.penalizer}")
        if self.global_method not in GLOBAL_METHODS:
            raise ConfigurationError(
                f"global_method must be one of {GLOBAL_METHODS}, got {self.global_method!r}"
            )

    @property
    def alpha(self) -> float:
        """Significance level handed to the solver."""
        return 1.0 - self.ci_level

    @property
    def stores_models(self) -> bool:
        """Whether the run returns a model store at all."""
        return self.return_models or self.keep_models

    def to_dict(self) -> dict:
        """Convert options to a JSON-serializable dictionary.

        Example:
            >>> BatchOptions().to_dict()["execution"]["mode"]
            'sequential'
        """
        def _dataclass_to_dict(obj):
            if hasattr(obj, '__dataclass_fields__'):
                return {k: _dataclass_to_dict(v) for k, v in obj.__dict__.items()}
            elif isinstance(obj, Enum):
                return obj.value
            return obj

        return _dataclass_to_dict(self)

    def save(self, path: str) -> None:
        """Save options to a JSON file.

        Args:
            path: Path to output JSON file
        """
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "BatchOptions":
        """Load options from a JSON file written by ``save``.

        Raises:
            ConfigurationError: If the file holds unknown or invalid fields
        """
        with open(path) as f:
            data = json.load(f)
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid options file {path}: {e}") from e
