from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
import logging

import pandas as pd
from joblib import Parallel, delayed

from batchcox.config import BatchOptions
from batchcox.data import validate_dataset
from batchcox.errors import AllSpecsFailedError, ConfigurationError, FailureReason, StoreIntegrityError
from batchcox.logging_config import ProgressLogger, capture_warnings, log_performance
from batchcox.models import CoefficientRecord, SpecFailure, fit_spec
from batchcox.results import failures_frame, results_frame
from batchcox.specs import ModelSpec, build_specs
from batchcox.store import ModelStore, persist_model, run_directory
from batchcox.timing import Timer
from batchcox.tracking import track_batch_run
from batchcox.utils import new_run_id


@dataclass
class SpecOutcome:
    """What a worker hands back for one specification.

    ``model`` is the FittedModel (return_models), its file path (keep_models)
    or None when models are not kept.
    """
    candidate: str
    records: tuple = ()
    failure: Optional[SpecFailure] = None
    model: object = None


@dataclass
class BatchResult:
    """Output of one batch run.

    Attributes:
        results: One row per (candidate, coefficient); see results.RESULT_COLUMNS
        failures: One row per failed candidate (candidate, reason, message)
        models: Model store, or None when neither return_models nor keep_models was set
        run_id: Unique identifier of the run
        n_work_units: Units of work executed (parallel batches, or 1 when sequential)
    """
    results: pd.DataFrame
    failures: pd.DataFrame
    models: Optional[ModelStore]
    run_id: str
    n_work_units: int

    @property
    def fitted(self) -> List[str]:
        """Candidates that produced result rows, in input order."""
        return list(dict.fromkeys(self.results["candidate"]))

    @property
    def failed(self) -> List[str]:
        return self.failures["candidate"].tolist()


def partition(specs: Sequence[ModelSpec], batch_size: int) -> List[List[ModelSpec]]:
    """Split specifications into contiguous chunks of ``batch_size``.

    Example:
        >>> [len(c) for c in partition(specs_50, 10)]
        [10, 10, 10, 10, 10]
    """
    return [list(specs[i:i + batch_size]) for i in range(0, len(specs), batch_size)]


def fit_chunk(
    specs: Sequence[ModelSpec],
    data: pd.DataFrame,
    options: BatchOptions,
    run_dir: Optional[str] = None,
    on_done: Optional[Callable[[], None]] = None,
) -> List[SpecOutcome]:
    """Fit a contiguous chunk of specifications (one unit of work).

    Runs unchanged on the calling thread or inside a joblib worker. Fitted
    models are dropped here unless the options ask for them; with
    keep_models each one is written to a file only this call owns.

    Args:
        specs: Specifications to fit, in order
        data: Full dataset (read-only)
        options: Batch options
        run_dir: Run-scoped model directory when keep_models is set
        on_done: Callback after each specification (sequential progress)

    Returns:
        One SpecOutcome per specification, in input order
    """
    outcomes = []
    for spec in specs:
        result = fit_spec(spec, data, options)
        outcome = SpecOutcome(candidate=spec.candidate, records=result.records, failure=result.failure)

        if result.ok and options.keep_models:
            try:
                outcome.model = persist_model(result.model, run_dir)
            except StoreIntegrityError as e:
                outcome = SpecOutcome(
                    candidate=spec.candidate,
                    failure=SpecFailure(spec.candidate, FailureReason.STORE_WRITE, str(e)),
                )
        elif result.ok and options.return_models:
            outcome.model = result.model

        outcomes.append(outcome)
        if on_done is not None:
            on_done()
    return outcomes


def run_batch(
    data: pd.DataFrame,
    covariates: Sequence[str],
    controls: Optional[Sequence[str]] = None,
    time: str = "time",
    status: str = "status",
    options: Optional[BatchOptions] = None,
    logger: Optional[logging.Logger] = None,
) -> BatchResult:
    """Fit one proportional-hazards model per covariate and collect the results.

    Each model regresses (time, status) on the covariate plus the shared
    controls. Sequential and parallel execution produce identical result
    tables: parallel batches are merged in submission order.

    A specification that fails is recorded in ``failures`` and the run
    continues. The run itself fails only if every specification fails.

    Args:
        data: Dataset with one row per subject
        covariates: Candidate variables, one model each
        controls: Adjustment variables held fixed across models
        time: Survival time column
        status: Event status column (1/True = event)
        options: Batch options (model retention, execution, solver settings)
        logger: Logger instance (defaults to "batchcox.batch")

    Returns:
        BatchResult with the result table, failure table and optional model store

    Raises:
        ConfigurationError: Invalid options or dataset, raised before any fit
        AllSpecsFailedError: Every specification failed

    Example:
        >>> result = run_batch(df, ["TP53", "KRAS", "stage"], ["age", "sex"],
        ...                    time="OS.time", status="OS")
        >>> filter_controls(result.results)[["candidate", "contrast_level", "hr", "p_value"]]

        >>> # 20,000 genes in parallel batches of 500, models persisted to disk
        >>> opts = BatchOptions(keep_models=True, model_dir="models",
        ...                     execution=ExecutionConfig(mode="parallel", n_jobs=-1, batch_size=500))
        >>> result = run_batch(expr, genes, ["age"], "OS.time", "OS", options=opts)
    """
    if logger is None:
        logger = logging.getLogger("batchcox.batch")
    if options is None:
        options = BatchOptions()
    elif not isinstance(options, BatchOptions):
        raise ConfigurationError(f"options must be BatchOptions, got {type(options).__name__}")

    validate_dataset(data, time, status)
    specs = build_specs(covariates, controls, time, status)
    execution = options.execution

    run_id = new_run_id()
    run_dir = run_directory(options.model_dir, run_id) if options.keep_models else None

    logger.info(
        f"Run {run_id}: {len(specs)} models on {len(data):,} rows "
        f"({execution.mode.value}, controls={list(specs[0].controls)})"
    )

    with Timer(logger, f"Batch of {len(specs)} models", n_items=len(specs)):
        with capture_warnings(logger):
            if execution.is_parallel():
                chunks = partition(specs, execution.batch_size)
                logger.info(
                    f"Dispatching {len(chunks)} batches of up to {execution.batch_size} "
                    f"to {execution.n_jobs} workers ({execution.backend})"
                )
                chunk_outcomes = Parallel(
                    n_jobs=execution.n_jobs,
                    backend=execution.backend,
                    verbose=execution.verbose,
                )(
                    delayed(fit_chunk)(chunk, data, options, run_dir)
                    for chunk in chunks
                )
            else:
                progress = ProgressLogger(logger, total=len(specs), desc="Models fitted",
                                          log_interval=max(1, len(specs) // 10))
                chunk_outcomes = [fit_chunk(specs, data, options, run_dir, on_done=progress.update)]

    records: List[CoefficientRecord] = []
    failures: List[SpecFailure] = []
    store = ModelStore(run_dir=run_dir) if options.stores_models else None

    for outcomes in chunk_outcomes:
        for outcome in outcomes:
            if outcome.failure is not None:
                f = outcome.failure
                logger.warning(f"Model for '{f.candidate}' failed ({f.reason.value}): {f.message}")
                failures.append(f)
                continue
            records.extend(outcome.records)
            if store is not None:
                store.put(outcome.candidate, outcome.model)

    result = BatchResult(
        results=results_frame(records),
        failures=failures_frame(failures),
        models=store,
        run_id=run_id,
        n_work_units=len(chunk_outcomes),
    )

    log_performance(
        logger,
        f"Run {run_id} finished",
        n_models=len(specs),
        n_fitted=len(specs) - len(failures),
        n_failed=len(failures),
        n_rows=len(result.results),
        n_work_units=result.n_work_units,
    )

    if options.track:
        track_batch_run(
            run_id,
            params={
                "n_covariates": len(specs),
                "controls": ",".join(specs[0].controls),
                "time": time,
                "status": status,
                "execution_mode": execution.mode.value,
                "n_jobs": execution.n_jobs,
                "batch_size": execution.batch_size,
                "keep_models": options.keep_models,
                "return_models": options.return_models,
                "min_complete_rows": options.min_complete_rows,
            },
            metrics={
                "n_fitted": float(len(specs) - len(failures)),
                "n_failed": float(len(failures)),
                "n_result_rows": float(len(result.results)),
            },
            logger=logger,
        )

    if len(failures) == len(specs):
        raise AllSpecsFailedError(result.failures, result)

    return result


def run_single(
    data: pd.DataFrame,
    covariate: str,
    controls: Optional[Sequence[str]] = None,
    time: str = "time",
    status: str = "status",
    options: Optional[BatchOptions] = None,
    logger: Optional[logging.Logger] = None,
) -> BatchResult:
    """Fit a single model: a batch run with one covariate."""
    return run_batch(data, [covariate], controls, time, status, options, logger)
