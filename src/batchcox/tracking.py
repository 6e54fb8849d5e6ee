"""Optional MLflow tracking of batch runs.

Tracking never fails a run: every call degrades to a logged warning when
MLflow is unavailable or misconfigured.
"""
from __future__ import annotations
import logging
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "batchcox"


def safe_log_params(params: Dict[str, Any], logger: Optional[logging.Logger] = None) -> bool:
    """Log parameters to the active MLflow run with error handling.

    Non-serializable values are logged as strings.

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        for k, v in params.items():
            try:
                mlflow.log_param(k, v)
            except mlflow.exceptions.MlflowException:
                raise
            except Exception:
                mlflow.log_param(k, str(v))
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}", extra={"category": "mlflow_error"})
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow params logging: {e}",
                         extra={"category": "mlflow_error"})
        return False


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to the active MLflow run with error handling.

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        mlflow.log_metrics(metrics, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}", extra={"category": "mlflow_error"})
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow metrics logging: {e}",
                         extra={"category": "mlflow_error"})
        return False


def track_batch_run(
    run_id: str,
    params: Dict[str, Any],
    metrics: Dict[str, float],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Record one finished batch run as an MLflow run.

    Args:
        run_id: Batch run identifier, used as the MLflow run name
        params: Run configuration (covariate count, execution mode, ...)
        metrics: Run outcome counts (fitted, failed, rows)
        logger: Logger for degradation warnings

    Returns:
        True if the run and everything in it was logged
    """
    try:
        mlflow.set_experiment(EXPERIMENT_NAME)
        with mlflow.start_run(run_name=run_id):
            ok = safe_log_params(params, logger)
            return safe_log_metrics(metrics, logger=logger) and ok
    except Exception as e:
        if logger:
            logger.warning(f"MLflow tracking unavailable, run not tracked: {e}",
                           extra={"category": "mlflow_error"})
        return False
