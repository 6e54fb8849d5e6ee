"""Pytest configuration and shared fixtures for batchcox tests.

Datasets are synthetic and generated from a seeded RandomState so every
fit is reproducible.
"""
import logging
import pytest
import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")

from batchcox.config import BatchOptions, ExecutionConfig


def _survival_times(rng, linear_predictor, censor_rate=0.3):
    """Exponential event times with independent random censoring."""
    n = len(linear_predictor)
    time = rng.exponential(scale=12.0 * np.exp(-linear_predictor)) + 0.1
    status = (rng.uniform(size=n) > censor_rate).astype(int)
    return np.round(time, 3), status


@pytest.fixture
def survival_data():
    """Create a clinical-plus-expression dataset.

    Returns:
        pd.DataFrame: 150 subjects with time, status, age, sex (Categorical),
        stage (Categorical I-IV), and genes G1-G5
    """
    rng = np.random.RandomState(42)
    n = 150
    df = pd.DataFrame({
        "age": rng.normal(60, 10, n).round(1),
        "sex": pd.Categorical(rng.choice(["F", "M"], n), categories=["F", "M"]),
        "stage": pd.Categorical(rng.choice(["I", "II", "III", "IV"], n),
                                categories=["I", "II", "III", "IV"]),
    })
    for i in range(1, 6):
        df[f"G{i}"] = rng.normal(0, 1, n)
    lp = 0.5 * df["G1"] + 0.02 * (df["age"] - 60) + 0.3 * df["stage"].cat.codes
    df["time"], df["status"] = _survival_times(rng, lp.to_numpy())
    return df


@pytest.fixture
def single_x_data():
    """100 rows, one continuous candidate 'X', no missing values.

    Returns:
        pd.DataFrame: Columns time, status, X
    """
    rng = np.random.RandomState(7)
    x = rng.normal(0, 1, 100)
    time, status = _survival_times(rng, 0.4 * x)
    return pd.DataFrame({"time": time, "status": status, "X": x})


@pytest.fixture
def flat_candidate_data():
    """20 rows with one constant candidate 'flat' and one valid candidate 'X'.

    Returns:
        pd.DataFrame: Columns time, status, flat, X
    """
    rng = np.random.RandomState(3)
    x = rng.normal(0, 1, 20)
    time, status = _survival_times(rng, 0.3 * x, censor_rate=0.2)
    return pd.DataFrame({"time": time, "status": status, "flat": 5.0, "X": x})


@pytest.fixture
def separated_data():
    """60 rows, every subject has an event, 'sepbin' marks the earlier half.

    'sepbin' perfectly separates short from long survival, so its hazard ratio
    has no finite maximum likelihood estimate. 'X' is an ordinary candidate.

    Returns:
        pd.DataFrame: Columns time, status, sepbin (bool), X
    """
    rng = np.random.RandomState(21)
    x = rng.normal(0, 1, 60)
    time = np.round(rng.exponential(scale=10.0, size=60) + 0.1, 3)
    return pd.DataFrame({
        "time": time,
        "status": 1,
        "sepbin": time < np.median(time),
        "X": x,
    })


@pytest.fixture
def grouped_data():
    """Four cancer types; 'UCS' has only 2 rows, the others 60 each.

    Returns:
        pd.DataFrame: Columns cancer_type, time, status, G1, age
    """
    rng = np.random.RandomState(11)
    sizes = {"BRCA": 60, "LUAD": 60, "COAD": 60, "UCS": 2}
    groups = np.repeat(list(sizes), list(sizes.values()))
    n = len(groups)
    g1 = rng.normal(0, 1, n)
    age = rng.normal(60, 10, n).round(1)
    time, status = _survival_times(rng, 0.5 * g1)
    return pd.DataFrame({
        "cancer_type": groups,
        "time": time,
        "status": status,
        "G1": g1,
        "age": age,
    })


@pytest.fixture
def wide_data():
    """100 rows with 50 candidate genes GENE00-GENE49 and an age control.

    Returns:
        pd.DataFrame: Columns time, status, age, GENE00..GENE49
    """
    rng = np.random.RandomState(5)
    n = 100
    genes = pd.DataFrame(rng.normal(0, 1, (n, 50)),
                         columns=[f"GENE{i:02d}" for i in range(50)])
    age = rng.normal(60, 10, n).round(1)
    time, status = _survival_times(rng, 0.4 * genes["GENE00"].to_numpy())
    df = pd.DataFrame({"time": time, "status": status, "age": age})
    return pd.concat([df, genes], axis=1)


@pytest.fixture
def parallel_options():
    """Parallel options on the threading backend, batches of 10.

    Returns:
        BatchOptions: Two worker threads, batch_size=10
    """
    return BatchOptions(
        execution=ExecutionConfig(mode="parallel", n_jobs=2, batch_size=10, backend="threading")
    )


@pytest.fixture
def temp_models_dir(tmp_path):
    """Create temporary directory for persisted models.

    Args:
        tmp_path: Pytest temporary directory fixture

    Returns:
        Path: Temporary models directory
    """
    models_dir = tmp_path / "models"
    models_dir.mkdir(exist_ok=True)
    return models_dir


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging after each test.

    Closes file handlers and lets records propagate to pytest's capture again.
    """
    yield
    logger = logging.getLogger("batchcox")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
