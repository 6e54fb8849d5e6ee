from __future__ import annotations
from typing import Dict, Iterable, Mapping, Sequence
from pathlib import Path
import logging

import numpy as np
import pandas as pd

from batchcox.errors import ConfigurationError

logger = logging.getLogger("batchcox.data")


def load_data(file_path: str) -> pd.DataFrame:
    """Load a patient-level dataset from CSV or pickle file.

    Automatically detects file format based on extension.

    Args:
        file_path: Path to input file (CSV or pickle)

    Returns:
        DataFrame with one row per subject

    Raises:
        FileNotFoundError: If file_path does not exist
        ValueError: If file format is not supported

    Example:
        >>> df = load_data("data/tcga_clinical_expr.csv")
        >>> df.shape
        (1200, 5002)
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()

    if suffix == '.csv':
        logger.info(f"Loading CSV data from {file_path}")
        df = pd.read_csv(file_path)
    elif suffix in ['.pkl', '.pickle']:
        logger.info(f"Loading pickle data from {file_path}")
        df = pd.read_pickle(file_path)
    else:
        raise ValueError(
            f"Unsupported file format: {suffix}. "
            f"Supported formats: .csv, .pkl, .pickle"
        )

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns")
    return df


def _as_label(value) -> str:
    # 1.0 -> '1': numeric columns with missing values are read as float
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def declare_categorical(
    df: pd.DataFrame,
    levels: Mapping[str, Sequence]
) -> pd.DataFrame:
    """Declare columns as categorical with an explicit level order.

    This is where a variable's statistical role is fixed. The first declared
    level becomes the reference level of every model the column enters.
    Values not among the declared levels become missing.

    Args:
        df: Input dataset (not modified)
        levels: Mapping of column name to ordered levels

    Returns:
        Copy of df with the declared columns converted to pandas Categorical

    Raises:
        ConfigurationError: If a column is absent or declares fewer than two levels

    Example:
        >>> df = declare_categorical(df, {"stage": ["I", "II", "III", "IV"]})
        >>> df["stage"].cat.categories.tolist()
        ['I', 'II', 'III', 'IV']
    """
    out = df.copy()
    for col, col_levels in levels.items():
        if col not in out.columns:
            raise ConfigurationError(f"Cannot declare missing column '{col}' as categorical")
        col_levels = list(col_levels)
        if len(col_levels) < 2:
            raise ConfigurationError(
                f"Categorical column '{col}' needs at least two levels, got {col_levels}"
            )
        values = out[col]
        # CSV input delivers numeric codes; match them against declared labels as text
        if all(isinstance(l, str) for l in col_levels) and pd.api.types.is_numeric_dtype(values):
            values = values.map(lambda v: v if pd.isna(v) else _as_label(v))
        n_before = values.notna().sum()
        out[col] = pd.Categorical(values, categories=col_levels)
        n_unmatched = n_before - out[col].notna().sum()
        if n_unmatched:
            logger.warning(
                f"{n_unmatched} values of '{col}' are not among declared levels "
                f"{col_levels} and were set to missing"
            )
    return out


def is_categorical(series: pd.Series) -> bool:
    """Whether a column enters models as categorical (declared or boolean)."""
    return isinstance(series.dtype, pd.CategoricalDtype) or pd.api.types.is_bool_dtype(series)


def is_continuous(series: pd.Series) -> bool:
    """Whether a column enters models as a single continuous term."""
    return pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)


def column_levels(series: pd.Series) -> list:
    """Declared level order of a categorical column."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return [False, True]


def validate_dataset(
    df: pd.DataFrame,
    time: str,
    status: str,
    required: Iterable[str] = ()
) -> None:
    """Check the columns every specification needs before anything is fitted.

    Candidate and control columns are not checked here; a missing candidate is
    a per-specification failure discovered at fit time.

    Args:
        df: Dataset to check
        time: Survival time column
        status: Event status column (1/True = event, 0/False = censored)
        required: Other columns the call cannot proceed without (e.g. group variable)

    Raises:
        ConfigurationError: On missing columns, non-numeric time or non-binary status
    """
    if not isinstance(df, pd.DataFrame):
        raise ConfigurationError(f"Dataset must be a pandas DataFrame, got {type(df).__name__}")

    needed = [time, status, *required]
    missing = [c for c in needed if c not in df.columns]
    if missing:
        raise ConfigurationError(
            f"Required columns {missing} not found in dataset. "
            f"Available columns: {list(df.columns)[:10]}..."
        )

    if not is_continuous(df[time]):
        raise ConfigurationError(f"Time column '{time}' must be numeric")

    observed = pd.unique(df[status].dropna())
    if not set(observed.tolist()) <= {0, 1}:
        raise ConfigurationError(
            f"Status column '{status}' must be binary (0/1 or bool), "
            f"found values {sorted(map(str, observed))[:10]}"
        )


def complete_cases(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Select the referenced columns and drop rows missing any of them.

    Args:
        df: Full dataset
        columns: Columns referenced by one specification

    Returns:
        DataFrame restricted to ``columns`` with incomplete rows removed
    """
    return df[list(columns)].dropna()


def split_by_group(df: pd.DataFrame, group_var: str) -> Dict[object, pd.DataFrame]:
    """Partition rows by the distinct values of a grouping column.

    Rows with a missing group value are excluded from every partition.
    Partitions follow declared category order for Categorical columns and
    order of first appearance otherwise.

    Args:
        df: Full dataset
        group_var: Column to partition on

    Returns:
        Ordered dict of group value to row subset

    Example:
        >>> parts = split_by_group(df, "cancer_type")
        >>> list(parts)
        ['BRCA', 'LUAD', 'COAD']
    """
    col = df[group_var]
    present = col.notna()
    if isinstance(col.dtype, pd.CategoricalDtype):
        observed = set(col[present].unique())
        groups = [g for g in col.cat.categories if g in observed]
    else:
        groups = list(pd.unique(col[present]))

    n_dropped = int((~present).sum())
    if n_dropped:
        logger.info(f"Excluding {n_dropped} rows with missing '{group_var}' from grouping")

    return {g: df[present & (col == g).to_numpy()] for g in groups}


def zero_variance(values: np.ndarray) -> bool:
    """Whether a design column is constant."""
    values = np.asarray(values, dtype=float)
    return values.size == 0 or np.ptp(values) == 0
