"""Result tables: one row per (candidate model, coefficient).

Tables are plain pandas DataFrames with a fixed column order, so they can be
filtered, sorted and exported with ordinary pandas tooling. Every function
here returns a new table and leaves its input untouched.

Functions:
    results_frame: Build a result table from coefficient records
    failures_frame: Build a failure table from spec failures
    filter_controls: Drop rows for control variables
    filter_levels: Keep rows for selected contrast levels
    sort_by: Stable sort on one column
    select_variables: Keep rows of selected candidate models
    save_results: Export a table to CSV
"""
from __future__ import annotations
from typing import Iterable, List, Sequence

import pandas as pd

from batchcox.utils import save_table

RESULT_COLUMNS = [
    "candidate",
    "variable",
    "is_control",
    "contrast_level",
    "ref_level",
    "n_contrast",
    "n_ref",
    "beta",
    "se",
    "hr",
    "ci_lower",
    "ci_upper",
    "p_value",
    "global_p_value",
    "n",
    "n_events",
]

FAILURE_COLUMNS = ["candidate", "reason", "message"]


def results_frame(records: Iterable) -> pd.DataFrame:
    """Build a result table from CoefficientRecord objects, preserving order.

    Example:
        >>> table = results_frame(fit_result.records)
        >>> table[["variable", "hr", "p_value"]]
    """
    rows = [r.to_dict() for r in records]
    df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    df["is_control"] = df["is_control"].astype(bool)
    for col in ("n_contrast", "n_ref"):
        df[col] = df[col].astype("Int64")
    for col in ("n", "n_events"):
        df[col] = df[col].astype("int64")
    return df


def failures_frame(failures: Iterable) -> pd.DataFrame:
    """Build a failure table from SpecFailure objects, preserving order."""
    return pd.DataFrame([f.to_dict() for f in failures], columns=FAILURE_COLUMNS)


def filter_controls(table: pd.DataFrame) -> pd.DataFrame:
    """Drop every row tagged as a control variable.

    What remains is the candidate's own coefficient rows for each model.
    Idempotent.
    """
    return table.loc[~table["is_control"].astype(bool)].reset_index(drop=True)


def filter_levels(table: pd.DataFrame, levels: Sequence) -> pd.DataFrame:
    """Keep rows whose contrast level is one of ``levels``.

    Continuous rows (no contrast level) are kept only when None is in levels.

    Example:
        >>> filter_levels(results, ["III", "IV"])
    """
    levels = list(levels)
    keep_continuous = any(l is None for l in levels)
    wanted = {str(l) for l in levels if l is not None}
    mask = table["contrast_level"].isin(wanted)
    if keep_continuous:
        mask |= table["contrast_level"].isna()
    return table.loc[mask].reset_index(drop=True)


def sort_by(table: pd.DataFrame, column: str, ascending: bool = True) -> pd.DataFrame:
    """Stable sort on one column; ties keep their original order.

    Raises:
        KeyError: If column is not in the table
    """
    if column not in table.columns:
        raise KeyError(f"Cannot sort by '{column}'; columns are {list(table.columns)}")
    return table.sort_values(
        column, ascending=ascending, kind="mergesort", na_position="last"
    ).reset_index(drop=True)


def select_variables(table: pd.DataFrame, names: Iterable[str]) -> pd.DataFrame:
    """Keep rows of the models fitted for the given candidates.

    Rows keep their table order, not the order of ``names``.
    """
    if isinstance(names, str):
        names = [names]
    names: List[str] = list(names)
    return table.loc[table["candidate"].isin(names)].reset_index(drop=True)


def save_results(table: pd.DataFrame, outdir: str, name: str = "cox_results") -> str:
    """Export a result or failure table to ``<outdir>/<name>.csv``.

    Returns:
        Path of the written file
    """
    return save_table(table, outdir, name)
