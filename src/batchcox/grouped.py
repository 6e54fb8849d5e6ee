"""Re-fit one candidate variable within each subgroup of the data.

Each subgroup is run through the ordinary batch driver on its own rows, so a
grouped run gives exactly what running the driver once per pre-split subset
would give.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence
import logging

import pandas as pd

from batchcox.batch import BatchResult, run_batch
from batchcox.config import BatchOptions
from batchcox.data import split_by_group, validate_dataset
from batchcox.errors import AllSpecsFailedError, ConfigurationError
from batchcox.results import FAILURE_COLUMNS, RESULT_COLUMNS
from batchcox.specs import build_specs

logger = logging.getLogger("batchcox.grouped")


@dataclass
class GroupEntry:
    """Outcome for one subgroup.

    Attributes:
        group: Group value
        n_rows: Rows in the partition
        result: Batch result when the candidate was fitted, else None
        error: The failure raised for the group, else None
    """
    group: object
    n_rows: int
    result: Optional[BatchResult] = None
    error: Optional[AllSpecsFailedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failures(self) -> pd.DataFrame:
        if self.error is not None:
            return self.error.failures
        return self.result.failures


class GroupedResult(Mapping):
    """Ordered mapping of group value to GroupEntry.

    Example:
        >>> grouped = run_grouped(df, "cancer_type", "TP53", ["age"], "OS.time", "OS")
        >>> grouped.succeeded
        ['BRCA', 'LUAD', 'COAD']
        >>> grouped.results[["group", "hr", "p_value"]]
    """

    def __init__(self, group_var: str, candidate: str, entries: Dict[object, GroupEntry]):
        self.group_var = group_var
        self.candidate = candidate
        self._entries = entries

    def __getitem__(self, group) -> GroupEntry:
        return self._entries[group]

    def __iter__(self) -> Iterator:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def succeeded(self) -> List:
        return [g for g, e in self._entries.items() if e.ok]

    @property
    def failed(self) -> List:
        return [g for g, e in self._entries.items() if not e.ok]

    @property
    def results(self) -> pd.DataFrame:
        """All successful groups' result rows, with a leading ``group`` column."""
        frames = []
        for g, entry in self._entries.items():
            if entry.ok:
                frame = entry.result.results.copy()
                frame.insert(0, "group", g)
                frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=["group", *RESULT_COLUMNS])
        return pd.concat(frames, ignore_index=True)

    @property
    def failures(self) -> pd.DataFrame:
        """One row per failed group with the reason its model was not fitted."""
        frames = []
        for g, entry in self._entries.items():
            if not entry.ok:
                frame = entry.failures.copy()
                frame.insert(0, "group", g)
                frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=["group", *FAILURE_COLUMNS])
        return pd.concat(frames, ignore_index=True)

    def __repr__(self) -> str:
        return (f"GroupedResult({self.candidate} by {self.group_var}: "
                f"{len(self.succeeded)} fitted, {len(self.failed)} failed)")


def run_grouped(
    data: pd.DataFrame,
    group_var: str,
    covariate: str,
    controls: Optional[Sequence[str]] = None,
    time: str = "time",
    status: str = "status",
    options: Optional[BatchOptions] = None,
) -> GroupedResult:
    """Fit ``covariate`` separately within each value of ``group_var``.

    Rows with a missing group value belong to no group. A group whose model
    cannot be fitted is recorded as failed and the other groups are
    unaffected.

    Args:
        data: Full dataset
        group_var: Column whose distinct values define the subgroups
        covariate: Single candidate variable
        controls: Adjustment variables
        time: Survival time column
        status: Event status column
        options: Batch options applied to every group

    Returns:
        GroupedResult in group order

    Raises:
        ConfigurationError: Invalid inputs, raised before any group is fitted,
            including ``group_var`` used as the candidate or as a control
    """
    if not isinstance(covariate, str):
        raise ConfigurationError(f"run_grouped takes one covariate name, got {covariate!r}")
    validate_dataset(data, time, status, required=[group_var])
    if group_var == covariate:
        raise ConfigurationError(f"Cannot group by the candidate variable '{covariate}'")

    controls = list(controls or [])
    if group_var in controls:
        raise ConfigurationError(
            f"Grouping variable '{group_var}' cannot also be a control; it is constant within each group"
        )
    build_specs([covariate], controls, time, status)

    partitions = split_by_group(data, group_var)
    if not partitions:
        raise ConfigurationError(f"Grouping column '{group_var}' has no non-missing values")

    logger.info(f"Fitting '{covariate}' in {len(partitions)} groups of '{group_var}'")

    entries: Dict[object, GroupEntry] = {}
    for group, subset in partitions.items():
        try:
            result = run_batch(subset, [covariate], controls, time, status, options)
            entries[group] = GroupEntry(group=group, n_rows=len(subset), result=result)
        except AllSpecsFailedError as e:
            logger.warning(f"Group {group_var}={group} ({len(subset)} rows) not fitted: {e}")
            entries[group] = GroupEntry(group=group, n_rows=len(subset), error=e)

    grouped = GroupedResult(group_var, covariate, entries)
    logger.info(f"{grouped!r}")
    return grouped
