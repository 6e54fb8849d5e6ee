"""Forest plots of hazard ratios for fitted models and result tables.

Example:
    >>> fig = show_models(result.models, ["TP53", "stage"], merge=True, drop_controls=True)[0]
    >>> fig.savefig("outputs/forest.png", dpi=150)
"""
from __future__ import annotations
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from batchcox.errors import ConfigurationError
from batchcox.models import extract_records
from batchcox.results import filter_controls, results_frame
from batchcox.store import ModelStore, select_models

P_POSITIONS = ("right", "left", "none")


def row_label(row: pd.Series, with_candidate: bool = False) -> str:
    """Axis label for one coefficient row, e.g. 'stage: III vs I'."""
    if pd.isna(row["contrast_level"]):
        label = str(row["variable"])
    else:
        label = f"{row['variable']}: {row['contrast_level']} vs {row['ref_level']}"
    if with_candidate and row["variable"] != row["candidate"]:
        label = f"[{row['candidate']}] {label}"
    return label


def _format_p(p: float) -> str:
    if not np.isfinite(p):
        return "p = n/a"
    return "p < 0.001" if p < 0.001 else f"p = {p:.3f}"


def forest_plot(
    table: pd.DataFrame,
    point_size: float = 6.0,
    show_caption: bool = True,
    p_position: str = "right",
    ax=None,
    title: Optional[str] = None,
):
    """Draw hazard ratios with confidence intervals on a log axis.

    Rows are drawn top to bottom in table order.

    Args:
        table: Result table (see results.RESULT_COLUMNS)
        point_size: Marker size of the point estimates
        show_caption: Add a caption with sample size, events and global p-value
        p_position: Where per-row p-values go: 'right', 'left' or 'none'
        ax: Axes to draw on (a new figure if None)
        title: Axes title

    Returns:
        The matplotlib Axes

    Raises:
        ConfigurationError: If p_position is unknown or the table has no rows
    """
    if p_position not in P_POSITIONS:
        raise ConfigurationError(f"p_position must be one of {P_POSITIONS}, got {p_position!r}")
    if table.empty:
        raise ConfigurationError("Nothing to plot: result table is empty")

    if ax is None:
        _, ax = plt.subplots(figsize=(7, max(2.5, 0.45 * len(table) + 1.5)))

    with_candidate = table["candidate"].nunique() > 1
    labels = [row_label(row, with_candidate) for _, row in table.iterrows()]
    hr = table["hr"].to_numpy(dtype=float)
    lo = table["ci_lower"].to_numpy(dtype=float)
    hi = table["ci_upper"].to_numpy(dtype=float)
    y = np.arange(len(table))[::-1]

    colors = np.where(table["is_control"].astype(bool), "gray", "black")
    for yi, h, l, u, c in zip(y, hr, lo, hi, colors):
        ax.errorbar(h, yi, xerr=[[h - l], [u - h]], fmt="o", color=c, ecolor=c,
                    markersize=point_size, capsize=2)
    ax.axvline(1.0, color="red", linestyle="--", linewidth=1)
    ax.set_xscale("log")
    ax.set_yticks(y)
    ax.set_yticklabels(labels)
    ax.set_xlabel("Hazard ratio")
    if title:
        ax.set_title(title)

    if p_position != "none":
        x = 1.02 if p_position == "right" else -0.02
        ha = "left" if p_position == "right" else "right"
        if p_position == "left":
            ax.yaxis.tick_right()
        for yi, p in zip(y, table["p_value"].to_numpy(dtype=float)):
            ax.text(x, yi, _format_p(p), transform=ax.get_yaxis_transform(),
                    ha=ha, va="center", fontsize=8)

    if show_caption:
        models = table.drop_duplicates("candidate")
        caption = "; ".join(
            f"{r.candidate}: n={r.n}, events={r.n_events}, global {_format_p(r.global_p_value)}"
            for r in models.itertuples()
        )
        ax.annotate(caption, xy=(0, 0), xycoords="axes fraction", xytext=(0, -32),
                    textcoords="offset points", fontsize=7, va="top")

    return ax


def model_table(model) -> pd.DataFrame:
    """Result table of one fitted model, at the interval level it was fitted with."""
    return results_frame(extract_records(model, 1 - model.cph.alpha))


def show_models(
    store: ModelStore,
    names: Optional[Sequence[str]] = None,
    merge: bool = False,
    drop_controls: bool = False,
    **plot_kwargs,
) -> List:
    """Render stored models as forest plots.

    Args:
        store: Model store of a batch run (return_models or keep_models)
        names: Models to render (all stored models if None)
        merge: One combined figure instead of one figure per model
        drop_controls: Leave control-variable rows out of the plot
        **plot_kwargs: Passed to forest_plot (point_size, show_caption, p_position)

    Returns:
        List of matplotlib Figures

    Raises:
        ModelLookupError: If a name is not in the store
    """
    if names is None:
        names = store.names() if store is not None else []
    models = select_models(store, names)
    tables = []
    for name, model in models.items():
        table = model_table(model)
        tables.append((name, filter_controls(table) if drop_controls else table))

    if merge:
        merged = pd.concat([t for _, t in tables], ignore_index=True)
        ax = forest_plot(merged, **plot_kwargs)
        return [ax.figure]

    figures = []
    for name, table in tables:
        ax = forest_plot(table, title=models[name].formula, **plot_kwargs)
        figures.append(ax.figure)
    return figures
