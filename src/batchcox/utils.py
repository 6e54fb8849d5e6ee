from __future__ import annotations
import os
import re
import uuid
import hashlib
import datetime as dt
import pandas as pd


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("outputs/models")
    """
    os.makedirs(path, exist_ok=True)


def versioned_name(base: str) -> str:
    """Generate timestamped name for versioning.

    Args:
        base: Base name without extension

    Returns:
        Versioned name in format "base_YYYYMMDD_HHMMSS"

    Example:
        >>> versioned_name("results")
        'results_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{base}_{ts}"


def new_run_id() -> str:
    """Unique identifier for one batch run.

    Timestamped for readability, with a random suffix so runs started in the
    same second never share an id.

    Example:
        >>> new_run_id()
        'run_20250123_143052_9f1c2a7b'
    """
    return f"{versioned_name('run')}_{uuid.uuid4().hex[:8]}"


def slugify(name: str, max_len: int = 60) -> str:
    """Filesystem-safe rendering of a variable name."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return slug[:max_len] or "var"


def name_digest(name: str, n: int = 10) -> str:
    """Short stable hash of a variable name."""
    return hashlib.sha1(name.encode("utf-8")).hexdigest()[:n]


def save_table(df: pd.DataFrame, outdir: str, name: str) -> str:
    """Save a table to CSV in the output directory.

    Args:
        df: Table to save
        outdir: Output directory path (created if missing)
        name: File name without extension

    Returns:
        Full path to the saved CSV file

    Example:
        >>> save_table(results, "outputs", "cox_results")
        'outputs/cox_results.csv'
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, f"{name}.csv")
    df.to_csv(path, index=False)
    return path
