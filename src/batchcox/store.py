"""Storage for fitted models: in memory, or as joblib files on disk.

A disk-backed store holds only file paths. Each model lives in a run-scoped
directory under a name derived from its candidate variable, so concurrent
runs never overwrite each other and workers never write the same file.
"""
from __future__ import annotations
import os
import shutil
import logging
import tempfile
from typing import Dict, Iterable, List, Optional, Union

import joblib

from batchcox.errors import ModelLookupError, StoreIntegrityError
from batchcox.models import FittedModel
from batchcox.utils import ensure_dir, slugify, name_digest

logger = logging.getLogger("batchcox.store")

MODEL_SUFFIX = ".joblib"
DEFAULT_MODEL_DIR = os.path.join(tempfile.gettempdir(), "batchcox_models")


def model_filename(candidate: str) -> str:
    """Deterministic file name for a candidate's model.

    The digest keeps names distinct when two variables slugify identically.

    Example:
        >>> model_filename("HLA-A*02")
        'HLA-A_02_<sha1 prefix>.joblib'
    """
    return f"{slugify(candidate)}_{name_digest(candidate)}{MODEL_SUFFIX}"


def run_directory(model_dir: Optional[str], run_id: str) -> str:
    """Directory holding one run's persisted models."""
    return os.path.join(model_dir or DEFAULT_MODEL_DIR, run_id)


def persist_model(model: FittedModel, run_dir: str) -> str:
    """Write a fitted model to the run directory.

    Args:
        model: Fitted model
        run_dir: Run-scoped directory

    Returns:
        Path of the written file

    Raises:
        StoreIntegrityError: If the directory or file cannot be written
    """
    path = os.path.join(run_dir, model_filename(model.candidate))
    try:
        ensure_dir(run_dir)
        joblib.dump(model, path)
    except Exception as e:
        raise StoreIntegrityError(
            f"Could not persist model for '{model.candidate}' to {path}: {e}"
        ) from e
    return path


class ModelStore:
    """Fitted models keyed by candidate name.

    Entries are either FittedModel objects (in-memory store) or file paths
    (disk-backed store). ``get`` loads file entries lazily.

    Example:
        >>> store = result.models
        >>> store.names()
        ['TP53', 'KRAS']
        >>> store.get("TP53").hazard_ratios
    """

    def __init__(self, entries: Optional[Dict[str, Union[FittedModel, str]]] = None,
                 run_dir: Optional[str] = None):
        self._entries: Dict[str, Union[FittedModel, str]] = dict(entries or {})
        self.run_dir = run_dir

    @property
    def on_disk(self) -> bool:
        return self.run_dir is not None

    def put(self, name: str, entry: Union[FittedModel, str]) -> None:
        self._entries[name] = entry

    def names(self) -> List[str]:
        return list(self._entries)

    @property
    def paths(self) -> Dict[str, str]:
        """File paths of disk-backed entries."""
        return {k: v for k, v in self._entries.items() if isinstance(v, str)}

    def get(self, name: str) -> FittedModel:
        """Return the model for ``name``, loading it from disk if needed.

        Raises:
            ModelLookupError: If no model was stored under name, or its file is gone
        """
        if name not in self._entries:
            raise ModelLookupError([name], self.names())
        entry = self._entries[name]
        if isinstance(entry, str):
            if not os.path.exists(entry):
                raise ModelLookupError([name], self.names())
            logger.debug(f"Loading model '{name}' from {entry}")
            return joblib.load(entry)
        return entry

    def __contains__(self, name) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __repr__(self) -> str:
        where = f"disk:{self.run_dir}" if self.on_disk else "memory"
        return f"ModelStore({len(self)} models, {where})"


def select_models(store: ModelStore, names: Iterable[str]) -> Dict[str, FittedModel]:
    """Retrieve a subset of stored models by candidate name.

    All names are checked before any file is loaded.

    Args:
        store: Model store returned by a batch run
        names: Candidate names to retrieve

    Returns:
        Dict of name to FittedModel in the order requested

    Raises:
        ModelLookupError: If any name is absent from the store
    """
    if isinstance(names, str):
        names = [names]
    names = list(dict.fromkeys(names))
    if store is None:
        raise ModelLookupError(names, [])
    missing = [n for n in names if n not in store]
    if missing:
        raise ModelLookupError(missing, store.names())
    return {n: store.get(n) for n in names}


def clean_model_dir(model_dir: Optional[str] = None) -> int:
    """Delete persisted model runs.

    Args:
        model_dir: Root model directory (the default temp location if None)

    Returns:
        Number of run directories removed
    """
    root = model_dir or DEFAULT_MODEL_DIR
    if not os.path.isdir(root):
        return 0
    removed = 0
    for entry in os.listdir(root):
        path = os.path.join(root, entry)
        if os.path.isdir(path) and any(f.endswith(MODEL_SUFFIX) for f in os.listdir(path)):
            shutil.rmtree(path)
            removed += 1
    logger.info(f"Removed {removed} model runs from {root}")
    return removed
