"""
Atomic file writes for analysis outputs.

Result files are consumed by downstream enrichment and annotation steps, so
a run interrupted mid-write must never leave a truncated table behind.
Every writer serializes to a temporary file in the destination directory and
moves it into place with ``os.replace()`` (atomic on POSIX).
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import numpy as np
import pandas as pd

__all__ = [
    'atomic_write_json',
    'atomic_write_text',
    'atomic_write_frame',
]


@contextmanager
def _atomic_handle(path: str | os.PathLike) -> Iterator[TextIO]:
    path = os.fspath(path)
    dir_path = os.path.dirname(path) or "."
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=dir_path, suffix=".tmp", delete=False, newline=""
        ) as tmp:
            tmp_path = tmp.name
            yield tmp
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _json_default(value: Any) -> Any:
    """Convert numpy scalars/arrays found in result summaries."""
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically via temp-file + rename.

    numpy scalars and arrays are converted to their Python equivalents.

    Parameters
    ----------
    path:
        Destination file path.
    data:
        JSON-serializable object.
    indent:
        JSON indentation (default 2).
    """
    with _atomic_handle(path) as handle:
        json.dump(data, handle, indent=indent, default=_json_default)


def atomic_write_text(path: str | os.PathLike, content: str) -> None:
    """Write *content* as text atomically via temp-file + rename."""
    with _atomic_handle(path) as handle:
        handle.write(content)


def atomic_write_frame(path: str | os.PathLike, frame: pd.DataFrame, *, index: bool = False) -> None:
    """Write a DataFrame as CSV atomically via temp-file + rename."""
    with _atomic_handle(path) as handle:
        frame.to_csv(handle, index=index)
