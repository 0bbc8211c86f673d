"""Durable JSON state with crash-safe replace semantics.

State documents live under the state directory (``state/sources`` and
``state/datasets``). Writes go to a private temporary directory first and are
then moved over the destination with ``os.replace``, so another process sees
either the previous complete document or the new one, never a partial write.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .exceptions import AtomicWriteFailed, StateNotFoundError

logger = logging.getLogger(__name__)

_MISSING: Any = object()


# ============================================================================
# Pydantic Models
# ============================================================================


class SourceState(BaseModel):
    """Persisted cursor of one data source.

    ``normals`` maps variable -> calendar month ("01".."12") -> baseline path.
    """

    date: str | None = None
    last_updated: str | None = None
    normals: dict[str, dict[str, str]] = Field(default_factory=dict)


class DatasetState(BaseModel):
    """Lifecycle window of a published dataset."""

    start: str | None = None
    end: str | None = None
    missing: list[str] | None = None


# ============================================================================
# Public API
# ============================================================================


def read_json(path: Path, default: Any = _MISSING) -> Any:
    """Load a JSON document, returning ``default`` when the file is absent.

    Raises:
        StateNotFoundError: If the file is absent and no default was given
        json.JSONDecodeError: If the file is corrupted
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        if default is _MISSING:
            raise StateNotFoundError(Path(path)) from e
        logger.debug(f"State file not found: {path}. Using default.")
        return default


def write_json_atomically(
    path: Path,
    document: Any,
    scratch_dir: Path | None = None,
    compact: bool = False,
) -> None:
    """Atomically replace ``path`` with the JSON serialization of ``document``.

    ``scratch_dir`` must be on the same filesystem as ``path``; it defaults to
    the destination's parent directory.
    """
    path = Path(path)
    data = json.dumps(document, indent=None if compact else 2)

    parent = Path(scratch_dir) if scratch_dir is not None else path.parent
    temp_dir: Path | None = None
    try:
        temp_dir = Path(tempfile.mkdtemp(dir=parent))
        temp_path = temp_dir / path.name
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
        logger.debug(f"Saved state to {path}")

    except OSError as e:
        logger.error(f"Failed to save state {path}: {e}")
        raise AtomicWriteFailed(path, str(e)) from e
    finally:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)


def load_source_state(path: Path) -> SourceState:
    """Load a source's state, defaulting to an empty cursor."""
    raw_data = read_json(path, default={})
    return SourceState(**(raw_data or {}))


def save_source_state(
    path: Path, state: SourceState, scratch_dir: Path | None = None
) -> None:
    write_json_atomically(path, state.model_dump(mode="json"), scratch_dir)


def load_dataset_state(path: Path) -> DatasetState:
    raw_data = read_json(path, default={})
    return DatasetState(**(raw_data or {}))


def save_dataset_state(
    path: Path, state: DatasetState, scratch_dir: Path | None = None
) -> None:
    write_json_atomically(path, state.model_dump(mode="json"), scratch_dir)
