"""Storage layer for Forager - atomic JSON state and the baseline cache.

This package provides:
- Atomic state persistence (source cursors and dataset lifecycle windows)
- Baseline ("normal") cache with single-flight de-duplication
"""

from .exceptions import AtomicWriteFailed, StateNotFoundError
from .normals import NormalsCache
from .state import (
    DatasetState,
    SourceState,
    load_dataset_state,
    load_source_state,
    read_json,
    save_dataset_state,
    save_source_state,
    write_json_atomically,
)

__all__ = [
    "AtomicWriteFailed",
    "StateNotFoundError",
    "NormalsCache",
    "DatasetState",
    "SourceState",
    "load_dataset_state",
    "load_source_state",
    "read_json",
    "save_dataset_state",
    "save_source_state",
    "write_json_atomically",
]
