"""Dataset catalog: which layers a source publishes and where their state lives."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from forager.dates import parse_datetime, to_iso_string
from forager.storage.state import DatasetState, load_dataset_state, save_dataset_state

logger = logging.getLogger(__name__)


class Dataset(BaseModel):
    """One published layer of a source."""

    name: str
    variable: str
    output_dir: Path
    layer_name: str = ""
    anomaly: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    current_state: DatasetState = Field(default_factory=DatasetState)


class DatasetUpdate(BaseModel):
    """Metadata to publish for a dataset after a cycle, plus its next state."""

    metadata: dict[str, Any]
    new_state: DatasetState


def output_path(output_dir: Path, iso_date: str, layer_name: str = "") -> Path:
    """``{output_dir}/{layer_name_}{iso_date}`` without an extension."""
    if sys.platform == "win32":
        iso_date = iso_date.replace(":", "_")
    prefix = f"{layer_name}_" if layer_name else ""
    return Path(output_dir) / f"{prefix}{iso_date}"


def typical_metadata(
    dataset: Dataset, dt: datetime, shared_metadata: dict[str, Any]
) -> DatasetUpdate:
    """Extend the dataset's window to ``dt`` and merge its metadata."""
    state = dataset.current_state
    iso = to_iso_string(dt)

    start = state.start or iso
    if not state.end or dt > parse_datetime(state.end):
        end = iso
    else:
        end = state.end

    new_state = DatasetState(start=start, end=end, missing=state.missing)
    metadata = {
        "start": start,
        "end": end,
        "missing": state.missing,
        **dataset.metadata,
        **shared_metadata,
    }
    return DatasetUpdate(metadata=metadata, new_state=new_state)


def dataset_state_path(state_dir: Path, name: str) -> Path:
    return state_dir / f"{name}.json"


def load_catalog(catalog_path: Path, state_dir: Path) -> list[Dataset]:
    """Load dataset definitions from YAML and attach their persisted state.

    The catalog is a mapping with a ``datasets`` list; each entry holds the
    ``Dataset`` fields except ``current_state``.
    """
    if not catalog_path.exists():
        logger.warning(f"Dataset catalog not found: {catalog_path}")
        return []

    with open(catalog_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    datasets = []
    for entry in raw.get("datasets", []):
        dataset = Dataset(**entry)
        dataset.current_state = load_dataset_state(
            dataset_state_path(state_dir, dataset.name)
        )
        datasets.append(dataset)

    logger.info(f"Loaded {len(datasets)} datasets from {catalog_path}")
    return datasets


def save_dataset_updates(
    updates: dict[str, DatasetUpdate],
    state_dir: Path,
    scratch_dir: Path | None = None,
) -> None:
    for name, update in updates.items():
        save_dataset_state(dataset_state_path(state_dir, name), update.new_state, scratch_dir)
