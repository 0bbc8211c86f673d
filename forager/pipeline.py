"""Cycle runner: load state -> forage one month -> persist state."""

import logging
from pathlib import Path

import httpx
from pydantic import BaseModel, Field

from forager.config import Settings
from forager.conversions import CommandRunner, ConversionRunner, run_command
from forager.datasets import load_catalog, save_dataset_updates
from forager.heartbeat import Heartbeat
from forager.services.cds import CDSClient
from forager.services.ingest import IngestNotifier
from forager.sources.era5monthly import Era5MonthlySource, ForageStatus
from forager.storage import load_source_state, save_source_state

logger = logging.getLogger("forager.pipeline")


class CycleOutcome(BaseModel):
    """Summary of one cycle."""

    status: ForageStatus
    cursor: str | None = None
    last_updated: str | None = None
    outputs: dict[str, Path] = Field(default_factory=dict)

    @property
    def advanced(self) -> bool:
        return self.status is ForageStatus.UPDATED


def source_state_path(settings: Settings) -> Path:
    return settings.sources_state_dir / f"{Era5MonthlySource.name}.json"


async def run_cycle(
    settings: Settings,
    execute: CommandRunner = run_command,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CycleOutcome:
    """Run one forage cycle and persist its state.

    State is persisted only when the cycle completes; any failure propagates
    and leaves the previous state in place.
    """
    settings.ensure_dirs()
    heartbeat = Heartbeat(settings.heartbeat_path, settings.atomic_dir)

    state_path = source_state_path(settings)
    state = load_source_state(state_path)
    datasets = load_catalog(settings.catalog_path, settings.datasets_state_dir)

    if not datasets:
        logger.warning("No datasets in catalog. Nothing to forage.")
        return CycleOutcome(
            status=ForageStatus.NO_UPDATE,
            cursor=state.date,
            last_updated=state.last_updated,
        )

    runner = ConversionRunner(settings.temp_dir, settings.tools, execute=execute)

    async with CDSClient(
        api_key=settings.cds_api_key,
        config=settings.cds,
        download_dir=settings.temp_dir,
        heartbeat=heartbeat.beat,
        transport=transport,
    ) as cds, IngestNotifier(settings.ingest, transport=transport) as notifier:
        source = Era5MonthlySource(
            cds=cds,
            runner=runner,
            cache_dir=settings.cache_dir,
            output_root=settings.output_dir,
            clip_by=settings.clip_by,
            notifier=notifier,
            max_concurrency=settings.max_concurrency,
        )
        result = await source.forage(state, datasets)

    if result.updates:
        save_dataset_updates(result.updates, settings.datasets_state_dir, settings.atomic_dir)
    save_source_state(state_path, result.new_state, settings.atomic_dir)
    heartbeat.beat()

    logger.info(
        f"Cycle complete: status={result.status.value} "
        f"cursor={result.new_state.date} layers={len(result.outputs)}"
    )
    return CycleOutcome(
        status=result.status,
        cursor=result.new_state.date,
        last_updated=result.new_state.last_updated,
        outputs=result.outputs,
    )


async def catch_up(
    settings: Settings,
    max_cycles: int,
    execute: CommandRunner = run_command,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[CycleOutcome]:
    """Run cycles until one does not advance the cursor, at most ``max_cycles``."""
    outcomes: list[CycleOutcome] = []

    for i in range(1, max_cycles + 1):
        logger.info(f"Cycle {i}/{max_cycles}")
        outcome = await run_cycle(settings, execute=execute, transport=transport)
        outcomes.append(outcome)
        if not outcome.advanced:
            break

    return outcomes
