"""ERA5 monthly means: one calendar month per cycle, with anomaly layers.

A cycle advances the cursor one month, asks the CDS whether the resource has
changed, downloads all catalog variables for that month in one request, and
converts each dataset to a GeoTIFF layer. Anomaly datasets subtract a 30-year
(1991-2020) normal for the same calendar month, built once and cached.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from functools import partial
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from forager.concurrency import run_all
from forager.conversions import ConversionRunner, PipelineOptions
from forager.datasets import Dataset, DatasetUpdate, output_path, typical_metadata
from forager.dates import EPOCH_START, add_months, month_of, parse_datetime, to_iso_string
from forager.services.cds import CDSClient, NoDataAvailable, NoUpdateNeeded, RetrieveRequest
from forager.services.ingest import IngestError, IngestNotifier
from forager.storage import NormalsCache, SourceState

logger = logging.getLogger(__name__)

NAME = "reanalysis-era5-single-levels-monthly-means"

SHARED_METADATA = {
    "width": 1440,
    "height": 721,
    "interval": "monthly-aggregate",
    "projection": "ERA5",
}

# [north, west, south, east]
AOI_BBOX = [37, -21.36, -39.34, 65.49]

NORMALS_YEARS = 30
NORMALS_START_YEAR = 1991


class ForageStatus(str, Enum):
    UPDATED = "updated"
    NO_UPDATE = "no_update"
    NO_DATA = "no_data"


class ForageResult(BaseModel):
    """What a cycle produced and the state to persist for the next one."""

    status: ForageStatus
    new_state: SourceState
    updates: dict[str, DatasetUpdate] = Field(default_factory=dict)
    outputs: dict[str, Path] = Field(default_factory=dict)


def next_cursor(state: SourceState) -> datetime:
    """One month past the persisted cursor, or the epoch start."""
    if state.date:
        return add_months(parse_datetime(state.date), 1)
    return EPOCH_START


class Era5MonthlySource:
    """Incremental ERA5 monthly forager.

    Args:
        cds: Open CDS client
        runner: Conversion runner for the external tools
        cache_dir: Permanent directory for normals
        output_root: Root that dataset ``output_dir`` values are relative to
        clip_by: Optional clip polygon applied to every layer and normal
        notifier: Optional ingest webhook notified after a successful cycle
        max_concurrency: Datasets converted at once
    """

    name = NAME

    def __init__(
        self,
        cds: CDSClient,
        runner: ConversionRunner,
        cache_dir: Path,
        output_root: Path,
        clip_by: Path | None = None,
        notifier: IngestNotifier | None = None,
        max_concurrency: int | None = None,
    ):
        self.cds = cds
        self.runner = runner
        self.cache_dir = Path(cache_dir)
        self.output_root = Path(output_root)
        self.clip_by = clip_by
        self.notifier = notifier
        self.max_concurrency = max_concurrency

    async def forage(
        self, current_state: SourceState, datasets: list[Dataset]
    ) -> ForageResult:
        """Run one cycle for ``datasets`` starting from ``current_state``.

        ``current_state.normals`` is updated in place with any normal built
        during the cycle.

        Raises:
            RemoteJobFailed: If the month's request fails on the CDS side
            ExternalToolFailed: If any conversion fails
        """
        dt = next_cursor(current_state)
        date = to_iso_string(dt)
        logger.info(f"Foraging {NAME} for {date}")

        try:
            check = await self.cds.check_update(NAME, dt, current_state.last_updated)
        except NoUpdateNeeded as e:
            return ForageResult(
                status=ForageStatus.NO_UPDATE,
                new_state=current_state.model_copy(
                    update={"last_updated": e.version_token}
                ),
            )
        last_updated = check.version_token

        updates = {d.name: typical_metadata(d, dt, SHARED_METADATA) for d in datasets}
        variables = list(dict.fromkeys(d.variable for d in datasets))

        request = RetrieveRequest(
            year=dt.year,
            month=month_of(dt),
            variable=variables,
            area=AOI_BBOX,
        )

        try:
            raw = await self.cds.fetch(NAME, request)
        except NoDataAvailable:
            logger.info(f"No data available yet for {date}")
            return ForageResult(
                status=ForageStatus.NO_DATA,
                new_state=current_state.model_copy(
                    update={"last_updated": last_updated}
                ),
            )

        normals = NormalsCache(current_state.normals, self.build_normal)
        outputs: dict[str, Path] = {}

        async def convert(dataset: Dataset) -> None:
            output = output_path(
                self.output_root / dataset.output_dir, date, dataset.layer_name
            )
            options = PipelineOptions(
                record=variables.index(dataset.variable) + 1,
                clip_by=self.clip_by,
                as_geotiff=True,
            )

            if dataset.anomaly:
                normal = await normals.get_or_create(dt, dataset.variable)
                outputs[dataset.name] = await self.runner.convert_anomaly(
                    normal, raw, output, options
                )
            else:
                outputs[dataset.name] = await self.runner.convert(raw, output, options)

        await run_all(
            [partial(convert, dataset) for dataset in datasets],
            self.max_concurrency,
        )
        raw.unlink(missing_ok=True)

        await self._notify_ingest(date)

        logger.info(f"✓ {NAME} {date}: wrote {len(outputs)} layers")
        return ForageResult(
            status=ForageStatus.UPDATED,
            new_state=SourceState(
                date=date,
                last_updated=last_updated,
                normals=current_state.normals,
            ),
            updates=updates,
            outputs=outputs,
        )

    async def build_normal(self, variable: str, month: str) -> Path:
        """Download 30 years of one calendar month and average them."""
        request = RetrieveRequest(
            year=list(range(NORMALS_START_YEAR, NORMALS_START_YEAR + NORMALS_YEARS)),
            month=month,
            variable=variable,
            area=AOI_BBOX,
        )
        raw = await self.cds.fetch(NAME, request)
        output = self.cache_dir / str(uuid4())
        options = PipelineOptions(record="all", clip_by=self.clip_by)

        try:
            return await self.runner.convert_normal(raw, output, options)
        finally:
            raw.unlink(missing_ok=True)

    async def _notify_ingest(self, date: str) -> None:
        if self.notifier is None or not self.notifier.enabled:
            return

        logger.info(f"Sending ingest command for time {date}")
        try:
            result = await self.notifier.notify()
        except IngestError as e:
            logger.warning(f"Ingest command not sent: {e}")
            return
        if result.success:
            logger.info(str(result))
        else:
            logger.warning(str(result))
