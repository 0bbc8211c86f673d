"""Staged GRIB/GeoTIFF conversions built from external command invocations.

Every stage runs exactly one external tool and writes a fresh uuid-named
artifact in the temp directory. Stages always run in the same order:

    extract -> clip -> scale -> [difference] -> rasterize

An intermediate is deleted as soon as the next stage has produced its output.
The caller's input and the final artifact are never deleted here; the final
artifact is moved to ``{output_base}.grib`` or ``{output_base}.tif``. When a
tool fails the pipeline stops with ``ExternalToolFailed`` and intermediates
written so far are left behind in the temp directory.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Awaitable, Callable
from functools import partial
from pathlib import Path
from uuid import uuid4

from .commands import CommandRunner, run_command
from .config import ToolsConfig
from .options import PipelineOptions

logger = logging.getLogger(__name__)

Stage = Callable[[Path], Awaitable[Path]]

CLIP_TARGET_SRS = "EPSG:4326"
CLIP_NODATA = -9999
MISSING_VALUE = -999


class ConversionRunner:
    """Compose external tools into named conversions.

    Args:
        temp_dir: Directory for intermediate artifacts
        tools: Executable names for the external tools
        execute: Command primitive, ``execute(command, args) -> stdout``
    """

    def __init__(
        self,
        temp_dir: Path,
        tools: ToolsConfig | None = None,
        execute: CommandRunner = run_command,
    ):
        self.temp_dir = Path(temp_dir)
        self.tools = tools or ToolsConfig()
        self._execute = execute

    def temp_path(self, suffix: str = "") -> Path:
        return self.temp_dir / f"{uuid4()}{suffix}"

    # ========================================================================
    # Stages
    # ========================================================================

    async def extract(
        self, input: Path, options: PipelineOptions, output: Path | None = None
    ) -> Path:
        """Pull the selected record(s) out of a multi-record GRIB file."""
        out_file = output or self.temp_path()

        if options.record is not None:
            await self._execute(
                self.tools.wgrib,
                [input, "-d", options.record, "-grib", "-o", out_file],
            )
        else:
            args: list = [input, "-match", options.match]
            if options.limit is not None:
                args += ["-limit", options.limit]
            args += ["-grib", out_file]
            await self._execute(self.tools.wgrib2, args)

        return out_file

    async def clip(self, input: Path, geometry: Path, output: Path | None = None) -> Path:
        """Crop to a polygon and reproject, writing nodata outside it."""
        out_file = output or self.temp_path()
        await self._execute(
            self.tools.gdalwarp,
            [
                "-q",
                "-cutline",
                geometry,
                "-crop_to_cutline",
                "-of",
                "GRIB",
                "-dstnodata",
                CLIP_NODATA,
                "-overwrite",
                "-t_srs",
                CLIP_TARGET_SRS,
                input,
                out_file,
            ],
        )
        return out_file

    async def scale(self, input: Path, factor: float, output: Path | None = None) -> Path:
        out_file = output or self.temp_path()
        await self._execute(self.tools.cdo, [f"-mulc,{factor}", input, out_file])
        return out_file

    async def to_geotiff(self, input: Path, output: Path | None = None) -> Path:
        """Convert a grid to an LZW-compressed Float32 GeoTIFF."""
        out_file = output or self.temp_path(".tif")
        await self._execute(
            self.tools.gdal_translate,
            [
                "-co",
                "COMPRESS=LZW",
                "-co",
                "predictor=3",
                "-ot",
                "Float32",
                input,
                out_file,
            ],
        )
        return out_file

    async def time_mean(self, input: Path, output: Path | None = None) -> Path:
        """Average all timesteps into one, tagging -999 as the missing value."""
        out_file = output or self.temp_path()
        await self._execute(
            self.tools.cdo,
            ["timmean", f"-setmissval,{MISSING_VALUE}", input, out_file],
        )
        return out_file

    async def subtract(
        self, minuend: Path, subtrahend: Path, output: Path | None = None
    ) -> Path:
        """Elementwise ``minuend - subtrahend``."""
        out_file = output or self.temp_path()
        await self._execute(self.tools.cdo, ["sub", minuend, subtrahend, out_file])
        return out_file

    # ========================================================================
    # Composition
    # ========================================================================

    def plan(self, options: PipelineOptions, rasterize: bool = True) -> list[tuple[str, Stage]]:
        """Stages for ``options`` in their fixed order."""
        stages: list[tuple[str, Stage]] = [
            ("extract", partial(self.extract, options=options)),
        ]
        if options.clip_by is not None:
            stages.append(("clip", partial(self.clip, geometry=options.clip_by)))
        if options.factor is not None:
            stages.append(("scale", partial(self.scale, factor=options.factor)))
        if rasterize and options.as_geotiff:
            stages.append(("rasterize", self.to_geotiff))
        return stages

    async def run_stages(self, input: Path, stages: list[tuple[str, Stage]]) -> Path:
        """Thread an artifact through ``stages``, deleting consumed intermediates."""
        source = Path(input)
        artifact = source
        for name, stage in stages:
            logger.debug(f"Stage {name}: {artifact.name}")
            produced = await stage(artifact)
            if artifact != source:
                _discard(artifact)
            artifact = produced
        return artifact

    async def convert(
        self, input: Path, output_base: Path, options: PipelineOptions
    ) -> Path:
        """Plain conversion of one record to ``{output_base}.grib|.tif``."""
        artifact = await self.run_stages(input, self.plan(options))
        return _finalize(artifact, output_base, options.output_suffix)

    async def convert_normal(
        self, input: Path, output: Path, options: PipelineOptions
    ) -> Path:
        """Collapse a multi-year download into one time-mean grid at ``output``."""
        if options.as_geotiff:
            raise ValueError("normals are kept as grids; 'as_geotiff' is not allowed")

        output.parent.mkdir(parents=True, exist_ok=True)
        stages = self.plan(options, rasterize=False)
        stages.append(("time_mean", partial(self.time_mean, output=output)))
        return await self.run_stages(input, stages)

    async def convert_anomaly(
        self,
        normal: Path,
        input: Path,
        output_base: Path,
        options: PipelineOptions,
    ) -> Path:
        """Extract the current record and subtract ``normal`` from it."""
        stages = self.plan(options, rasterize=False)
        stages.append(("difference", partial(self.subtract, subtrahend=normal)))
        if options.as_geotiff:
            stages.append(("rasterize", self.to_geotiff))

        artifact = await self.run_stages(input, stages)
        return _finalize(artifact, output_base, options.output_suffix)

    async def combine_difference(
        self,
        first: Path,
        second: Path,
        output_base: Path | None = None,
        factor: float | None = None,
    ) -> Path:
        """Accumulated difference ``first - second`` of two fetched grids, optionally scaled.

        Returns a temp artifact owned by the caller unless ``output_base`` is given.
        """
        artifact = await self.subtract(first, second)
        if factor is not None:
            scaled = await self.scale(artifact, factor)
            _discard(artifact)
            artifact = scaled
        if output_base is None:
            return artifact
        return _finalize(artifact, output_base, ".grib")


def _discard(path: Path) -> None:
    path.unlink(missing_ok=True)
    logger.debug(f"Removed intermediate {path.name}")


def _finalize(artifact: Path, output_base: Path, suffix: str) -> Path:
    final = Path(f"{output_base}{suffix}")
    final.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(artifact), str(final))
    logger.info(f"Wrote {final}")
    return final
