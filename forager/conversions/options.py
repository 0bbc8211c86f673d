"""Per-run conversion parameters."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PipelineOptions(BaseModel):
    """Which stages a conversion runs and with what parameters.

    Extraction always runs: ``record`` selects a GRIB1 record by number (or
    ``"all"``), ``match`` selects GRIB2 records by pattern with an optional
    ``limit``. Every other field gates its stage; leaving it unset skips it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    record: int | Literal["all"] | None = None
    match: str | None = None
    limit: int | None = Field(default=None, gt=0)
    clip_by: Path | None = None
    factor: float | None = None
    as_geotiff: bool = False

    @model_validator(mode="after")
    def check_selector(self) -> "PipelineOptions":
        if (self.record is None) == (self.match is None):
            raise ValueError("exactly one of 'record' or 'match' is required")
        if self.limit is not None and self.match is None:
            raise ValueError("'limit' only applies to 'match' selection")
        if isinstance(self.record, int) and self.record < 1:
            raise ValueError("'record' numbers start at 1")
        if self.factor == 0:
            raise ValueError("'factor' must be non-zero")
        return self

    @property
    def output_suffix(self) -> str:
        return ".tif" if self.as_geotiff else ".grib"
