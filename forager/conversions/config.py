"""Executable names for the external conversion tools."""

from pydantic import BaseModel


class ToolsConfig(BaseModel):
    """Commands resolved on PATH unless given as absolute paths."""

    wgrib: str = "wgrib"
    wgrib2: str = "wgrib2"
    cdo: str = "cdo"
    gdalwarp: str = "gdalwarp"
    gdal_translate: str = "gdal_translate"
