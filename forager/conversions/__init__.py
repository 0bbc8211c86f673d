"""External-tool conversion pipeline (wgrib, wgrib2, cdo, GDAL)."""

from .commands import CommandRunner, run_command
from .config import ToolsConfig
from .exceptions import ExternalToolFailed
from .options import PipelineOptions
from .runner import ConversionRunner

__all__ = [
    "CommandRunner",
    "run_command",
    "ToolsConfig",
    "ExternalToolFailed",
    "PipelineOptions",
    "ConversionRunner",
]
