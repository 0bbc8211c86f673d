"""Forager: incremental ERA5 monthly reanalysis acquisition and layer conversion."""

__version__ = "0.1.0"
__author__ = "Forager Team"

__all__ = ["__version__", "__author__"]
