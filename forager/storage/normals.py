"""Baseline ("normal") cache keyed by variable and calendar month."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path

from forager.concurrency import SingleFlight
from forager.dates import month_of

logger = logging.getLogger(__name__)

BaselineBuilder = Callable[[str, str], Awaitable[Path]]


class NormalsCache:
    """Compute-once baselines backed by the persisted ``normals`` map.

    The map is the ``SourceState.normals`` document (variable -> month -> path)
    and is mutated in place, so whatever the caller persists afterwards carries
    the newly built baselines. Entries are never invalidated.

    Args:
        normals: Persisted variable -> month -> baseline path mapping
        build: Coroutine ``build(variable, month)`` producing a permanent artifact
    """

    def __init__(self, normals: dict[str, dict[str, str]], build: BaselineBuilder):
        self.normals = normals
        self._build = build
        self._flights: SingleFlight[tuple[str, str], Path] = SingleFlight()

    def lookup(self, variable: str, month: str) -> Path | None:
        path = self.normals.get(variable, {}).get(month)
        return Path(path) if path else None

    async def get_or_create(self, target_date: datetime, variable: str) -> Path:
        """Return the baseline for ``variable`` in the calendar month of ``target_date``."""
        month = month_of(target_date)

        cached = self.lookup(variable, month)
        if cached is not None:
            logger.debug(f"Using cached normal for {variable} month {month}: {cached}")
            return cached

        return await self._flights.do(
            (variable, month), lambda: self._create(variable, month)
        )

    async def _create(self, variable: str, month: str) -> Path:
        # Another flight for this key may have finished between the lookup
        # and the start of this one.
        cached = self.lookup(variable, month)
        if cached is not None:
            return cached

        logger.info(f"Building normal for {variable} month {month}")
        path = await self._build(variable, month)
        self.normals.setdefault(variable, {})[month] = str(path)
        logger.info(f"Cached normal for {variable} month {month} at {path}")
        return path
