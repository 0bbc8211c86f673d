"""Liveness marker read by the ``status`` command."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from forager.dates import parse_datetime
from forager.storage.state import read_json, write_json_atomically

logger = logging.getLogger(__name__)


class Heartbeat:
    """Records the time of the last sign of life in ``heart.json``."""

    def __init__(self, path: Path, scratch_dir: Path | None = None):
        self.path = path
        self.scratch_dir = scratch_dir

    def beat(self) -> None:
        """Write the current time. Never raises."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            write_json_atomically(self.path, {"last_beat": now}, self.scratch_dir)
        except Exception as e:
            logger.debug(f"Heartbeat not recorded: {e}")

    def last_beat(self) -> datetime | None:
        data = read_json(self.path, default={}) or {}
        value = data.get("last_beat")
        return parse_datetime(value) if value else None

    def is_stale(self, max_delay: timedelta, now: datetime | None = None) -> bool:
        last = self.last_beat()
        if last is None:
            return True
        current = now or datetime.now(timezone.utc).replace(tzinfo=None)
        return current - last > max_delay
