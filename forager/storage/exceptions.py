"""Storage layer exceptions."""

from pathlib import Path


class StateNotFoundError(FileNotFoundError):
    """State document is absent and no default was supplied."""

    def __init__(self, path: Path):
        super().__init__(f"State file not found: {path}")
        self.path = path


class AtomicWriteFailed(OSError):
    """Atomic replace of a state document did not complete."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Failed to write {path} atomically: {reason}")
        self.path = path
        self.reason = reason
