"""Ingest notification models."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class NotificationResult(BaseModel):
    """Webhook delivery result."""

    success: bool
    endpoint: str
    status_code: int | None = None
    sent_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    error: str | None = None

    def __str__(self) -> str:
        """Human-readable status."""
        if self.success:
            return f"Delivered to {self.endpoint} (HTTP {self.status_code})"
        return f"Failed to {self.endpoint}: {self.error}"
