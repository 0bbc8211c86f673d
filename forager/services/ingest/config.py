"""Ingest webhook config."""

from pydantic import BaseModel


class IngestConfig(BaseModel):
    """Ingest webhook config."""

    webhook_endpoint: str = ""
    webhook_secret: str = ""
    script_filename: str = ""
    timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_endpoint and self.webhook_secret and self.script_filename)
