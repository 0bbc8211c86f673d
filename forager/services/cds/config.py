from pydantic import BaseModel


class CDSConfig(BaseModel):
    """Configuration for the Climate Data Store API client."""

    base_url: str = "https://cds.climate.copernicus.eu/api/v2"
    timeout_seconds: float = 60.0
    max_retries: int = 3
    poll_initial_seconds: float = 1.0
    poll_backoff_factor: float = 1.5
    poll_max_seconds: float = 120.0
    download_chunk_size: int = 1024 * 1024

    @property
    def ui_base_url(self) -> str:
        """Catalogue endpoint that reports resource update dates."""
        return f"{self.base_url.rstrip('/')}.ui"
