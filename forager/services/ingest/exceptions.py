"""Ingest webhook exceptions."""


class IngestError(Exception):
    """Base ingest exception."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class IngestConfigError(IngestError):
    """Config error."""

    pass
