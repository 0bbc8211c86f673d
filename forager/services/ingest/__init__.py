"""Downstream ingest webhook."""

from .client import (
    IngestNotifier,
    create_ingest_notifier,
    encode_payload,
    sign_payload,
)
from .config import IngestConfig
from .exceptions import IngestConfigError, IngestError
from .models import NotificationResult

__all__ = [
    "IngestNotifier",
    "create_ingest_notifier",
    "encode_payload",
    "sign_payload",
    "IngestConfig",
    "IngestConfigError",
    "IngestError",
    "NotificationResult",
]
