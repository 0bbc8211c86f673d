from .client import CDSClient, backoff_delays, create_cds_client
from .config import CDSConfig
from .exceptions import (
    CDSAPIError,
    CDSAuthError,
    NoDataAvailable,
    NoUpdateNeeded,
    RemoteJobFailed,
)
from .models import JobState, RemoteJob, RetrieveRequest, UpdateCheck

__all__ = [
    "CDSClient",
    "backoff_delays",
    "create_cds_client",
    "CDSConfig",
    "CDSAPIError",
    "CDSAuthError",
    "NoDataAvailable",
    "NoUpdateNeeded",
    "RemoteJobFailed",
    "JobState",
    "RemoteJob",
    "RetrieveRequest",
    "UpdateCheck",
]
