"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from forager import __version__
from forager.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> None:
    """
    Initialize Logfire tracing for forage runs.

    Must be called ONCE at application startup, before any client is opened.

    Instruments:
    - HTTPX clients (CDS API, ingest webhook)
    - Python logging (bridged to Logfire)

    Args:
        settings: Application settings containing Logfire token
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="forager",
            service_version=__version__,
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire cloud tracking initialized")

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
