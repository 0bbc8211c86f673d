"""Signed notifications to the downstream ingest webhook."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

import httpx

from .config import IngestConfig
from .exceptions import IngestConfigError
from .models import NotificationResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"


def encode_payload(payload: dict[str, Any]) -> bytes:
    """Compact JSON bytes; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class IngestNotifier:
    """Async client for the ingest webhook."""

    def __init__(
        self,
        config: IngestConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or IngestConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> IngestNotifier:
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "IngestNotifier must be used as async context manager"
            )
        return self._client

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def ingest_payload(self) -> dict[str, str]:
        """Payload asking the ingest side to run its configured script."""
        return {"filename": f"-f {self.config.script_filename}"}

    async def notify(self, payload: dict[str, Any] | None = None) -> NotificationResult:
        """Post a signed payload. Delivery failures are logged, never raised."""
        if not self.config.webhook_endpoint or not self.config.webhook_secret:
            raise IngestConfigError(
                "webhook_endpoint and webhook_secret are required to notify."
            )

        endpoint = self.config.webhook_endpoint
        body = encode_payload(payload if payload is not None else self.ingest_payload())
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(body, self.config.webhook_secret),
        }

        try:
            response = await self.client.post(endpoint, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Ingest webhook rejected notification: {e}")
            return NotificationResult(
                success=False,
                endpoint=endpoint,
                status_code=e.response.status_code,
                error=str(e),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Error sending ingest command: {e}")
            return NotificationResult(success=False, endpoint=endpoint, error=str(e))

        logger.info(f"Ingest command accepted by {endpoint}")
        return NotificationResult(
            success=True, endpoint=endpoint, status_code=response.status_code
        )


def create_ingest_notifier(config: IngestConfig | None = None) -> IngestNotifier:
    """Create an IngestNotifier instance."""
    return IngestNotifier(config=config)
