from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx

from forager.dates import floor_month, parse_datetime

from .config import CDSConfig
from .exceptions import (
    CDSAPIError,
    CDSAuthError,
    NoDataAvailable,
    NoUpdateNeeded,
    RemoteJobFailed,
)
from .models import JobState, RemoteJob, RetrieveRequest, UpdateCheck

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "no data is available within your requested subset"


def backoff_delays(
    initial: float, factor: float, maximum: float
) -> Iterator[float]:
    """Poll delays: ``initial``, then multiplied by ``factor`` each time, capped at ``maximum``."""
    delay = min(initial, maximum)
    while True:
        yield delay
        delay = min(delay * factor, maximum)


def _is_no_data(message: str | None) -> bool:
    return bool(message) and NO_DATA_MESSAGE in message.lower()


class CDSClient:
    """Async client for the Climate Data Store request/task API.

    Args:
        api_key: ``UID:KEY`` (sent as basic auth) or a personal access token
        config: Endpoint, retry and polling configuration
        download_dir: Where downloaded results are written
        heartbeat: Liveness callback invoked on every poll
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_key: str | None = None,
        config: CDSConfig | None = None,
        download_dir: Path | None = None,
        heartbeat: Callable[[], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or CDSConfig()
        self.api_key = api_key or ""
        self.download_dir = Path(download_dir) if download_dir else Path(".")
        self._heartbeat = heartbeat
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            f"Initialized CDSClient (base_url={self.config.base_url}, "
            f"auth={'enabled' if self.api_key else 'disabled'})"
        )

    async def __aenter__(self) -> CDSClient:
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
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
            logger.info("Closed CDSClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("CDSClient must be used as async context manager")
        return self._client

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    def _auth(self) -> tuple[httpx.Auth | None, dict[str, str]]:
        if not self.api_key:
            raise CDSAuthError("Authentication required. Provide a CDS API key.")
        if ":" in self.api_key:
            uid, key = self.api_key.split(":", 1)
            return httpx.BasicAuth(uid, key), {}
        return None, {"PRIVATE-TOKEN": self.api_key}

    async def _request(
        self,
        method: str,
        url: str,
        json_data: dict[str, Any] | None = None,
        auth_required: bool = True,
    ) -> dict[str, Any]:
        auth: httpx.Auth | None = None
        headers: dict[str, str] = {}
        if auth_required:
            auth, headers = self._auth()

        retry_count = 0
        last_error: Exception | None = None

        while retry_count < self.config.max_retries:
            try:
                response = await self.client.request(
                    method=method,
                    url=url,
                    json=json_data,
                    headers=headers,
                    auth=auth,
                )

                if response.status_code == 401:
                    raise CDSAuthError("Authentication failed", status_code=401)
                elif response.status_code == 429 or response.status_code >= 500:
                    wait_time = 2 ** retry_count
                    logger.warning(
                        f"CDS returned {response.status_code}, "
                        f"retrying in {wait_time}s..."
                    )
                    last_error = CDSAPIError(
                        _error_message(response), status_code=response.status_code
                    )
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    continue
                elif response.status_code >= 400:
                    raise CDSAPIError(
                        _error_message(response), status_code=response.status_code
                    )

                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                retry_count += 1
                if retry_count < self.config.max_retries:
                    logger.warning(f"Timeout, retrying ({retry_count})...")
                    await asyncio.sleep(2)

            except httpx.RequestError as e:
                last_error = e
                logger.error(f"Network error: {e}")
                break

        raise CDSAPIError(f"Request failed after {retry_count} retries: {last_error}")

    def _signal_liveness(self) -> None:
        if self._heartbeat is None:
            return
        try:
            self._heartbeat()
        except Exception as e:
            logger.debug(f"Heartbeat delivery failed: {e}")

    # ========================================================================
    # Request lifecycle
    # ========================================================================

    async def submit(
        self, resource: str, request: RetrieveRequest | dict[str, Any]
    ) -> RemoteJob:
        """Submit a retrieval request and return the queued job.

        Raises:
            NoDataAvailable: If the subset has no data yet
        """
        body = (
            request.model_dump(mode="json")
            if isinstance(request, RetrieveRequest)
            else request
        )
        url = f"{self.base_url}/resources/{resource}"

        try:
            data = await self._request("POST", url, json_data=body)
        except CDSAPIError as e:
            if _is_no_data(e.message):
                raise NoDataAvailable(e.message, status_code=e.status_code) from e
            raise

        request_id = data.get("request_id")
        if not request_id:
            raise CDSAPIError(f"Submission to {resource} returned no request_id")

        job = _job_from_reply(str(request_id), data)
        logger.info(f"Submitted {resource} request {job.id} ({job.state.value})")
        return job

    async def poll(self, job: RemoteJob) -> RemoteJob:
        """Fetch the job's current state; states never move backwards."""
        data = await self._request("GET", f"{self.base_url}/tasks/{job.id}")
        updated = _job_from_reply(job.id, data)

        if updated.state.rank < job.state.rank:
            logger.warning(
                f"Ignoring backward transition of {job.id}: "
                f"{job.state.value} -> {updated.state.value}"
            )
            return job
        return updated

    async def await_completion(self, job: RemoteJob) -> str:
        """Poll until the job is terminal and return its download URL.

        Raises:
            NoDataAvailable: If the job failed because the subset is empty
            RemoteJobFailed: If the job failed for any other reason
        """
        delays = backoff_delays(
            self.config.poll_initial_seconds,
            self.config.poll_backoff_factor,
            self.config.poll_max_seconds,
        )

        job = await self.poll(job)
        self._signal_liveness()
        while job.pending:
            delay = next(delays)
            logger.debug(f"Job {job.id} is {job.state.value}, next poll in {delay:.1f}s")
            await asyncio.sleep(delay)
            job = await self.poll(job)
            self._signal_liveness()

        if job.state is not JobState.COMPLETED:
            message = job.error or f"request {job.id} failed"
            if _is_no_data(message):
                raise NoDataAvailable(message)
            logger.error(f"Job {job.id} failed: {message}")
            raise RemoteJobFailed(message)

        if not job.location:
            raise RemoteJobFailed(f"request {job.id} completed without a location")

        if job.location.startswith(("https://", "http://")):
            return job.location
        return f"{self.base_url}/{job.location.lstrip('/')}"

    async def download(self, url: str, destination: Path | None = None) -> Path:
        """Stream ``url`` to ``destination`` (a fresh file in ``download_dir`` by default)."""
        auth, headers = self._auth()
        target = destination or self.download_dir / str(uuid4())
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with self.client.stream(
                "GET", url, auth=auth, headers=headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise CDSAPIError(
                        f"Download failed: {_error_message(response)}",
                        status_code=response.status_code,
                    )
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes(
                        self.config.download_chunk_size
                    ):
                        f.write(chunk)
        except (CDSAPIError, httpx.HTTPError):
            target.unlink(missing_ok=True)
            raise

        logger.info(f"Downloaded {url} to {target}")
        return target

    async def fetch(
        self, resource: str, request: RetrieveRequest | dict[str, Any]
    ) -> Path:
        """Submit, wait for completion and download the result."""
        job = await self.submit(resource, request)
        url = await self.await_completion(job)
        return await self.download(url)

    async def check_update(
        self,
        resource: str,
        target_date: datetime,
        last_known_version: str | None,
    ) -> UpdateCheck:
        """Check whether ``resource`` may hold data newer than what was fetched.

        Raises:
            NoUpdateNeeded: If the version token is unchanged and ``target_date``
                is not before the month of that version
        """
        url = f"{self.config.ui_base_url}/resources/{resource}"
        data = await self._request("GET", url, auth_required=False)

        update_date = data.get("update_date")
        if not update_date:
            raise CDSAPIError(f"Resource {resource} reported no update_date")

        getting_latest = target_date >= floor_month(parse_datetime(update_date))
        if last_known_version == update_date and getting_latest:
            logger.info(f"{resource} unchanged since {update_date}")
            raise NoUpdateNeeded(update_date)

        return UpdateCheck(version_token=update_date, should_fetch=True)


def _job_from_reply(job_id: str, data: dict[str, Any]) -> RemoteJob:
    try:
        state = JobState(data.get("state", JobState.QUEUED.value))
    except ValueError:
        state = JobState.FAILED

    error = data.get("error")
    if isinstance(error, dict):
        error = error.get("message") or error.get("reason")

    return RemoteJob(
        id=job_id,
        state=state,
        location=data.get("location"),
        error=str(error) if error else None,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            return str(error.get("message") or error.get("reason") or error)
        return str(error)
    return str(data)


def create_cds_client(
    api_key: str,
    config: CDSConfig | None = None,
    download_dir: Path | None = None,
    heartbeat: Callable[[], None] | None = None,
) -> CDSClient:
    """Create a CDSClient instance."""
    return CDSClient(
        api_key=api_key,
        config=config,
        download_dir=download_dir,
        heartbeat=heartbeat,
    )
