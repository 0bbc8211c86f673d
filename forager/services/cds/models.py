from enum import Enum

from pydantic import BaseModel, Field


class JobState(str, Enum):
    """Lifecycle of a submitted request, in order."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    @property
    def rank(self) -> int:
        return 2 if self.is_terminal else list(JobState).index(self)


class RemoteJob(BaseModel):
    """A data request tracked from submission to a terminal state."""

    id: str
    state: JobState = JobState.QUEUED
    location: str | None = None
    error: str | None = None

    @property
    def pending(self) -> bool:
        return not self.state.is_terminal


class RetrieveRequest(BaseModel):
    """Body of a resource retrieval request.

    ``area`` is ``[north, west, south, east]``.
    """

    format: str = "grib"
    product_type: str = "monthly_averaged_reanalysis"
    year: int | list[int]
    month: str | list[str]
    time: str = "00:00"
    variable: str | list[str]
    area: list[float] = Field(min_length=4, max_length=4)


class UpdateCheck(BaseModel):
    """Outcome of a resource freshness check."""

    version_token: str
    should_fetch: bool = True
