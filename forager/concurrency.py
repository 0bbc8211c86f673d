"""Bounded fan-out of async work and per-key single-flight de-duplication."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from collections.abc import Awaitable, Callable, Hashable, Sequence
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4
THREADPOOL_SIZE_ENV = "FORAGER_THREADPOOL_SIZE"

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Strong references to tasks still running after run_all has already
# resolved (e.g. siblings of a failed task).
_background_tasks: set[asyncio.Task[Any]] = set()


def default_max_concurrency() -> int:
    """Worker count hinted by the host environment, else ``DEFAULT_MAX_CONCURRENCY``."""
    hint = os.environ.get(THREADPOOL_SIZE_ENV, "").strip()
    if not hint:
        return DEFAULT_MAX_CONCURRENCY
    try:
        size = int(hint)
    except ValueError:
        logger.warning(f"Ignoring {THREADPOOL_SIZE_ENV}={hint!r}: not an integer")
        return DEFAULT_MAX_CONCURRENCY
    if size < 1:
        logger.warning(f"Ignoring {THREADPOOL_SIZE_ENV}={hint!r}: must be positive")
        return DEFAULT_MAX_CONCURRENCY
    return size


async def run_all(
    tasks: Sequence[Callable[[], Awaitable[Any]]],
    max_concurrency: int | None = None,
) -> None:
    """Run zero-argument coroutine factories with at most ``max_concurrency`` in flight.

    Resolves once every task has completed. The first failure is raised as soon
    as it happens; tasks already in flight keep running in the background and
    their outcomes are discarded.

    Args:
        tasks: Callables returning awaitables, started in list order
        max_concurrency: Upper bound on simultaneously unresolved tasks.
            Defaults to the host hint from ``default_max_concurrency``.
    """
    limit = default_max_concurrency() if max_concurrency is None else max_concurrency
    if limit < 1:
        raise ValueError(f"max_concurrency must be positive, got {limit}")

    queue = deque(tasks)
    total = len(queue)
    if total == 0:
        return

    loop = asyncio.get_running_loop()
    finished: asyncio.Future[None] = loop.create_future()
    remaining = total

    def start_next() -> None:
        factory = queue.popleft()
        task = asyncio.ensure_future(factory())
        _background_tasks.add(task)
        task.add_done_callback(on_done)

    def on_done(task: asyncio.Task[Any]) -> None:
        nonlocal remaining
        _background_tasks.discard(task)

        # Always retrieve the outcome so late failures are never reported
        # as unobserved.
        if task.cancelled():
            error: BaseException | None = asyncio.CancelledError()
        else:
            error = task.exception()

        if finished.done():
            if error is not None:
                logger.debug(f"Discarding late task failure: {error!r}")
            return

        if error is not None:
            finished.set_exception(error)
            return

        remaining -= 1
        if remaining == 0:
            finished.set_result(None)
        elif queue:
            start_next()

    for _ in range(min(limit, total)):
        start_next()

    await finished


class SingleFlight(Generic[K, V]):
    """Share one in-flight computation among concurrent callers of the same key.

    The first caller for a key starts the computation; callers arriving while it
    runs await the same result (or exception). Once it settles the key is
    released, so a failed computation can be retried by a later call.
    """

    def __init__(self) -> None:
        self._inflight: dict[K, asyncio.Future[V]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    async def do(self, key: K, fn: Callable[[], Awaitable[V]]) -> V:
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(fn())
            self._inflight[key] = future

            def release(done: asyncio.Future[V]) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            future.add_done_callback(release)
        else:
            logger.debug(f"Joining in-flight computation for {key!r}")

        return await asyncio.shield(future)
