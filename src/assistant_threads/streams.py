"""Iterators over the snapshots observed while polling a run."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, AsyncIterator, Iterator, Optional

from .exceptions import WaitCancelled
from .lifecycle import DEFAULT_MAX_POLLS, DEFAULT_POLL_INTERVAL, PollTracker
from .models import Run
from .types import RunStatusCallback

if TYPE_CHECKING:
    from .async_client import AsyncThreadsClient
    from .sync_client import ThreadsClient


class RunStatusStream:
    """Yields each fetched snapshot of a run until it stops needing polls.

    The final snapshot yielded is terminal or requires action. If the run
    is still queued, in progress or cancelling after ``max_polls`` fetches,
    iteration raises :class:`PollingTimeout` instead.
    """

    def __init__(
        self,
        client: "ThreadsClient",
        thread_id: str,
        run_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[threading.Event] = None,
    ) -> None:
        self._client = client
        self._thread_id = thread_id
        self._run_id = run_id
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._on_status = on_status
        self._stop = stop

    def __iter__(self) -> Iterator[Run]:
        tracker = PollTracker(self._max_polls)
        while True:
            if self._stop is not None and self._stop.is_set():
                raise WaitCancelled(tracker.last)
            run = self._client.retrieve_run(self._thread_id, self._run_id)
            if self._on_status:
                self._on_status(run)
            done = tracker.observe(run)
            yield run
            if done:
                return
            if tracker.exhausted:
                raise tracker.timeout()
            self._client._pause(self._poll_interval, self._stop, run)


class AsyncRunStatusStream:
    """Async counterpart of :class:`RunStatusStream`."""

    def __init__(
        self,
        client: "AsyncThreadsClient",
        thread_id: str,
        run_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        self._client = client
        self._thread_id = thread_id
        self._run_id = run_id
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._on_status = on_status
        self._stop = stop

    async def __aiter__(self) -> AsyncIterator[Run]:
        tracker = PollTracker(self._max_polls)
        while True:
            if self._stop is not None and self._stop.is_set():
                raise WaitCancelled(tracker.last)
            run = await self._client.retrieve_run(self._thread_id, self._run_id)
            if self._on_status:
                self._on_status(run)
            done = tracker.observe(run)
            yield run
            if done:
                return
            if tracker.exhausted:
                raise tracker.timeout()
            await self._client._pause(self._poll_interval, self._stop, run)
