"""Bounded-concurrency chunk scheduler state.

The scheduler owns four collections (pending, in-flight, finished, dropped)
and is the only writer of them. It performs no I/O: the capture controller asks
it which tasks may start (:meth:`ChunkScheduler.take_ready`), runs the fetches,
and reports each result back with :meth:`ChunkScheduler.mark_done` or
:meth:`ChunkScheduler.mark_failed`. This keeps the scheduling rules testable
without an event loop.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Iterable

from config.settings import (
    CHUNK_RETRY_BUDGET,
    DEFAULT_MAX_CONCURRENCY,
    FETCH_TIMEOUT_BASE_MS,
    FETCH_TIMEOUT_CEILING_MS,
    FETCH_TIMEOUT_STEP_MS,
)
from engine.tasks import ChunkTask

logger = logging.getLogger(__name__)


def fetch_timeout_ms(
    retry_count: int,
    *,
    base_ms: int = FETCH_TIMEOUT_BASE_MS,
    step_ms: int = FETCH_TIMEOUT_STEP_MS,
    ceiling_ms: int = FETCH_TIMEOUT_CEILING_MS,
) -> int:
    """Return the fetch timeout for a task that has already failed ``retry_count`` times."""
    return min(ceiling_ms, base_ms + step_ms * max(0, int(retry_count)))


class ChunkScheduler:
    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        retry_budget: int = CHUNK_RETRY_BUDGET,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if retry_budget < 0:
            raise ValueError("retry_budget must be >= 0")
        self.max_concurrency = max_concurrency
        self.retry_budget = retry_budget
        self._pending: deque[ChunkTask] = deque()
        self._in_flight: set[int] = set()
        self._finished: list[ChunkTask] = []
        self._dropped: list[ChunkTask] = []
        self._discovered = 0
        self._stream_ended = False
        self._lock = threading.Lock()

    # -- discovery -----------------------------------------------------------------

    def enqueue(self, tasks: Iterable[ChunkTask]) -> int:
        """Append newly discovered tasks to the back of the pending queue."""
        added = 0
        with self._lock:
            for task in tasks:
                self._pending.append(task)
                added += 1
            self._discovered += added
        return added

    def notify_stream_end(self) -> None:
        with self._lock:
            self._stream_ended = True

    # -- dispatch ------------------------------------------------------------------

    def take_ready(self) -> list[ChunkTask]:
        """Move as many pending tasks in flight as the concurrency cap allows.

        Safe to call repeatedly and from any completion callback; each call
        hands out only tasks nobody else has been given.
        """
        ready: list[ChunkTask] = []
        with self._lock:
            while self._pending and len(self._in_flight) < self.max_concurrency:
                task = self._pending.popleft()
                self._in_flight.add(id(task))
                ready.append(task)
        return ready

    def mark_done(self, task: ChunkTask) -> None:
        with self._lock:
            self._release(task)
            self._finished.append(task)

    def mark_failed(self, task: ChunkTask) -> bool:
        """Record a failed attempt.

        Returns ``True`` when the task was re-queued (behind every task already
        pending) and ``False`` when its retry budget is exhausted and it was dropped.
        """
        with self._lock:
            self._release(task)
            task.retry_count += 1
            if task.retry_count <= self.retry_budget:
                self._pending.append(task)
                return True
            self._dropped.append(task)
            return False

    def _release(self, task: ChunkTask) -> None:
        try:
            self._in_flight.remove(id(task))
        except KeyError:
            raise ValueError(f"{task.label} is not in flight") from None

    # -- observation ---------------------------------------------------------------

    def is_drained(self) -> bool:
        """True once discovery has ended and no work is pending or running."""
        with self._lock:
            return self._stream_ended and not self._in_flight and not self._pending

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def discovered_count(self) -> int:
        return self._discovered

    @property
    def stream_ended(self) -> bool:
        return self._stream_ended

    def finished_snapshot(self) -> tuple[ChunkTask, ...]:
        with self._lock:
            return tuple(self._finished)

    def dropped_snapshot(self) -> tuple[ChunkTask, ...]:
        with self._lock:
            return tuple(self._dropped)
