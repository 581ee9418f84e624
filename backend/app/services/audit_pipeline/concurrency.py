"""Bounded concurrency for async work.

``ConcurrencyLimiter`` keeps a FIFO queue of task thunks and starts them as
slots free up.  Unlike a bare ``asyncio.Semaphore`` it guarantees tasks start
in submission order and exposes the running count for progress reporting.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """Runs at most ``limit`` tasks at once; excess tasks wait in FIFO order."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._running = 0
        self._peak = 0
        self._queue: deque[tuple[Callable[[], Awaitable], asyncio.Future]] = deque()
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def peak(self) -> int:
        """Highest ``running`` value observed so far."""
        return self._peak

    def add(self, task: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Enqueue ``task`` and return a future resolving to its outcome.

        Must be called from inside a running event loop.  Cancelling the
        returned future before the task starts removes it from the queue.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((task, future))
        self._process_queue()
        return future

    def _process_queue(self) -> None:
        while self._running < self.limit and self._queue:
            task, future = self._queue.popleft()
            if future.done():
                continue
            self._running += 1
            self._peak = max(self._peak, self._running)
            runner = asyncio.create_task(self._run(task, future))
            self._tasks.add(runner)
            runner.add_done_callback(self._tasks.discard)

    async def _run(self, task: Callable[[], Awaitable], future: asyncio.Future) -> None:
        try:
            result = await task()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._process_queue()
