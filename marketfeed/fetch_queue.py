"""Serial fetch queue.

Admits at most one upstream request at a time and waits a fixed delay after
each one finishes, so many concurrent callers degrade to a single paced
stream instead of a burst against the upstream rate limiter.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)


@dataclass
class QueueTask:
    execute: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class SerialFetchQueue:
    """FIFO queue executing one task at a time with a pause between tasks.

    One instance per upstream target per process. A task's failure is delivered
    only to its own caller and never stops the queue.

    A task must not enqueue into the same queue and wait for the result: the
    inner task can only start after the outer one completes.
    """

    def __init__(self, delay: float = 1.0,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.delay = float(delay)
        self._sleep = sleep
        self._pending: Deque[QueueTask] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._busy = False

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def busy(self) -> bool:
        return self._busy

    async def enqueue(self, execute: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``execute`` when its turn comes and return its result."""
        loop = asyncio.get_running_loop()
        task = QueueTask(execute=execute, future=loop.create_future())
        self._pending.append(task)
        logger.debug("Queued fetch (backlog=%d)", len(self._pending))
        self._ensure_worker()
        return await task.future

    def _ensure_worker(self) -> None:
        loop = asyncio.get_running_loop()
        worker = self._worker
        if worker is None or worker.done() or worker.get_loop() is not loop:
            self._worker = loop.create_task(self._run())

    async def _run(self) -> None:
        try:
            while self._pending:
                task = self._pending.popleft()
                if task.future.done():
                    # caller went away while waiting
                    continue

                self._busy = True
                waited = time.monotonic() - task.enqueued_at
                logger.debug("Starting queued fetch after %.3fs wait", waited)
                try:
                    result = await task.execute()
                except Exception as exc:
                    if not task.future.done():
                        task.future.set_exception(exc)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
                finally:
                    self._busy = False

                await self._sleep(self.delay)
        finally:
            if self._worker is asyncio.current_task():
                self._worker = None
