"""Work queue and worker pool for natural-language turns.

The web path enqueues a TurnJob keyed by the user message id and returns
immediately. Workers pick jobs up, run them under a timeout, and report
timeouts and crashes to a failure callback. A message id is accepted at most once
while its job is queued or running.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from listpilot.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnJob:
    message_id: int
    conversation_id: int
    user_id: int
    organization_id: int
    placeholder_id: int
    focused_list_id: str | None = None


JobHandler = Callable[[TurnJob], Awaitable[None]]


class TurnQueue:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[TurnJob] = asyncio.Queue()
        self._seen: set[int] = set()

    def enqueue(self, job: TurnJob) -> bool:
        """False when this message id is already queued or running."""
        if job.message_id in self._seen:
            logger.info(f"Turn for message {job.message_id} already queued, skipping")
            return False
        self._seen.add(job.message_id)
        self._queue.put_nowait(job)
        return True

    async def get(self) -> TurnJob:
        return await self._queue.get()

    def task_done(self, job: TurnJob) -> None:
        self._seen.discard(job.message_id)
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def depth(self) -> int:
        return self._queue.qsize()


class WorkerPool:
    def __init__(
        self,
        queue: TurnQueue,
        handler: JobHandler,
        on_failure: JobHandler,
        size: int | None = None,
        timeout: float | None = None,
    ):
        self.queue = queue
        self.handler = handler
        self.on_failure = on_failure
        self.size = size or settings.worker_count
        self.timeout = timeout or settings.turn_timeout_seconds
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        for n in range(self.size):
            self._tasks.append(asyncio.create_task(self._work(n)))
        logger.info(f"Started {self.size} turn workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def run_job(self, job: TurnJob) -> None:
        try:
            await asyncio.wait_for(self.handler(job), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Turn for message {job.message_id} timed out after {self.timeout}s")
            await self.on_failure(job)
        except Exception:
            logger.exception(f"Turn for message {job.message_id} crashed")
            await self.on_failure(job)

    async def _work(self, worker_id: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.run_job(job)
            except Exception:
                logger.exception(f"Worker {worker_id} failed to report turn {job.message_id}")
            finally:
                self.queue.task_done(job)
