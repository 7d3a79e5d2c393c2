"""Single-worker FIFO queue for whole generation jobs.

Jobs are keyed (a schedule id, or the job id for API requests) and a key can
only be in flight once. One worker drains the queue so that at most one job
uses the expensive providers at a time.
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from models.job import GenerationJob

logger = logging.getLogger(__name__)

Runner = Callable[[GenerationJob], Awaitable[Any]]
SuccessHook = Callable[[GenerationJob, Any], Any]
FailureHook = Callable[[GenerationJob, BaseException], Any]


@dataclass
class QueuedJob:
    key: str
    job: GenerationJob
    on_success: Optional[SuccessHook] = None
    on_failure: Optional[FailureHook] = None


async def _call_hook(hook: Callable, *args) -> None:
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Job queue hook {getattr(hook, '__name__', hook)} failed: {e}", exc_info=True)


class JobQueue:
    """Idempotent FIFO queue drained by a single worker."""

    def __init__(self, runner: Runner):
        self._runner = runner
        self._pending: deque[QueuedJob] = deque()
        self._in_flight: set[str] = set()
        self._worker: Optional[asyncio.Task] = None
        self.processing = False

    def __len__(self) -> int:
        return len(self._pending)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def enqueue(
        self,
        key: str,
        job: GenerationJob,
        on_success: Optional[SuccessHook] = None,
        on_failure: Optional[FailureHook] = None,
    ) -> bool:
        """Queue a job unless its key is already in flight.

        Returns:
            True if the job was queued, False for a duplicate key
        """
        if key in self._in_flight:
            logger.debug(f"Skipping duplicate enqueue for {key}")
            return False
        self._in_flight.add(key)
        self._pending.append(QueuedJob(key, job, on_success, on_failure))
        self._kick()
        return True

    def _kick(self) -> None:
        if self.processing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the next drain() picks the job up
            return
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self.drain())

    async def drain(self) -> None:
        """Run queued jobs one at a time until the queue is empty."""
        if self.processing:
            return
        self.processing = True
        try:
            while self._pending:
                await self._run(self._pending.popleft())
        finally:
            self.processing = False

    async def join(self) -> None:
        """Wait for the background worker to go idle."""
        while self._worker is not None and not self._worker.done():
            await self._worker
        if self._pending:
            await self.drain()

    async def _run(self, item: QueuedJob) -> None:
        try:
            result = await self._runner(item.job)
        except Exception as e:
            logger.error(f"Job {item.job.id} ({item.key}) failed: {e}")
            if item.on_failure is not None:
                await _call_hook(item.on_failure, item.job, e)
        else:
            if item.on_success is not None:
                await _call_hook(item.on_success, item.job, result)
        finally:
            self._in_flight.discard(item.key)
