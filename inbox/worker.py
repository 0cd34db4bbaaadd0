"""
Background reply queue.

Webhook requests enqueue ReplyJobs and return immediately; a small pool
of workers generates and delivers the replies. Each job runs under its
own timeout and its failures stay inside that job; a job that times
out or crashes is handed to the failure handler so the customer still
gets a reply.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ReplyJob:
    """AI reply to produce for one inbound message."""
    conversation_id: str
    message_id: str
    channel_id: str
    platform: str
    platform_user_id: str
    text: str


ReplyHandler = Callable[[ReplyJob], Awaitable[None]]
FailureHandler = Callable[[ReplyJob, BaseException], Awaitable[None]]


class ReplyQueue:
    """asyncio worker pool draining reply jobs."""

    def __init__(
        self,
        handler: ReplyHandler,
        workers: int = 2,
        job_timeout: float = 60.0,
        on_failure: Optional[FailureHandler] = None,
        failure_timeout: float = 25.0,
    ):
        self.handler = handler
        self.worker_count = max(1, workers)
        self.job_timeout = job_timeout
        self.on_failure = on_failure
        self.failure_timeout = failure_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self):
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._run(i), name=f"reply-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Reply queue started with {self.worker_count} workers")

    async def stop(self, drain_timeout: float = 5.0):
        """Stop workers, giving queued jobs a short window to finish."""
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Reply queue stopped with {self._queue.qsize()} jobs pending")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Reply queue stopped")

    async def enqueue(self, job: ReplyJob):
        if self._queue is None:
            raise RuntimeError("Reply queue not started")
        await self._queue.put(job)

    async def join(self):
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _run(self, worker_id: int):
        while True:
            job = await self._queue.get()
            try:
                await asyncio.wait_for(self.handler(job), timeout=self.job_timeout)
            except asyncio.TimeoutError as e:
                logger.error(
                    f"Reply job for conversation {job.conversation_id} timed out after {self.job_timeout}s"
                )
                await self._recover(job, e)
            except Exception as e:
                logger.exception(f"Reply job for conversation {job.conversation_id} failed: {e}")
                await self._recover(job, e)
            finally:
                self._queue.task_done()

    async def _recover(self, job: ReplyJob, error: BaseException):
        if self.on_failure is None:
            return
        try:
            await asyncio.wait_for(self.on_failure(job, error), timeout=self.failure_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Fallback for conversation {job.conversation_id} timed out")
        except Exception as e:
            logger.exception(f"Fallback for conversation {job.conversation_id} failed: {e}")
