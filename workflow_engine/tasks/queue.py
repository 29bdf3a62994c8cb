"""
Resume queue.

The engine enqueues a ResumeJob when an asynchronous action suspends an
instance. Hosts plug in their own queue through the ResumeQueue protocol;
InMemoryResumeQueue runs jobs in-process on an asyncio.Queue.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import BaseModel, Field

from workflow_engine.models.db.workflow.constants import Port

logger = logging.getLogger(__name__)


class ResumeJob(BaseModel):
    """Request to resume an instance waiting at `node_id`."""

    instance_id: int
    node_id: str
    output_port: str = Port.DEFAULT
    additional_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def async_action(self) -> str | None:
        return self.additional_data.get("async_action")


class ResumeQueue(Protocol):
    async def enqueue(self, job: ResumeJob) -> None: ...


JobHandler = Callable[[ResumeJob], Awaitable[Any]]


class InMemoryResumeQueue:
    """
    asyncio.Queue backed resume queue.

    Usage:
        queue = InMemoryResumeQueue()
        engine = WorkflowEngine(session_factory, registries, resume_queue=queue)
        queue.start(ResumeTask(engine).handle)
        ...
        await queue.join()
        await queue.stop()
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ResumeJob] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._handler: JobHandler | None = None
        self.failed: list[tuple[ResumeJob, Exception]] = []

    async def enqueue(self, job: ResumeJob) -> None:
        await self._queue.put(job)
        logger.debug(f"Enqueued resume job for instance {job.instance_id} at '{job.node_id}'")

    def qsize(self) -> int:
        return self._queue.qsize()

    def start(self, handler: JobHandler) -> None:
        if self._worker is not None and not self._worker.done():
            logger.warning("Resume queue worker already running")
            return
        self._handler = handler
        self._worker = asyncio.create_task(self._run(), name="workflow-resume-worker")
        logger.info("Resume queue worker started")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._handler(job)
            except Exception as e:
                # The handler already retried; keep the worker alive for the next job
                logger.error(f"Resume job for instance {job.instance_id} failed: {e}", exc_info=True)
                self.failed.append((job, e))
            finally:
                self._queue.task_done()

    async def drain(self, handler: JobHandler) -> int:
        """Process queued jobs inline until the queue is empty. Returns the number handled."""
        handled = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await handler(job)
                handled += 1
            finally:
                self._queue.task_done()
        return handled

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Resume queue worker stopped")
