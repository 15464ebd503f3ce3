"""Background worker consuming queued analysis jobs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..models import JobStatus, UploadedDocument
from .jobs import JobStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], Awaitable[None]]


@dataclass(frozen=True)
class JobRequest:
    """Work item queued for a pending job."""

    job_id: str
    document: UploadedDocument
    user_message: str | None = None


@dataclass
class JobOutcome:
    result: str
    model: str
    fallback: bool
    warnings: list[str]


JobHandler = Callable[[JobRequest, ProgressCallback], Awaitable[JobOutcome]]


class AnalysisWorker:
    """Run queued jobs on a fixed pool of consumer tasks.

    Queued work lives only in this process; it is lost if the process exits
    before a consumer picks it up.
    """

    def __init__(self, store: JobStore, handler: JobHandler, *, concurrency: int = 2) -> None:
        self._store = store
        self._handler = handler
        self._concurrency = max(1, concurrency)
        self._queue: asyncio.Queue[JobRequest] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._consume(index), name=f"analysis-worker-{index}")
            for index in range(self._concurrency)
        ]
        logger.info("Started %d analysis workers", self._concurrency)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Stopped analysis workers")

    async def submit(self, request: JobRequest) -> None:
        """Queue a job that is already stored as pending."""

        if self._queue is None:
            self.start()
        assert self._queue is not None
        await self._queue.put(request)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""

        if self._queue is not None:
            await self._queue.join()

    async def _consume(self, index: int) -> None:
        assert self._queue is not None
        while True:
            request = await self._queue.get()
            try:
                await self.run_job(request)
            except Exception:
                logger.exception("Worker %d failed to record job %s", index, request.job_id)
            finally:
                self._queue.task_done()

    async def run_job(self, request: JobRequest) -> None:
        job_id = request.job_id

        async def report(progress: int, message: str) -> None:
            await self._store.update_job(job_id, progress=progress, message=message)

        await self._store.update_job(
            job_id,
            status=JobStatus.PROCESSING,
            progress=20,
            message="Extracting text from document",
        )
        try:
            outcome = await self._handler(request, report)
        except asyncio.CancelledError:
            await self._store.update_job(
                job_id, status=JobStatus.FAILED, error="Job was cancelled"
            )
            raise
        except Exception as exc:
            logger.warning("Job %s failed: %s", job_id, exc)
            await self._store.update_job(
                job_id,
                status=JobStatus.FAILED,
                message="Analysis failed",
                error=str(exc) or exc.__class__.__name__,
            )
            return

        await self._store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            message="Analysis complete",
            result=outcome.result,
            model=outcome.model,
            fallback=outcome.fallback,
            warnings=outcome.warnings,
        )
        logger.info("Job %s completed model=%s fallback=%s", job_id, outcome.model, outcome.fallback)


__all__ = ["AnalysisWorker", "JobHandler", "JobOutcome", "JobRequest", "ProgressCallback"]
