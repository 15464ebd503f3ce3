"""Job store backends tracking out-of-band analysis jobs."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Any, Callable, Mapping, Protocol

from redis import asyncio as aioredis
from redis.exceptions import WatchError

from ..models import AnalysisJob, JobInput, JobStatus
from ..utils.errors import JobTransitionError

logger = logging.getLogger(__name__)

DEFAULT_JOB_TTL_S = 24 * 60 * 60

_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}
_UPDATABLE_FIELDS = {"status", "progress", "message", "result", "model", "fallback", "warnings", "error"}


def apply_job_update(
    job: AnalysisJob, changes: Mapping[str, Any], *, now: datetime
) -> AnalysisJob:
    """Return ``job`` with ``changes`` applied, enforcing lifecycle rules.

    Status only moves forward, terminal states are final, progress never
    decreases, ``result`` belongs to completed jobs and ``error`` to failed ones.
    """

    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise JobTransitionError(f"Cannot update job fields: {', '.join(sorted(unknown))}")
    if job.status.is_terminal:
        raise JobTransitionError(f"Job {job.id} is already {job.status.value}")

    status = JobStatus(changes.get("status", job.status))
    if status not in _ALLOWED_TRANSITIONS[job.status]:
        raise JobTransitionError(
            f"Invalid job transition {job.status.value} -> {status.value}"
        )

    progress = job.progress
    if changes.get("progress") is not None:
        requested = max(0, min(100, int(changes["progress"])))
        if requested < job.progress:
            raise JobTransitionError(
                f"Job progress cannot decrease ({job.progress} -> {requested})"
            )
        progress = requested
    if status is JobStatus.COMPLETED:
        progress = 100

    result = changes.get("result", job.result)
    error = changes.get("error", job.error)
    if result is not None and status is not JobStatus.COMPLETED:
        raise JobTransitionError("Only completed jobs carry a result")
    if error is not None and status is not JobStatus.FAILED:
        raise JobTransitionError("Only failed jobs carry an error")
    if status is JobStatus.COMPLETED and not result:
        raise JobTransitionError("Completed jobs require a result")
    if status is JobStatus.FAILED and not error:
        raise JobTransitionError("Failed jobs require an error message")

    update: dict[str, Any] = dict(changes)
    update.update(status=status, progress=progress)
    if status.is_terminal:
        update["completed_at"] = now
    return job.model_copy(update=update)


def _new_job(
    owner_id: str | None, input_summary: JobInput, *, now: datetime
) -> AnalysisJob:
    return AnalysisJob(
        id=uuid.uuid4().hex,
        owner_id=owner_id,
        status=JobStatus.PENDING,
        progress=0,
        message="Job created, waiting to start processing",
        input=input_summary,
        created_at=now,
    )


class JobStore(Protocol):
    async def create_job(self, owner_id: str | None, input_summary: JobInput) -> AnalysisJob:
        ...

    async def get_job(self, job_id: str) -> AnalysisJob | None:
        ...

    async def update_job(self, job_id: str, **changes: Any) -> AnalysisJob:
        ...

    async def close(self) -> None:
        ...


class JobNotFoundError(LookupError):
    """Raised when updating a job that does not exist or has expired."""


class MemoryJobStore:
    """In-process job store for single-instance deployments."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_JOB_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, AnalysisJob] = {}
        self._expires: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    def _purge_expired(self) -> None:
        now = self._clock()
        for job_id in [key for key, expiry in self._expires.items() if expiry <= now]:
            self._jobs.pop(job_id, None)
            self._expires.pop(job_id, None)

    async def create_job(self, owner_id: str | None, input_summary: JobInput) -> AnalysisJob:
        async with self._lock:
            self._purge_expired()
            job = _new_job(owner_id, input_summary, now=self._now())
            self._jobs[job.id] = job
            self._expires[job.id] = self._clock() + self._ttl
        logger.info("Created job %s for %s", job.id, input_summary.filename)
        return job

    async def get_job(self, job_id: str) -> AnalysisJob | None:
        async with self._lock:
            self._purge_expired()
            return self._jobs.get(job_id)

    async def update_job(self, job_id: str, **changes: Any) -> AnalysisJob:
        async with self._lock:
            self._purge_expired()
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            updated = apply_job_update(job, changes, now=self._now())
            self._jobs[job_id] = updated
            return updated

    async def close(self) -> None:
        return None


class RedisJobStore:
    """Networked job store keeping each job in a ``job:<id>`` hash."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        ttl_seconds: int = DEFAULT_JOB_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self._ttl = ttl_seconds
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisJobStore":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    @staticmethod
    def key(job_id: str) -> str:
        return f"job:{job_id}"

    @staticmethod
    def _encode(job: AnalysisJob) -> dict[str, str]:
        return {name: json.dumps(value) for name, value in job.model_dump(mode="json").items()}

    @staticmethod
    def _decode(fields: Mapping[str, str]) -> AnalysisJob:
        return AnalysisJob.model_validate(
            {name: json.loads(value) for name, value in fields.items()}
        )

    async def create_job(self, owner_id: str | None, input_summary: JobInput) -> AnalysisJob:
        job = _new_job(
            owner_id, input_summary, now=datetime.fromtimestamp(self._clock(), UTC)
        )
        key = self.key(job.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=self._encode(job))
            pipe.expire(key, self._ttl)
            await pipe.execute()
        logger.info("Created job %s for %s", job.id, input_summary.filename)
        return job

    async def get_job(self, job_id: str) -> AnalysisJob | None:
        fields = await self._redis.hgetall(self.key(job_id))
        if not fields:
            return None
        return self._decode(fields)

    async def update_job(self, job_id: str, **changes: Any) -> AnalysisJob:
        key = self.key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    fields = await pipe.hgetall(key)
                    if not fields:
                        raise JobNotFoundError(job_id)
                    updated = apply_job_update(
                        self._decode(fields),
                        changes,
                        now=datetime.fromtimestamp(self._clock(), UTC),
                    )
                    pipe.multi()
                    pipe.hset(key, mapping=self._encode(updated))
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug("Job %s changed during update; retrying", job_id)
                    continue

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = [
    "DEFAULT_JOB_TTL_S",
    "JobNotFoundError",
    "JobStore",
    "MemoryJobStore",
    "RedisJobStore",
    "apply_job_update",
]
