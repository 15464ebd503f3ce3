"""Tests for the Redis-backed job store and rate limiter."""

from __future__ import annotations

import asyncio

import fakeredis
import pytest
from fakeredis import aioredis as fake_aioredis

from health_insights.models import JobInput, JobStatus
from health_insights.services.jobs import JobNotFoundError, RedisJobStore
from health_insights.services.rate_limit import RedisRateLimiter
from health_insights.utils.errors import JobTransitionError

INPUT = JobInput(filename="labs.pdf", file_type="application/pdf", file_size=10)


def _client() -> fake_aioredis.FakeRedis:
    return fake_aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


def test_job_is_stored_with_a_day_long_expiry() -> None:
    async def scenario() -> None:
        client = _client()
        store = RedisJobStore(client)
        job = await store.create_job("user-1", INPUT)

        ttl = await client.ttl(RedisJobStore.key(job.id))
        assert 24 * 60 * 60 - 5 <= ttl <= 24 * 60 * 60

        stored = await store.get_job(job.id)
        assert stored is not None
        assert stored.status is JobStatus.PENDING
        assert stored.owner_id == "user-1"
        assert stored.input == INPUT
        await store.close()

    asyncio.run(scenario())


def test_transitions_are_enforced_across_instances() -> None:
    """Two stores on one server behave like two service instances."""

    async def scenario() -> None:
        client = _client()
        first, second = RedisJobStore(client), RedisJobStore(client)
        job = await first.create_job(None, INPUT)

        await first.update_job(job.id, status=JobStatus.PROCESSING, progress=50)
        with pytest.raises(JobTransitionError):
            await second.update_job(job.id, progress=20)

        done = await second.update_job(job.id, status=JobStatus.COMPLETED, result="analysis")
        assert done.progress == 100
        assert done.completed_at is not None
        with pytest.raises(JobTransitionError):
            await first.update_job(job.id, status=JobStatus.FAILED, error="late")

        final = await first.get_job(job.id)
        assert final.status is JobStatus.COMPLETED
        assert final.result == "analysis"
        assert final.error is None

    asyncio.run(scenario())


def test_update_keeps_the_original_expiry() -> None:
    async def scenario() -> None:
        client = _client()
        store = RedisJobStore(client, ttl_seconds=100)
        job = await store.create_job(None, INPUT)
        await store.update_job(job.id, status=JobStatus.PROCESSING, progress=20)

        assert 0 < await client.ttl(RedisJobStore.key(job.id)) <= 100

    asyncio.run(scenario())


def test_expired_job_is_not_found() -> None:
    async def scenario() -> None:
        store = RedisJobStore(_client(), ttl_seconds=1)
        job = await store.create_job(None, INPUT)

        await asyncio.sleep(1.2)

        assert await store.get_job(job.id) is None
        with pytest.raises(JobNotFoundError):
            await store.update_job(job.id, progress=10)

    asyncio.run(scenario())


def test_unknown_job_is_not_found() -> None:
    async def scenario() -> None:
        store = RedisJobStore(_client())
        assert await store.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            await store.update_job("missing", status=JobStatus.PROCESSING)

    asyncio.run(scenario())


def test_rate_limit_rejects_over_budget_then_resets() -> None:
    async def scenario() -> None:
        limiter = RedisRateLimiter(_client(), limit=3, window_seconds=1)

        decisions = [await limiter.hit("10.0.0.1") for _ in range(4)]
        assert [decision.allowed for decision in decisions] == [True, True, True, False]
        assert decisions[2].remaining == 0
        assert 0 < decisions[3].reset_in <= 1

        other = await limiter.hit("10.0.0.2")
        assert other.allowed is True

        await asyncio.sleep(1.2)
        assert (await limiter.hit("10.0.0.1")).allowed is True
        await limiter.close()

    asyncio.run(scenario())


def test_rate_limit_window_is_not_extended_by_hits() -> None:
    async def scenario() -> None:
        client = _client()
        limiter = RedisRateLimiter(client, limit=15, window_seconds=60, prefix="rl")
        await limiter.hit("10.0.0.1")
        await client.expire("rl:10.0.0.1", 5)

        decision = await limiter.hit("10.0.0.1")

        assert decision.reset_in <= 5
        assert await client.get("rl:10.0.0.1") == "2"

    asyncio.run(scenario())
