"""Construction of the long-lived services shared by request handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from ..app_config import AppConfig, default_sources, resolve_app_config
from ..config import Settings
from ..database import get_engine
from ..utils.errors import ConfigurationError
from .chat_store import FallbackChatStore, FileChatStore, SqlChatStore
from .extraction import Extractor
from .gateway import ModelGateway, Transport
from .jobs import JobStore, MemoryJobStore, RedisJobStore
from .orchestrator import AnalysisOrchestrator
from .rate_limit import MemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    gateway: ModelGateway
    extractor: Extractor
    job_store: JobStore
    orchestrator: AnalysisOrchestrator
    rate_limiter: RateLimiter
    chat_store: FallbackChatStore

    async def start(self) -> None:
        self.orchestrator.worker.start()

    async def stop(self) -> None:
        await self.orchestrator.worker.stop()
        await self.job_store.close()
        await self.rate_limiter.close()


def _require_redis_url(settings: Settings, purpose: str) -> str:
    if not settings.redis_url:
        raise ConfigurationError(f"REDIS_URL is required for the redis {purpose} backend")
    return settings.redis_url


def build_job_store(settings: Settings) -> JobStore:
    if settings.job_store_backend == "redis":
        return RedisJobStore.from_url(
            _require_redis_url(settings, "job store"), ttl_seconds=settings.job_ttl_s
        )
    logger.info("Using in-process job store; run a single instance or set JOB_STORE_BACKEND=redis")
    return MemoryJobStore(ttl_seconds=settings.job_ttl_s)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter.from_url(
            _require_redis_url(settings, "rate limit"),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_s,
        )
    return MemoryRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_s,
    )


def build_services(
    settings: Settings, *, transport: Transport | None = None
) -> ServiceContainer:
    def load_config() -> AppConfig:
        return resolve_app_config(default_sources(settings))

    gateway = ModelGateway(settings, config_loader=load_config, transport=transport)
    extractor = Extractor(vision=gateway.describe)
    job_store = build_job_store(settings)
    orchestrator = AnalysisOrchestrator(
        settings, extractor=extractor, gateway=gateway, job_store=job_store
    )
    chat_store = FallbackChatStore(
        SqlChatStore(get_engine), FileChatStore(settings.chat_fallback_dir)
    )
    return ServiceContainer(
        settings=settings,
        gateway=gateway,
        extractor=extractor,
        job_store=job_store,
        orchestrator=orchestrator,
        rate_limiter=build_rate_limiter(settings),
        chat_store=chat_store,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the services built during startup."""

    return request.app.state.services


__all__ = [
    "ServiceContainer",
    "build_job_store",
    "build_rate_limiter",
    "build_services",
    "get_services",
]
