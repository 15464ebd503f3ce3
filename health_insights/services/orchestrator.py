"""Analysis orchestrator choosing between inline and background processing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from fastapi import Request

from ..config import Settings
from ..models import JobInput, UploadedDocument
from ..utils.errors import AnalysisTimeoutError, ClientDisconnectedError
from .extraction import Extractor
from .gateway import GenerationSettings, ModelGateway
from .gemini_client import text_part
from .jobs import JobStore
from .prompts import analysis_prompt, analysis_request
from .worker import AnalysisWorker, JobOutcome, JobRequest, ProgressCallback

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANALYSIS_MIN_OUTPUT_TOKENS = 4096


@dataclass
class SyncAnalysis:
    """Result of an analysis performed within the request."""

    status: str
    analysis: str
    model: str
    fallback: bool
    text_length: int
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "status": self.status,
            "analysis": self.analysis,
            "model": self.model,
            "fallback": self.fallback,
            "warnings": list(self.warnings),
            "textLength": self.text_length,
        }


@dataclass(frozen=True)
class AsyncHandle:
    """Reference to a background job the client must poll."""

    job_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"success": True, "jobId": self.job_id, "status": "pending"}


class AnalysisOrchestrator:
    """Run extraction and generation for uploaded lab reports.

    Documents above ``async_threshold_bytes`` are queued on the background
    worker; smaller ones are analysed inline under ``sync_timeout_s``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        extractor: Extractor,
        gateway: ModelGateway,
        job_store: JobStore,
    ) -> None:
        self._settings = settings
        self.extractor = extractor
        self.gateway = gateway
        self.job_store = job_store
        self.worker = AnalysisWorker(
            job_store, self.process_job, concurrency=settings.worker_concurrency
        )

    async def analyze(
        self,
        document: UploadedDocument,
        user_message: str | None = None,
        owner_id: str | None = None,
    ) -> SyncAnalysis | AsyncHandle:
        if document.size > self._settings.async_threshold_bytes:
            logger.info(
                "Queueing %s (%.2fMB) for background analysis",
                document.filename,
                document.size_mb,
            )
            return await self.start_job(document, user_message, owner_id)
        return await self.run_sync(document, user_message)

    async def start_job(
        self,
        document: UploadedDocument,
        user_message: str | None = None,
        owner_id: str | None = None,
    ) -> AsyncHandle:
        job = await self.job_store.create_job(
            owner_id,
            JobInput(
                filename=document.filename,
                file_type=document.mime_type,
                file_size=document.size,
                message=user_message,
            ),
        )
        await self.worker.submit(
            JobRequest(job_id=job.id, document=document, user_message=user_message)
        )
        return AsyncHandle(job_id=job.id)

    async def run_sync(
        self, document: UploadedDocument, user_message: str | None = None
    ) -> SyncAnalysis:
        try:
            return await asyncio.wait_for(
                self._pipeline(document, user_message),
                timeout=self._settings.sync_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise AnalysisTimeoutError(
                f"Analysis did not finish within {self._settings.sync_timeout_s:.0f} seconds"
            ) from exc

    async def process_job(
        self, request: JobRequest, report: ProgressCallback
    ) -> JobOutcome:
        analysis = await self._pipeline(request.document, request.user_message, report)
        return JobOutcome(
            result=analysis.analysis,
            model=analysis.model,
            fallback=analysis.fallback,
            warnings=analysis.warnings,
        )

    async def _pipeline(
        self,
        document: UploadedDocument,
        user_message: str | None,
        report: ProgressCallback | None = None,
    ) -> SyncAnalysis:
        extracted = await self.extractor.extract(document)
        if report is not None:
            await report(50, "Text extracted, preparing analysis")

        config = self.gateway.load_config()
        generation = GenerationSettings(
            temperature=0.3,
            top_k=32,
            top_p=0.95,
            max_output_tokens=max(config.max_output_tokens, ANALYSIS_MIN_OUTPUT_TOKENS),
        )
        if report is not None:
            await report(80, "Analyzing lab results")
        result = await self.gateway.generate(
            analysis_prompt(config.system_prompt),
            [text_part(analysis_request(extracted.text, user_message))],
            self.gateway.preferences(config),
            generation=generation,
            config=config,
        )

        warnings: list[str] = []
        if len(extracted.text.strip()) < self._settings.min_extracted_chars:
            warnings.append(
                "Very little text could be extracted from the document; "
                "the analysis may be incomplete."
            )
        if result.truncated:
            warnings.append("The analysis was cut off by the model's output limit.")

        return SyncAnalysis(
            status="partial" if warnings else "success",
            analysis=result.text,
            model=result.model_used,
            fallback=result.used_fallback or extracted.fallback,
            text_length=len(extracted.text),
            warnings=warnings,
        )


async def run_until_disconnect(
    request: Request, awaitable: Awaitable[T], *, poll_interval: float = 0.5
) -> T:
    """Await ``awaitable``, cancelling it if the HTTP client goes away."""

    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected from %s; cancelling work", request.url.path)
                task.cancel()
                raise ClientDisconnectedError("Client closed the request")
    finally:
        if not task.done():
            task.cancel()


__all__ = [
    "AnalysisOrchestrator",
    "AsyncHandle",
    "SyncAnalysis",
    "run_until_disconnect",
]
