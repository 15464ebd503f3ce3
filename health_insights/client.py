"""Async client that uploads a report and follows background jobs to completion."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    """What the caller shows the user: success, partial, failure or canceled."""

    state: str
    analysis: str | None = None
    model: str | None = None
    fallback: bool = False
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    job_id: str | None = None


class AnalysisClient:
    """Drive the analyze endpoints the way the web UI does.

    Large uploads come back as a job id; the client then polls the status
    endpoint every ``poll_interval`` seconds until the job completes or fails.
    Polling stops at the first terminal status, so a 404 always means the job
    is not visible yet and polling continues. Setting the
    ``cancel_event`` or exceeding ``timeout`` aborts the in-flight request.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        user_id_header: str = "X-User-Id",
        poll_interval: float = 2.0,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {user_id_header: user_id} if user_id else {}
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._http_client = http_client

    async def analyze(
        self,
        path: Path | str,
        message: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AnalysisOutcome:
        cancel_event = cancel_event or asyncio.Event()
        work = asyncio.ensure_future(self._analyze(Path(path), message))
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, cancel_wait},
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work in done:
                return work.result()
            reason = "Canceled by user" if cancel_wait in done else "Timed out waiting for analysis"
            logger.info("Analysis canceled: %s", reason)
            return AnalysisOutcome(state="canceled", error=reason)
        finally:
            for task in (work, cancel_wait):
                if not task.done():
                    task.cancel()
            await asyncio.gather(work, cancel_wait, return_exceptions=True)

    async def _analyze(self, path: Path, message: str | None) -> AnalysisOutcome:
        if self._http_client is not None:
            return await self._run(self._http_client, path, message)
        async with httpx.AsyncClient(timeout=None) as client:
            return await self._run(client, path, message)

    async def _run(
        self, client: httpx.AsyncClient, path: Path, message: str | None
    ) -> AnalysisOutcome:
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        data = {"message": message} if message else {}
        response = await client.post(
            f"{self._base_url}/api/analyze",
            files={"file": (path.name, path.read_bytes(), mime_type)},
            data=data,
            headers=self._headers,
        )
        payload = _json(response)
        if response.status_code >= 400:
            return AnalysisOutcome(state="failure", error=_error_text(payload, response))

        job_id = payload.get("jobId")
        if not job_id:
            return _from_sync(payload)
        return await self._poll(client, job_id)

    async def _poll(self, client: httpx.AsyncClient, job_id: str) -> AnalysisOutcome:
        while True:
            response = await client.get(
                f"{self._base_url}/api/analyze/status",
                params={"id": job_id},
                headers=self._headers,
            )
            if response.status_code == 404:
                logger.debug("Job %s not visible yet; still pending", job_id)
            elif response.status_code >= 400:
                return AnalysisOutcome(
                    state="failure",
                    error=_error_text(_json(response), response),
                    job_id=job_id,
                )
            else:
                payload = _json(response)
                job_status = payload.get("status")
                if job_status == "completed":
                    outcome = _from_sync(payload)
                    outcome.job_id = job_id
                    return outcome
                if job_status == "failed":
                    return AnalysisOutcome(
                        state="failure", error=payload.get("error"), job_id=job_id
                    )
            await asyncio.sleep(self._poll_interval)


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_text(payload: Mapping[str, Any], response: httpx.Response) -> str:
    return str(payload.get("error") or payload.get("detail") or f"HTTP {response.status_code}")


def _from_sync(payload: Mapping[str, Any]) -> AnalysisOutcome:
    warnings = list(payload.get("warnings") or [])
    analysis = payload.get("analysis") or payload.get("result")
    partial = payload.get("status") == "partial" or bool(warnings)
    return AnalysisOutcome(
        state="partial" if partial else "success",
        analysis=analysis,
        model=payload.get("model"),
        fallback=bool(payload.get("fallback")),
        warnings=warnings,
    )


__all__ = ["AnalysisClient", "AnalysisOutcome"]
