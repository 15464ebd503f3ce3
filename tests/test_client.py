"""Tests for the polling analysis client."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from health_insights.client import AnalysisClient, AnalysisOutcome


def _report(tmp_path: Path) -> Path:
    path = tmp_path / "labs.pdf"
    path.write_bytes(b"%PDF-1.4 report")
    return path


def _run(handler, path: Path, *, cancel: bool = False, timeout: float = 5.0) -> AnalysisOutcome:
    async def scenario() -> AnalysisOutcome:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = AnalysisClient(
                "http://testserver",
                user_id="user-1",
                poll_interval=0.01,
                timeout=timeout,
                http_client=http_client,
            )
            event = asyncio.Event()
            if cancel:
                asyncio.get_running_loop().call_later(0.05, event.set)
            return await client.analyze(path, "Explain", cancel_event=event)

    return asyncio.run(scenario())


def test_sync_response_is_success(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-User-Id"] == "user-1"
        return httpx.Response(
            200,
            json={"success": True, "status": "success", "analysis": "All good", "model": "m", "fallback": False},
        )

    outcome = _run(handler, _report(tmp_path))

    assert outcome.state == "success"
    assert outcome.analysis == "All good"


def test_partial_response_is_reported(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": "partial", "analysis": "Some", "warnings": ["Analysis was truncated"]},
        )

    outcome = _run(handler, _report(tmp_path))

    assert outcome.state == "partial"
    assert outcome.warnings == ["Analysis was truncated"]


def test_polls_through_not_found_until_completed(tmp_path: Path) -> None:
    """A 404 right after submission is treated as still pending."""

    polls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"success": True, "jobId": "job-1", "status": "pending"})
        assert request.url.params["id"] == "job-1"
        polls.append(1)
        if len(polls) == 1:
            return httpx.Response(404, json={"detail": "Job not found"})
        if len(polls) == 2:
            return httpx.Response(200, json={"jobId": "job-1", "status": "processing", "progress": 50})
        return httpx.Response(
            200,
            json={"jobId": "job-1", "status": "completed", "progress": 100, "result": "Done", "model": "fb", "fallback": True},
        )

    outcome = _run(handler, _report(tmp_path))

    assert outcome.state == "success"
    assert outcome.analysis == "Done"
    assert outcome.fallback is True
    assert outcome.job_id == "job-1"
    assert len(polls) == 3


def test_failed_job_ends_polling(tmp_path: Path) -> None:
    """Polling stops at the first terminal status, before the job can expire."""

    polls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"jobId": "job-2", "status": "pending"})
        polls.append(1)
        if len(polls) > 1:
            return httpx.Response(404, json={"detail": "Job not found"})
        return httpx.Response(200, json={"jobId": "job-2", "status": "failed", "error": "models down"})

    outcome = _run(handler, _report(tmp_path))

    assert outcome.state == "failure"
    assert outcome.error == "models down"
    assert len(polls) == 1


def test_error_response_is_failure(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "error": "File too large", "code": "file_too_large"})

    outcome = _run(handler, _report(tmp_path))

    assert outcome.state == "failure"
    assert outcome.error == "File too large"


def test_cancel_stops_polling(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"jobId": "job-3", "status": "pending"})
        return httpx.Response(200, json={"jobId": "job-3", "status": "processing", "progress": 20})

    outcome = _run(handler, _report(tmp_path), cancel=True)

    assert outcome.state == "canceled"
    assert outcome.error == "Canceled by user"


def test_timeout_is_reported_as_canceled(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"jobId": "job-4", "status": "pending"})
        return httpx.Response(404, json={"detail": "Job not found"})

    outcome = _run(handler, _report(tmp_path), timeout=0.1)

    assert outcome.state == "canceled"
    assert outcome.error == "Timed out waiting for analysis"
