"""End-to-end tests for the analysis and extraction endpoints."""

from __future__ import annotations

import io
import time

from fastapi.testclient import TestClient

from conftest import FALLBACK_MODEL, PRIMARY_MODEL, FakeGemini

REPORT = b"Hemoglobin 13.5 g/dL (12.0-15.5)\nFerritin 8 ng/mL (15-150)\nVitamin D 18 ng/mL\n"


def _wait_for_terminal(client: TestClient, job_id: str, headers=None, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        response = client.get("/api/analyze/status", params={"id": job_id}, headers=headers)
        assert response.status_code == 200
        payload = response.json()
        if payload["status"] in {"completed", "failed"}:
            return payload
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


def test_csv_extract_round_trip(client: TestClient) -> None:
    response = client.post(
        "/api/extract", files={"file": ("labs.csv", io.BytesIO(b"a,b\n1,2"), "text/csv")}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["text"] == "a,b\n1,2"
    assert payload["method"] == "csv"


def test_extract_rejects_oversize_upload(client: TestClient) -> None:
    big = b"x" * (10 * 1024 * 1024 + 1)
    response = client.post("/api/extract", files={"file": ("big.txt", io.BytesIO(big), "text/plain")})

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "file_too_large"
    assert "Maximum file size is 10MB" in payload["error"]
    assert "detail" not in payload


def test_extract_rejects_unsupported_type(client: TestClient, fake_gemini: FakeGemini) -> None:
    response = client.post(
        "/api/extract", files={"file": ("a.zip", io.BytesIO(b"PK"), "application/zip")}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "unsupported_file_type"
    assert fake_gemini.calls == []


def test_extract_empty_file_is_422(client: TestClient) -> None:
    response = client.post("/api/extract", files={"file": ("e.txt", io.BytesIO(b""), "text/plain")})

    assert response.status_code == 422
    assert response.json()["code"] == "empty_extraction"


def test_missing_file_is_400(client: TestClient) -> None:
    response = client.post("/api/analyze", data={"message": "hi"})

    assert response.status_code == 400
    assert response.json()["code"] == "missing_input"


def test_small_report_is_analysed_synchronously(client: TestClient) -> None:
    response = client.post(
        "/api/analyze",
        files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")},
        data={"message": "Am I low on iron?"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["status"] == "success"
    assert payload["model"] == PRIMARY_MODEL
    assert payload["fallback"] is False
    assert payload["analysis"]
    assert payload["textLength"] == len(REPORT.decode())


def test_large_pdf_runs_as_background_job(client: TestClient, fake_gemini: FakeGemini) -> None:
    """A 6MB PDF with a failing primary completes via the fallback model."""

    fake_gemini.failing.add(PRIMARY_MODEL)
    pdf = b"%PDF-1.4\n" + b"0" * (6 * 1024 * 1024)
    headers = {"X-User-Id": "user-1"}

    response = client.post(
        "/api/analyze",
        files={"file": ("big.pdf", io.BytesIO(pdf), "application/pdf")},
        headers=headers,
    )

    assert response.status_code == 202
    job_id = response.json()["jobId"]
    payload = _wait_for_terminal(client, job_id, headers=headers)
    assert payload["status"] == "completed"
    assert payload["progress"] == 100
    assert payload["fallback"] is True
    assert payload["model"] == FALLBACK_MODEL
    assert payload["result"]


def test_init_always_queues(client: TestClient) -> None:
    response = client.post(
        "/api/analyze/init", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    assert response.status_code == 202
    payload = _wait_for_terminal(client, response.json()["jobId"])
    assert payload["status"] == "completed"


def test_failed_job_reports_error(client: TestClient, fake_gemini: FakeGemini) -> None:
    fake_gemini.failing.update({PRIMARY_MODEL, FALLBACK_MODEL})
    response = client.post(
        "/api/analyze/init", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    payload = _wait_for_terminal(client, response.json()["jobId"])
    assert payload["status"] == "failed"
    assert "unavailable" in payload["error"]
    assert "result" not in payload


def test_status_requires_id(client: TestClient) -> None:
    response = client.get("/api/analyze/status")
    assert response.status_code == 400


def test_status_unknown_job_is_404(client: TestClient) -> None:
    response = client.get("/api/analyze/status", params={"id": "does-not-exist"})
    assert response.status_code == 404


def test_status_of_another_users_job_is_403(client: TestClient) -> None:
    response = client.post(
        "/api/analyze/init",
        files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")},
        headers={"X-User-Id": "owner"},
    )
    job_id = response.json()["jobId"]

    other = client.get("/api/analyze/status", params={"id": job_id}, headers={"X-User-Id": "someone-else"})
    anonymous = client.get("/api/analyze/status", params={"id": job_id})

    assert other.status_code == 403
    assert anonymous.status_code == 403


def test_model_failure_hides_details_outside_development(client: TestClient, fake_gemini: FakeGemini) -> None:
    fake_gemini.failing.update({PRIMARY_MODEL, FALLBACK_MODEL})
    response = client.post(
        "/api/analyze", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    assert response.status_code == 502
    payload = response.json()
    assert payload["code"] == "model_error"
    assert "detail" not in payload


def test_development_mode_includes_details(client: TestClient, fake_gemini: FakeGemini, monkeypatch) -> None:
    from health_insights.config import reset_settings_cache

    monkeypatch.setenv("ENVIRONMENT", "development")
    reset_settings_cache()
    fake_gemini.failing.update({PRIMARY_MODEL, FALLBACK_MODEL})

    response = client.post(
        "/api/analyze", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    detail = response.json()["detail"]
    assert any(PRIMARY_MODEL in line for line in detail)
    assert any(FALLBACK_MODEL in line for line in detail)
