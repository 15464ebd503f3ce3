"""Tests for metric extraction and trend analysis."""

from __future__ import annotations

import io
import json

from fastapi.testclient import TestClient

from health_insights.services.reports import Metric, ReportSnapshot, build_series

from conftest import FakeGemini

REPORT = b"LDL 160 mg/dL (ref < 100)\nHDL 55 mg/dL (ref > 40)\nGlucose 92 mg/dL\n"


def _report(date: str, ldl: str) -> dict:
    return {
        "date": date,
        "title": f"Panel {date}",
        "metrics": [{"name": "LDL", "value": ldl, "unit": "mg/dL", "status": "high"}],
    }


def test_metric_fields_are_normalised() -> None:
    metric = Metric.model_validate({"name": "LDL", "value": 160, "status": "HIGH"})
    assert metric.value == "160"
    assert metric.status == "high"
    assert Metric(name="x", status="elevated").status == "unknown"


def test_series_is_ordered_oldest_first() -> None:
    reports = [
        ReportSnapshot.model_validate(_report("2024-06-01", "150")),
        ReportSnapshot.model_validate(_report("2023-01-15", "170")),
    ]

    series = build_series(reports, ["ldl", "HbA1c"])

    assert [point["value"] for point in series["ldl"]] == ["170", "150"]
    assert series["HbA1c"] == []


def test_metrics_endpoint_returns_structured_list(client: TestClient, fake_gemini: FakeGemini) -> None:
    fake_gemini.default_reply = json.dumps(
        {"metrics": [{"name": "LDL", "value": 160, "unit": "mg/dL", "status": "high"}, {"value": 1}]}
    )

    response = client.post(
        "/api/reports/metrics", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["metrics"] == [
        {"name": "LDL", "value": "160", "unit": "mg/dL", "range": None, "status": "high"}
    ]
    assert fake_gemini.calls[0].generation_config["responseMimeType"] == "application/json"


def test_unparseable_metrics_are_a_parse_failure(client: TestClient, fake_gemini: FakeGemini) -> None:
    fake_gemini.default_reply = "Sorry, I cannot read this report."

    response = client.post(
        "/api/reports/metrics", files={"file": ("labs.txt", io.BytesIO(REPORT), "text/plain")}
    )

    assert response.status_code == 502
    assert response.json()["code"] == "parse_failure"
    assert len(fake_gemini.calls) == 1


def test_trends_need_two_reports_and_a_metric(client: TestClient, fake_gemini: FakeGemini) -> None:
    one = client.post(
        "/api/reports/trends", json={"reports": [_report("2024-01-01", "150")], "metrics": ["LDL"]}
    )
    none = client.post(
        "/api/reports/trends",
        json={"reports": [_report("2024-01-01", "150"), _report("2024-06-01", "140")], "metrics": []},
    )

    assert one.status_code == 400
    assert none.status_code == 400
    assert fake_gemini.calls == []


def test_trends_are_described(client: TestClient, fake_gemini: FakeGemini) -> None:
    response = client.post(
        "/api/reports/trends",
        json={
            "reports": [_report("2024-06-01", "140"), _report("2023-06-01", "175")],
            "metrics": ["LDL"],
        },
    )

    assert response.status_code == 200
    assert response.json()["analysis"] == fake_gemini.default_reply
    prompt = fake_gemini.calls[0].contents[0]["parts"][0]["text"]
    assert prompt.index("175") < prompt.index("140")
