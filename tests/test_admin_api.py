"""Tests for the admin configuration endpoints."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN_ID, PRIMARY_MODEL, FakeGemini

ADMIN = {"X-User-Id": ADMIN_ID}


def test_admin_routes_require_allow_listed_user(client: TestClient) -> None:
    assert client.get("/api/admin/config").status_code == 401
    assert client.get("/api/admin/config", headers={"X-User-Id": "user-1"}).status_code == 403
    assert client.get("/api/admin/config", headers=ADMIN).status_code == 200


def test_read_config_never_returns_api_key(client: TestClient) -> None:
    payload = client.get("/api/admin/config", headers=ADMIN).json()

    config = payload["config"]
    assert "apiKey" not in config
    assert config["hasApiKey"] is True
    assert "test-key" not in json.dumps(payload)
    assert payload["environment"]["primaryModel"] == PRIMARY_MODEL
    assert "apiKey" in payload["environment"]["environmentOverrides"]


def test_update_is_persisted_and_visible(client: TestClient, tmp_path: Path) -> None:
    response = client.post(
        "/api/admin/config",
        json={"systemPrompt": "Be concise.", "maxOutputTokens": 2048},
        headers=ADMIN,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["persisted"] is True
    assert payload["config"]["systemPrompt"] == "Be concise."
    assert json.loads((tmp_path / "config.json").read_text())["maxOutputTokens"] == 2048

    reread = client.get("/api/admin/config", headers=ADMIN).json()["config"]
    assert reread["maxOutputTokens"] == 2048


def test_environment_still_wins_after_save(client: TestClient) -> None:
    response = client.post("/api/admin/config", json={"apiKey": "file-key"}, headers=ADMIN)

    payload = response.json()
    assert payload["persisted"] is True
    assert "apiKey" in payload["message"]


def test_serverless_save_is_not_persisted(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    from health_insights.config import reset_settings_cache

    monkeypatch.setenv("SERVERLESS", "1")
    reset_settings_cache()

    response = client.post("/api/admin/config", json={"useFallback": False}, headers=ADMIN)

    payload = response.json()
    assert payload["success"] is True
    assert payload["persisted"] is False
    assert not (tmp_path / "config.json").exists()


def test_empty_update_is_rejected(client: TestClient) -> None:
    assert client.post("/api/admin/config", json={}, headers=ADMIN).status_code == 400


def test_config_test_calls_model(client: TestClient, fake_gemini: FakeGemini) -> None:
    response = client.post("/api/admin/config/test", headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["model"] == PRIMARY_MODEL
    assert fake_gemini.calls[0].generation_config == {"maxOutputTokens": 16}
