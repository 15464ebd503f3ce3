"""Test configuration for Health Insights."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from health_insights.config import reset_settings_cache  # noqa: E402
from health_insights.database import reset_database_state  # noqa: E402
from health_insights.observability import metrics_registry  # noqa: E402
from health_insights.services.gemini_client import (  # noqa: E402
    GeminiError,
    GeminiRequest,
    GeminiResponse,
)

PRIMARY_MODEL = "primary-model"
FALLBACK_MODEL = "fallback-model"
ADMIN_ID = "admin-1"


class FakeGemini:
    """Stand-in transport recording every request it receives."""

    def __init__(self) -> None:
        self.calls: list[GeminiRequest] = []
        self.failing: set[str] = set()
        self.replies: dict[str, str] = {}
        self.default_reply = "Your cholesterol is slightly elevated; other values are normal."
        self.finish_reason = "STOP"

    @property
    def models(self) -> list[str]:
        return [call.model for call in self.calls]

    async def __call__(self, request: GeminiRequest) -> GeminiResponse:
        self.calls.append(request)
        if request.model in self.failing:
            raise GeminiError(f"{request.model} unavailable", status_code=503)
        text = self.replies.get(request.model, self.default_reply)
        return GeminiResponse(text=text, finish_reason=self.finish_reason)


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Provide isolated configuration for each test."""

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("CHAT_FALLBACK_DIR", str(tmp_path / "chats"))
    monkeypatch.setenv("APP_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("GEMINI_PRIMARY_MODEL", PRIMARY_MODEL)
    monkeypatch.setenv("DEFAULT_GEMINI_MODEL", FALLBACK_MODEL)
    monkeypatch.setenv("ADMIN_USER_IDS", ADMIN_ID)
    monkeypatch.setenv("JOB_STORE_BACKEND", "memory")
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")
    for name in (
        "SYSTEM_PROMPT",
        "USE_FALLBACK_MODEL",
        "MAX_OUTPUT_TOKENS",
        "SERVERLESS",
        "VERCEL",
        "AWS_LAMBDA_FUNCTION_NAME",
        "REDIS_URL",
        "RATE_LIMIT_REQUESTS",
        "ASYNC_THRESHOLD_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()
    yield
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()


@pytest.fixture()
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture()
def client(fake_gemini: FakeGemini) -> Generator[TestClient, None, None]:
    """Return a test client whose model calls go to ``fake_gemini``."""

    from health_insights.main import app

    with TestClient(app) as test_client:
        test_client.app.state.services.gateway.set_transport(fake_gemini)
        yield test_client
