"""Asynchronous client for the Gemini ``generateContent`` REST endpoint."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import httpx

log = logging.getLogger(__name__)


class GeminiError(RuntimeError):
    """Raised when a Gemini request fails or returns no usable text."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GeminiRequest:
    """Container describing one ``generateContent`` call."""

    model: str
    contents: Sequence[Mapping[str, Any]]
    generation_config: Mapping[str, Any]
    api_key: str
    system_instruction: str | None = None

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [dict(content) for content in self.contents],
            "generationConfig": dict(self.generation_config),
        }
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return body


@dataclass
class GeminiResponse:
    """Text and metadata returned by a successful call."""

    text: str
    finish_reason: str | None = None
    usage: Mapping[str, Any] | None = None
    raw: Mapping[str, Any] | None = field(default=None, repr=False)


def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def inline_part(data: bytes, mime_type: str) -> dict[str, Any]:
    return {
        "inlineData": {
            "mimeType": mime_type,
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


def user_content(parts: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    return {"role": "user", "parts": [dict(part) for part in parts]}


def collect_text(payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
    """Return the joined candidate text and finish reason."""

    candidates = payload.get("candidates") or []
    if not candidates:
        return None, None

    candidate = candidates[0] or {}
    parts = (candidate.get("content") or {}).get("parts") or []
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text)
    finish_reason = candidate.get("finishReason")
    if extracted:
        return "".join(extracted).strip(), finish_reason
    return None, finish_reason


def _error_message(response: httpx.Response) -> str:
    excerpt = ""
    try:
        parsed = response.json()
    except ValueError:
        excerpt = response.text[:200].strip()
    else:
        if isinstance(parsed, dict):
            error_payload = parsed.get("error")
            if isinstance(error_payload, dict):
                message = error_payload.get("message")
                if isinstance(message, str):
                    excerpt = message.strip()
    if excerpt:
        return f"Gemini request failed with HTTP {response.status_code}: {excerpt}"
    return f"Gemini request failed with HTTP {response.status_code}"


class GeminiClient:
    """Send requests to Gemini over HTTPS.

    Every call is a coroutine, so cancelling the awaiting task aborts the
    underlying HTTP request.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 90.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    def endpoint(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:generateContent"

    async def generate(self, request: GeminiRequest) -> GeminiResponse:
        if not request.api_key:
            raise GeminiError("GEMINI_API_KEY is not configured")

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": request.api_key,
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.endpoint(request.model),
                    headers=headers,
                    json=request.payload(),
                    timeout=self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self.endpoint(request.model),
                        headers=headers,
                        json=request.payload(),
                    )
        except httpx.RequestError as exc:
            raise GeminiError(f"Gemini request failed: {exc}") from exc

        if response.status_code >= 400:
            raise GeminiError(_error_message(response), status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise GeminiError("Gemini returned a non-JSON response") from exc

        text, finish_reason = collect_text(data)
        if not text:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            detail = block_reason or finish_reason or "no candidates"
            log.debug("Gemini empty response payload=%s", json.dumps(data)[:500])
            raise GeminiError(f"Gemini response did not contain text ({detail})")

        return GeminiResponse(
            text=text,
            finish_reason=finish_reason,
            usage=data.get("usageMetadata"),
            raw=data,
        )


__all__ = [
    "GeminiClient",
    "GeminiError",
    "GeminiRequest",
    "GeminiResponse",
    "collect_text",
    "inline_part",
    "text_part",
    "user_content",
]
