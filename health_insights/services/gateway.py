"""Model gateway providing a single-level fallback between Gemini models."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..app_config import AppConfig, resolve_app_config
from ..config import Settings
from ..utils.errors import ConfigurationError, ModelGatewayError, ModelParseError
from .gemini_client import (
    GeminiClient,
    GeminiRequest,
    GeminiResponse,
    inline_part,
    text_part,
    user_content,
)

LOGGER = logging.getLogger(__name__)

Transport = Callable[[GeminiRequest], Awaitable[GeminiResponse]]


@dataclass(frozen=True)
class GenerationSettings:
    """Sampling parameters sent unchanged to every attempted model."""

    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    response_mime_type: str | None = None

    def as_payload(self) -> dict[str, Any]:
        payload = {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
            "responseMimeType": self.response_mime_type,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass
class GenerationResult:
    """High-level result returned by :class:`ModelGateway`."""

    text: str
    model_used: str
    used_fallback: bool
    finish_reason: str | None = None
    usage: Mapping[str, Any] | None = None

    @property
    def truncated(self) -> bool:
        return (self.finish_reason or "").upper() == "MAX_TOKENS"


def parse_json_response(text: str) -> Any:
    """Parse model output as JSON, recovering an object embedded in prose."""

    try:
        return json.loads(text)
    except (TypeError, ValueError):
        pass

    start = text.find("{") if text else -1
    end = text.rfind("}") if text else -1
    if start != -1 and end > start:
        try:
            return json.loads(text[start : end + 1])
        except ValueError as exc:
            raise ModelParseError(
                f"Model response is not valid JSON: {exc}", raw=text
            ) from exc
    raise ModelParseError("Model response did not contain a JSON object", raw=text)


class ModelGateway:
    """Send generation requests to the primary model, retrying once on a fallback.

    Runtime configuration (API key, fallback model, fallback switch) is
    re-resolved on every call through ``config_loader``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        config_loader: Callable[[], AppConfig] | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._settings = settings
        self._config_loader = config_loader or resolve_app_config
        self._client = GeminiClient(
            settings.gemini_base_url, timeout=settings.gemini_timeout_s
        )
        self._transport: Transport = transport or self._client.generate

    def set_transport(self, transport: Transport | None) -> None:
        """Replace the transport (tests inject fakes here)."""

        self._transport = transport or self._client.generate

    def load_config(self) -> AppConfig:
        return self._config_loader()

    def preferences(self, config: AppConfig | None = None) -> list[str]:
        """Return the ordered model list for the current configuration."""

        config = config or self.load_config()
        models = [self._settings.gemini_primary_model]
        if config.use_fallback and config.fallback_model:
            if config.fallback_model != models[0]:
                models.append(config.fallback_model)
        return models

    async def generate(
        self,
        system_prompt: str | None,
        content_parts: Sequence[Mapping[str, Any]],
        preferences: Sequence[str] | None = None,
        *,
        generation: GenerationSettings | None = None,
        config: AppConfig | None = None,
    ) -> GenerationResult:
        """Generate text from a single user turn made of ``content_parts``."""

        return await self.generate_contents(
            system_prompt,
            [user_content(content_parts)],
            preferences,
            generation=generation,
            config=config,
        )

    async def generate_contents(
        self,
        system_prompt: str | None,
        contents: Sequence[Mapping[str, Any]],
        preferences: Sequence[str] | None = None,
        *,
        generation: GenerationSettings | None = None,
        config: AppConfig | None = None,
    ) -> GenerationResult:
        """Generate text from a multi-turn conversation."""

        config = config or self.load_config()
        models = list(preferences) if preferences else self.preferences(config)
        if not models:
            raise ConfigurationError("No model configured")
        models = models[:2]
        generation = generation or GenerationSettings(
            max_output_tokens=config.max_output_tokens
        )

        errors: list[tuple[str, str]] = []
        for index, model in enumerate(models):
            request = GeminiRequest(
                model=model,
                contents=contents,
                generation_config=generation.as_payload(),
                api_key=config.api_key,
                system_instruction=system_prompt,
            )
            try:
                response = await self._transport(request)
                if not response.text or not response.text.strip():
                    raise ValueError("empty response text")
            except Exception as exc:
                LOGGER.warning("Model %s failed: %s", model, exc)
                errors.append((model, str(exc)))
                continue

            used_fallback = index > 0
            if used_fallback:
                LOGGER.info("Fallback model %s succeeded after primary failure", model)
            self._log_usage(model, response.usage)
            return GenerationResult(
                text=response.text,
                model_used=model,
                used_fallback=used_fallback,
                finish_reason=response.finish_reason,
                usage=response.usage,
            )

        if len(errors) == 1:
            message = f"Model {errors[0][0]} failed: {errors[0][1]}"
        else:
            message = "Primary and fallback models failed: " + "; ".join(
                f"{model}: {error}" for model, error in errors
            )
        raise ModelGatewayError(message, errors=errors)

    async def generate_json(
        self,
        system_prompt: str | None,
        content_parts: Sequence[Mapping[str, Any]],
        preferences: Sequence[str] | None = None,
        *,
        generation: GenerationSettings | None = None,
        config: AppConfig | None = None,
    ) -> tuple[Any, GenerationResult]:
        """Generate and parse a JSON answer.

        A parse failure raises :class:`ModelParseError` and is not retried
        against another model.
        """

        result = await self.generate(
            system_prompt,
            content_parts,
            preferences,
            generation=generation,
            config=config,
        )
        return parse_json_response(result.text), result

    async def describe(
        self, data: bytes, mime_type: str, instruction: str
    ) -> GenerationResult:
        """Transcribe a PDF or image by sending it inline with ``instruction``."""

        config = self.load_config()
        return await self.generate(
            None,
            [inline_part(data, mime_type), text_part(instruction)],
            generation=GenerationSettings(
                temperature=0.1,
                max_output_tokens=max(config.max_output_tokens, 4096),
            ),
            config=config,
        )

    def _log_usage(self, model: str, usage: Mapping[str, Any] | None) -> None:
        if not usage:
            return
        LOGGER.info(
            "Gemini usage model=%s prompt=%s candidates=%s total=%s",
            model,
            usage.get("promptTokenCount"),
            usage.get("candidatesTokenCount"),
            usage.get("totalTokenCount"),
        )


__all__ = [
    "GenerationResult",
    "GenerationSettings",
    "ModelGateway",
    "Transport",
    "parse_json_response",
]
