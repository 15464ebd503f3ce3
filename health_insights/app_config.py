"""Runtime configuration editable from the admin console.

Values are resolved on every read from an ordered list of sources: the
process environment first, then the JSON configuration file, then the
built-in defaults. Nothing is cached between reads so an admin update to the
file is visible to the next request, while environment variables always win.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from pydantic import BaseModel, Field

from .config import Settings, get_settings

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a health analysis assistant that helps users understand their "
    "bloodwork and medical reports. Explain results in plain language, point out "
    "values outside their reference ranges, and always remind users that your "
    "answers are educational and do not replace advice from a medical professional."
)
DEFAULT_FALLBACK_MODEL = "gemini-1.5-pro"
DEFAULT_MAX_OUTPUT_TOKENS = 1000

ENV_KEYS: Mapping[str, str] = {
    "systemPrompt": "SYSTEM_PROMPT",
    "apiKey": "GEMINI_API_KEY",
    "fallbackModel": "DEFAULT_GEMINI_MODEL",
    "useFallback": "USE_FALLBACK_MODEL",
    "maxOutputTokens": "MAX_OUTPUT_TOKENS",
}


class AppConfig(BaseModel):
    """Resolved runtime configuration."""

    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="systemPrompt")
    api_key: str = Field(default="", alias="apiKey")
    fallback_model: str = Field(default=DEFAULT_FALLBACK_MODEL, alias="fallbackModel")
    use_fallback: bool = Field(default=True, alias="useFallback")
    max_output_tokens: int = Field(
        default=DEFAULT_MAX_OUTPUT_TOKENS, alias="maxOutputTokens", ge=1
    )

    model_config = {"populate_by_name": True}

    def public_view(self) -> dict[str, Any]:
        """Return the configuration without the API key."""

        payload = self.model_dump(by_alias=True, exclude={"api_key"})
        payload["hasApiKey"] = bool(self.api_key)
        return payload


class ConfigSource(Protocol):
    name: str

    def load(self) -> dict[str, Any]:
        ...


def _coerce(key: str, raw: Any) -> Any:
    if key == "useFallback":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    if key == "maxOutputTokens":
        return int(raw)
    return raw


@dataclass
class EnvSource:
    """Read configuration values from environment variables."""

    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)
    name: str = "environment"

    def load(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, env_name in ENV_KEYS.items():
            raw = self.environ.get(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                values[key] = _coerce(key, raw)
            except ValueError:
                LOGGER.warning("Ignoring invalid %s=%r", env_name, raw)
        return values


@dataclass
class FileSource:
    """Read configuration values from a flat JSON object on disk."""

    path: Path
    name: str = "file"

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to read configuration file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        values: dict[str, Any] = {}
        for key in ENV_KEYS:
            if key in data and data[key] is not None:
                try:
                    values[key] = _coerce(key, data[key])
                except (TypeError, ValueError):
                    LOGGER.warning("Ignoring invalid %s in %s", key, self.path)
        return values


def default_sources(settings: Settings | None = None) -> list[ConfigSource]:
    """Return the sources in precedence order (highest first)."""

    settings = settings or get_settings()
    return [EnvSource(), FileSource(settings.app_config_path)]


def resolve_app_config(
    sources: Sequence[ConfigSource] | None = None,
) -> AppConfig:
    """Resolve configuration from ``sources``, earlier sources taking precedence."""

    merged: dict[str, Any] = {}
    for source in reversed(list(sources if sources is not None else default_sources())):
        merged.update(source.load())
    return AppConfig.model_validate(merged)


def environment_overrides(environ: Mapping[str, str] | None = None) -> list[str]:
    """Return the configuration keys currently pinned by environment variables."""

    return sorted(EnvSource(environ or os.environ).load().keys())


@dataclass
class SaveResult:
    success: bool
    persisted: bool
    message: str
    config: AppConfig


def save_app_config(
    updates: Mapping[str, Any],
    settings: Settings | None = None,
) -> SaveResult:
    """Merge ``updates`` into the configuration file.

    Writes are best-effort. Ephemeral deployments skip the write and report
    that the change will not survive a restart.
    """

    settings = settings or get_settings()
    path = settings.app_config_path
    unknown = set(updates) - set(ENV_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    current: dict[str, Any] = FileSource(path).load()
    for key, value in updates.items():
        if value is None:
            continue
        current[key] = _coerce(key, value)
    AppConfig.model_validate(current)

    pinned = [key for key in environment_overrides() if key in updates]
    suffix = (
        f" Environment variables still override: {', '.join(pinned)}." if pinned else ""
    )

    if settings.serverless:
        LOGGER.info("Skipping configuration write on ephemeral filesystem")
        return SaveResult(
            success=True,
            persisted=False,
            message=(
                "Configuration cannot be persisted in a serverless deployment; "
                "set the corresponding environment variables instead." + suffix
            ),
            config=resolve_app_config(default_sources(settings)),
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(current, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        LOGGER.warning("Failed to write configuration file %s: %s", path, exc)
        return SaveResult(
            success=False,
            persisted=False,
            message=f"Failed to save configuration: {exc}",
            config=resolve_app_config(default_sources(settings)),
        )

    LOGGER.info("Configuration saved to %s keys=%s", path, sorted(updates))
    return SaveResult(
        success=True,
        persisted=True,
        message="Configuration saved." + suffix,
        config=resolve_app_config(default_sources(settings)),
    )


__all__ = [
    "AppConfig",
    "ConfigSource",
    "DEFAULT_FALLBACK_MODEL",
    "DEFAULT_SYSTEM_PROMPT",
    "EnvSource",
    "FileSource",
    "SaveResult",
    "default_sources",
    "environment_overrides",
    "resolve_app_config",
    "save_app_config",
]
