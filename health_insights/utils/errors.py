from __future__ import annotations

from typing import Any, Dict, Sequence


class HealthInsightsError(Exception):
    """Base class for pipeline errors rendered as JSON error payloads."""

    status_code = 500
    default_code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: Dict[str, Any] | None = None,
        details: Sequence[str] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra or {}
        self.details = list(details or [])
        self.headers = headers or {}


class MissingInputError(HealthInsightsError):
    status_code = 400
    default_code = "missing_input"


class FileTooLargeError(HealthInsightsError):
    status_code = 400
    default_code = "file_too_large"


class UnsupportedFileTypeError(HealthInsightsError):
    status_code = 400
    default_code = "unsupported_file_type"


class EmptyExtractionError(HealthInsightsError):
    """Raised when a supported document yields no usable text."""

    status_code = 422
    default_code = "empty_extraction"


class UpstreamExtractionError(HealthInsightsError):
    """Raised when the vision model fails to transcribe a PDF or image."""

    status_code = 502
    default_code = "upstream_extraction_error"


class ModelGatewayError(HealthInsightsError):
    """Raised when every model in the preference list failed."""

    status_code = 502
    default_code = "model_error"

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[tuple[str, str]] = (),
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or [
            f"{model}: {error}" for model, error in errors
        ]
        super().__init__(message, details=details, **kwargs)
        self.errors = list(errors)


class ModelParseError(HealthInsightsError):
    """Raised when a model answered but the answer is not valid JSON."""

    status_code = 502
    default_code = "parse_failure"

    def __init__(self, message: str, raw: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.raw = raw


class ConfigurationError(HealthInsightsError):
    status_code = 500
    default_code = "configuration_error"


class AnalysisTimeoutError(HealthInsightsError):
    status_code = 504
    default_code = "timeout"


class RateLimitExceededError(HealthInsightsError):
    status_code = 429
    default_code = "rate_limited"

    def __init__(self, reset_in: int) -> None:
        super().__init__(
            "Rate limit exceeded. Please try again later.",
            extra={"resetIn": reset_in},
            headers={"Retry-After": str(max(reset_in, 1))},
        )
        self.reset_in = reset_in


class ClientDisconnectedError(HealthInsightsError):
    status_code = 499
    default_code = "client_closed_request"


class JobTransitionError(ValueError):
    """Raised when a job update would violate its lifecycle rules."""


class ChatOwnershipError(PermissionError):
    """Raised when a chat is accessed by a user that does not own it."""


__all__ = [
    "AnalysisTimeoutError",
    "ChatOwnershipError",
    "ClientDisconnectedError",
    "ConfigurationError",
    "EmptyExtractionError",
    "FileTooLargeError",
    "HealthInsightsError",
    "JobTransitionError",
    "MissingInputError",
    "ModelGatewayError",
    "ModelParseError",
    "RateLimitExceededError",
    "UnsupportedFileTypeError",
    "UpstreamExtractionError",
]
