from __future__ import annotations

import logging
import os
import sys

from ..middleware.request_context import RequestLogFilter

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] | %(message)s"


def configure_logging(default_level: str = "INFO") -> logging.Logger:
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, stream=sys.stdout, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, RequestLogFilter) for item in handler.filters):
            handler.addFilter(RequestLogFilter())
    return logging.getLogger("health_insights")


def mask_secret(value: str | None) -> str:
    """Return a masked representation of an API key for log output."""

    if not value:
        return "<missing>"

    stripped = value.strip()
    if not stripped:
        return "<missing>"

    if len(stripped) <= 8:
        middle = "*" * max(len(stripped) - 2, 1)
        return f"{stripped[0]}{middle}{stripped[-1]}"

    return f"{stripped[:4]}...{stripped[-4:]}"


__all__ = ["LOG_FORMAT", "configure_logging", "mask_secret"]
