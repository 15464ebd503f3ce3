"""ASGI middleware for the Health Insights service."""

from .request_context import RequestIdMiddleware, RequestLogFilter, get_request_id
from .security import SecurityHeadersMiddleware

__all__ = [
    "RequestIdMiddleware",
    "RequestLogFilter",
    "SecurityHeadersMiddleware",
    "get_request_id",
]
