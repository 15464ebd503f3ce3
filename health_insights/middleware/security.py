"""Security headers for JSON API responses."""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach hardened defaults; API payloads carry health data and are never cached."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        content_security_policy: str | None = "default-src 'none'; frame-ancestors 'none'",
        no_store_prefix: str = "/api/",
    ) -> None:
        super().__init__(app)
        self._content_security_policy = content_security_policy
        self._no_store_prefix = no_store_prefix

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        headers = response.headers
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Referrer-Policy", "no-referrer")
        headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
        if self._content_security_policy:
            headers.setdefault("Content-Security-Policy", self._content_security_policy)
        if request.url.path.startswith(self._no_store_prefix):
            headers.setdefault("Cache-Control", "no-store")
        return response


__all__ = ["SecurityHeadersMiddleware"]
