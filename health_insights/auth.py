"""Request identity helpers.

User identity is asserted by the authentication proxy in front of the
service through a trusted request header; this module only reads it.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from .config import Settings, get_settings


def current_user_id(
    request: Request, settings: Settings = Depends(get_settings)
) -> str | None:
    """Return the authenticated user id, or ``None`` for anonymous callers."""

    value = request.headers.get(settings.user_id_header)
    if value is None:
        return None
    value = value.strip()
    return value or None


def require_user(user_id: str | None = Depends(current_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id


def require_admin(
    user_id: str = Depends(require_user), settings: Settings = Depends(get_settings)
) -> str:
    if user_id not in settings.admin_user_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return user_id


__all__ = ["current_user_id", "require_admin", "require_user"]
