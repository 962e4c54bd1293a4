# app/security.py
"""Security dependencies guarding operator endpoints."""
from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, status

from app.config import get_settings
from app.utils.errors import error_response


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Récupère la clé depuis Authorization: Bearer ... ou X-API-Key."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_admin_key(token: str | None = Depends(_extract_key)) -> str:
    """Validate the operator API key configured in ``ADMIN_API_KEY``."""

    expected = get_settings().ADMIN_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("ADMIN_KEY_NOT_CONFIGURED", "Operator API key is not configured."),
        )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )
    if not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("INVALID_API_KEY", "Invalid API key."),
        )
    return "admin"


__all__ = ["require_admin_key"]
