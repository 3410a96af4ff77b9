# coupons_api/deps.py
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from coupons_api.core import config
from coupons_api.core.request_context import set_request_context

logger = logging.getLogger(__name__)

ADMIN_ACTOR = "admin"


def _extract_token(authorization: Optional[str], x_admin_token: Optional[str]) -> str:
    if x_admin_token and x_admin_token.strip():
        return x_admin_token.strip()
    if authorization:
        scheme, _, credentials = authorization.strip().partition(" ")
        if scheme.lower() == "bearer":
            return credentials.strip()
    return ""


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_admin_token: Optional[str] = Header(None),
) -> str:
    """Guard for routes that mutate coupons.

    With ``ADMIN_API_TOKEN`` configured the caller must present it, either as
    ``Authorization: Bearer <token>`` or ``X-Admin-Token``. Without it, dev
    lets the call through and production refuses to serve admin routes.
    """
    configured = config.ADMIN_API_TOKEN
    if not configured:
        if config.IS_PROD:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Admin routes require ADMIN_API_TOKEN in production",
            )
        logger.warning("admin token not configured; allowing %s %s", request.method, request.url.path)
    else:
        incoming = _extract_token(authorization, x_admin_token)
        if not incoming or not hmac.compare_digest(incoming.encode(), configured.encode()):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid admin token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    request.state.actor = ADMIN_ACTOR
    set_request_context(actor=ADMIN_ACTOR)
    return ADMIN_ACTOR
