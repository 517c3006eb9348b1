"""
Auth guard for every data-plane endpoint.

The token comes from ``Authorization: Bearer <token>``, or from the
``token`` query parameter for EventSource clients, which cannot set
headers. /health is the only unguarded route.
"""
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import HTTPException, Request

logger = structlog.get_logger()

_BEARER = "Bearer "


def extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith(_BEARER):
        token = header[len(_BEARER):].strip()
        if token:
            return token
    return request.query_params.get("token") or None


def is_authorized(token: Optional[str], secret: str) -> bool:
    # No configured secret means nothing gets in
    return bool(secret) and token == secret


async def require_token(request: Request) -> None:
    """FastAPI dependency; raises 401 before the handler body runs."""
    secret = request.app.state.settings.auth.token
    if not is_authorized(extract_token(request), secret):
        logger.warning("unauthorized_request",
                       path=request.url.path,
                       client=request.client.host if request.client else "")
        raise HTTPException(status_code=401, detail="Unauthorized")
