"""
API Security Dependencies
=========================

Caller identity and cron authentication.

Authentication itself happens upstream; the gateway forwards the caller as
``X-Actor-Id`` / ``X-Actor-Role`` headers. Scheduled-job endpoints are
called by an external cron and must present ``Bearer <CRON_SECRET>``.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from taskflow.config import Role, settings
from taskflow.core import Actor


async def get_actor(
    x_actor_id: str = Header(..., description="Authenticated user id"),
    x_actor_role: str = Header(..., description="Role of the authenticated user"),
) -> Actor:
    """Build the calling actor from gateway headers."""
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_actor_role}",
        )
    return Actor(user_id=x_actor_id, role=role)


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Reject cron calls without the shared secret."""
    secret = settings.cron_secret
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoints are disabled: CRON_SECRET is not set",
        )
    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
