"""
FarmStock API Dependencies

Dependency injection for the transfer service and the calling actor.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import get_settings
from docstore import build_store
from transfers.models import Actor
from transfers.service import TransferService

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_USER_ID = "dev-user"


@lru_cache
def get_transfer_service() -> TransferService:
    """Process-wide service; its ledger locks must be shared by every request."""
    runtime_settings = get_settings()
    return TransferService.from_settings(build_store(runtime_settings), runtime_settings)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    """Decode JWT and return the calling actor. Bypassed in debug mode."""
    if settings.debug:
        return Actor(user_id=DEV_USER_ID, name="Developer", role="superadmin")

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return Actor(
        user_id=str(payload["sub"]),
        location_id=payload.get("location_id"),
        name=payload.get("name") or payload.get("email"),
        role=payload.get("role", "user"),
    )


def scoped_location(actor: Actor, requested: str | None) -> str | None:
    """
    Location a read should be limited to.

    Privileged actors see whatever they ask for (None = everything); everyone
    else is pinned to their own location.
    """
    if actor.is_privileged(settings.privileged_roles):
        return requested
    if actor.location_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No location context",
        )
    return actor.location_id
