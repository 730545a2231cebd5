"""Actor resolution from gateway-forwarded headers."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from regionaccess_api.core.settings import settings
from regionaccess_api.services.access_grants import Actor, GrantAuthorizationError, RoleBasedAuthorizer


def get_authorizer() -> RoleBasedAuthorizer:
    return RoleBasedAuthorizer(settings.grantor_roles)


async def require_actor(
    actor_id: str | None = Header(None, alias="X-Actor-Id"),
    actor_role: str | None = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """Resolve the calling user from forwarded identity headers."""

    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthenticated", "message": "Missing actor context"},
        )

    try:
        user_id = UUID(actor_id)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_request", "message": "Invalid actor identifier"},
        ) from error

    return Actor(user_id=user_id, role=(actor_role or "").strip().lower() or None)


async def require_grantor(
    actor: Actor = Depends(require_actor),
    authorizer: RoleBasedAuthorizer = Depends(get_authorizer),
) -> Actor:
    try:
        return authorizer.ensure_grantor(actor)
    except GrantAuthorizationError as error:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": error.code, "message": error.message},
        ) from error


__all__ = ["get_authorizer", "require_actor", "require_grantor"]
