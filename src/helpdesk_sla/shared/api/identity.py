"""
Request Identity
================

The API sits behind the helpdesk gateway, which authenticates the caller
and forwards the user id and role as headers. These dependencies read
them and enforce role checks per route.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status

from helpdesk_sla.config import VALID_USER_ROLES

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller as forwarded by the gateway."""
    id: str
    role: str


async def get_current_user(
    user_id: Optional[str] = Header(None, alias=USER_ID_HEADER),
    role: Optional[str] = Header(None, alias=USER_ROLE_HEADER),
) -> CurrentUser:
    """Resolve the caller from gateway headers."""
    if not user_id or not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity"
        )

    role = role.upper()
    if role not in VALID_USER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role {role}"
        )

    return CurrentUser(id=user_id, role=role)


def require_roles(*roles: str) -> Callable:
    """
    Build a dependency that only admits callers with one of the roles.

    Usage:
        @router.post("/engine/run")
        async def run(user: CurrentUser = Depends(require_roles(UserRole.ADMIN))):
            ...
    """

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this operation"
            )
        return user

    return dependency
