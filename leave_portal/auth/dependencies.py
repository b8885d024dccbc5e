"""Auth dependencies — JWT validation, RBAC enforcement.

Tokens are issued by the portal's login service; here they are only
verified. ``sub`` carries the user id, and the role is read from the
stored user so that a demotion takes effect immediately.
"""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.constants import UserRole
from leave_portal.common.exceptions import ForbiddenException
from leave_portal.config import settings
from leave_portal.database import get_db
from leave_portal.users.models import User

# Role hierarchy: each role implicitly includes lower roles
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.admin: {UserRole.admin, UserRole.manager, UserRole.employee},
    UserRole.manager: {UserRole.manager, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


def has_role(user: User, *allowed_roles: UserRole) -> bool:
    effective_roles = _ROLE_HIERARCHY.get(user.role, {user.role})
    return bool(effective_roles.intersection(allowed_roles))


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate JWT and return the authenticated User."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User account not found.")
    return user


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. admin can access manager endpoints.
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        if not has_role(user, *allowed_roles):
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check
