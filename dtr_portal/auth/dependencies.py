"""Auth dependencies — JWT validation, actor resolution, RBAC enforcement.

Tokens are issued by the portal's identity service; this module only
verifies them and turns the claims into an :class:`Actor`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from dtr_portal.common.constants import STAFF_ROLES, CreatedBy, UserRole
from dtr_portal.common.exceptions import ForbiddenException
from dtr_portal.config import settings

# Each role implicitly includes the lower roles
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.system_admin: {UserRole.system_admin, UserRole.hr_admin, UserRole.employee},
    UserRole.hr_admin: {UserRole.hr_admin, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    employee_id: uuid.UUID
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def created_by(self) -> CreatedBy:
        return CreatedBy.staff if self.is_staff else CreatedBy.portal


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(request: Request) -> Actor:
    """Validate the JWT and return the calling actor."""
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

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        employee_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    role_str = payload.get("role", UserRole.employee.value)
    try:
        role = UserRole(role_str)
    except ValueError:
        role = UserRole.employee

    actor = Actor(employee_id=employee_id, role=role)
    request.state.actor = actor
    return actor


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. system_admin can access hr_admin endpoints.
    """

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        effective_roles = _ROLE_HIERARCHY.get(actor.role, {actor.role})
        if not effective_roles.intersection(set(allowed_roles)):
            raise ForbiddenException(
                detail=f"Role '{actor.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return actor

    return _check


require_staff = require_role(UserRole.hr_admin)
