"""
Role-Based Access Control (RBAC) dependencies.
"""
from enum import Enum
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from app.core.security import credentials_error, decode_token, security, subject_id


class Role(str, Enum):
    USER = "user"
    CONSULTANT = "consultant"
    ADMIN = "admin"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.USER: 0,
    Role.CONSULTANT: 1,
    Role.ADMIN: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def _context_from_payload(payload: dict) -> dict:
    user_id = subject_id(payload)
    try:
        role = Role(payload.get("role", Role.USER.value))
    except ValueError:
        raise credentials_error("Invalid token: unknown role")
    return {
        "sub": str(user_id),
        "user_id": user_id,
        "email": payload.get("email"),
        "role": role,
    }


class RBACChecker:
    """Dependency for checking role-based access."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> dict:
        context = _context_from_payload(decode_token(credentials.credentials))

        if not has_permission(context["role"], self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )

        return context


require_consultant = RBACChecker(Role.CONSULTANT)
require_admin = RBACChecker(Role.ADMIN)


async def get_current_user_context(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """Get current user context (user_id, email, role)."""
    return _context_from_payload(decode_token(credentials.credentials))
