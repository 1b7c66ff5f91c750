"""
codemark/rbac.py
Request-scoped identity and role checks

Tokens are issued by an external auth service. This module only decodes
the bearer token and turns its `sub` and `role` claims into an Identity
that is passed explicitly to every service call.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from codemark.config import settings
from codemark.errors import ErrorCode, ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.AUTH_TOKEN_URL, auto_error=False)


class UserRole(str, PyEnum):
    manager = "manager"
    tutor = "tutor"
    student = "student"


STAFF_ROLES = (UserRole.manager, UserRole.tutor)


@dataclass(frozen=True)
class Identity:
    """Who is making the request."""
    user_id: int
    role: UserRole
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def owns(self, owner_id: int) -> bool:
        return self.user_id == owner_id


# ================= TOKEN UTILS =================

def create_access_token(user_id: int, role: UserRole, email: Optional[str] = None,
                        expires_delta: Optional[timedelta] = None) -> str:
    """Encode an access token in the format the auth service issues."""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=30))
    to_encode = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "exp": expire,
        "type": "access",
    }
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def identity_from_claims(payload: dict) -> Identity:
    if payload.get("type", "access") != "access":
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)
    try:
        user_id = int(payload["sub"])
        role = UserRole(payload["role"])
    except (KeyError, TypeError, ValueError):
        raise UnauthorizedError("Token is missing identity claims", code=ErrorCode.AUTH_INVALID)
    return Identity(user_id=user_id, role=role, email=payload.get("email"))


# ================= AUTH DEPENDENCIES =================

async def get_identity(token: Optional[str] = Depends(oauth2_scheme)) -> Identity:
    """Resolve the caller's identity. Returns 401 if the token is missing or invalid."""
    if not token:
        raise UnauthorizedError()

    payload = decode_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    return identity_from_claims(payload)


def require_role(*allowed_roles: UserRole):
    """
    Dependency factory: Require specific role(s).
    Usage: identity: Identity = Depends(require_role(UserRole.tutor, UserRole.manager))
    """
    async def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        if identity.role not in allowed_roles:
            logger.warning(
                f"Access denied: User {identity.user_id} with role {identity.role.value} "
                f"attempted to access resource requiring {[r.value for r in allowed_roles]}"
            )
            raise ForbiddenError(
                f"This action requires one of: {[r.value for r in allowed_roles]}",
                code=ErrorCode.PERMISSION_DENIED,
                details={"current_role": identity.role.value}
            )
        return identity
    return dependency


require_staff = require_role(*STAFF_ROLES)


def ensure_owner_or_staff(identity: Identity, owner_id: int, resource_name: str = "resource"):
    """Students may only touch their own records; staff may touch any."""
    if identity.is_staff or identity.owns(owner_id):
        return
    raise ForbiddenError(
        f"This {resource_name} does not belong to you",
        code=ErrorCode.OWNERSHIP_VIOLATION
    )
