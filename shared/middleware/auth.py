"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.

Authentication: bearer JWT, checked against the Redis deny-list.
Authorization: routes declare an (action, resource) pair; POLICY maps it to
the roles allowed to perform it. Ownership (a student acting on their own
package, a parent on their child's) is checked by ensure_can_act_for().
"""

import uuid
from typing import Dict, FrozenSet, Optional, Tuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.exceptions import Unauthorized
from shared.models.models import User, UserRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)

ADMINS = frozenset({UserRole.ADMIN, UserRole.CO_ADMIN})
BOOKERS = ADMINS | {UserRole.STUDENT, UserRole.PARENT}
MEMBERS = BOOKERS | {UserRole.INSTRUCTOR}

POLICY: Dict[Tuple[str, str], FrozenSet[UserRole]] = {
    ("create", "reservation"): BOOKERS,
    ("withdraw", "reservation"): BOOKERS,
    ("read", "reservation"): MEMBERS,
    ("confirm", "reservation"): ADMINS,
    ("reject", "reservation"): ADMINS,
    ("list", "pending_reservations"): ADMINS,
    ("purchase", "package"): BOOKERS,
    ("read", "package"): MEMBERS,
    ("list", "payment"): ADMINS,
    ("confirm", "payment"): ADMINS,
    ("read", "payment"): BOOKERS,
    ("read", "notification"): ADMINS,
    ("update", "notification"): ADMINS,
    ("manage", "catalog"): ADMINS,
    ("read", "dashboard"): ADMINS,
    ("read", "audit_log"): frozenset({UserRole.ADMIN}),
}


def is_allowed(role: UserRole, action: str, resource: str) -> bool:
    """Unknown (action, resource) pairs are denied."""
    return role in POLICY.get((action, resource), frozenset())


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]


async def authenticate_token(token: str, db: AsyncSession, redis) -> Optional[User]:
    """
    Resolve a raw bearer token to an active User, or None.
    Shared by the HTTP dependencies and the WebSocket stream.
    """
    try:
        payload = verify_access_token(token)
        token_data = TokenData(payload)
    except JWTError:
        return None

    if token_data.jti and await RedisCache(redis).is_token_revoked(token_data.jti):
        return None

    result = await db.execute(select(User).where(User.id == uuid.UUID(token_data.user_id)))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        return None
    return user


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        token_data = TokenData(verify_access_token(credentials.credentials))
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if token_data.jti and await RedisCache(redis).is_token_revoked(token_data.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    result = await db.execute(select(User).where(User.id == uuid.UUID(token_data.user_id)))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


class Authorize:
    """Dependency factory: allow the caller only if POLICY grants (action, resource) to their role."""

    def __init__(self, action: str, resource: str):
        self.action = action
        self.resource = resource

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not is_allowed(current_user.role, self.action, self.resource):
            raise Unauthorized(
                f"Role '{current_user.role.value}' may not {self.action} {self.resource}"
            )
        return current_user


async def ensure_can_act_for(
    db: AsyncSession,
    actor: User,
    student_id: Optional[uuid.UUID],
) -> User:
    """
    Return the student the actor is acting for.
    Admins act for anyone, parents for their linked children, everyone else for themselves.
    """
    if student_id is None or student_id == actor.id:
        return actor

    result = await db.execute(select(User).where(User.id == student_id))
    student = result.scalar_one_or_none()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")

    if actor.is_admin:
        return student
    if actor.role == UserRole.PARENT and student.parent_id == actor.id:
        return student
    raise Unauthorized("Not allowed to act for this student")
