"""
tests/test_auth.py
Bearer token checks and the role policy table.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from shared.middleware.auth import is_allowed
from shared.models.models import User, UserRole
from shared.utils.security import create_access_token
from tests.conftest import make_user


@pytest.mark.asyncio
async def test_missing_token_rejected(client: AsyncClient):
    response = await client.get("/reservations/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_malformed_token_rejected(client: AsyncClient):
    response = await client.get(
        "/reservations/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_claim_rejected(client: AsyncClient, student: User):
    token, _ = create_access_token(str(student.id), "lifeguard", student.email)
    response = await client.get(
        "/reservations/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token_rejected(client: AsyncClient, fake_redis, student: User):
    token, jti = create_access_token(str(student.id), student.role.value, student.email)
    fake_redis.store[f"jwt_revoked:{jti}"] = "1"

    response = await client.get(
        "/reservations/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_inactive_user_forbidden(client: AsyncClient, db: AsyncSession):
    user = await make_user(db, UserRole.STUDENT, is_active=False)
    token, _ = create_access_token(str(user.id), user.role.value, user.email)

    response = await client.get(
        "/reservations/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_valid_token_accepted(client: AsyncClient, student: User):
    token, _ = create_access_token(str(student.id), student.role.value, student.email)
    response = await client.get(
        "/reservations/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200
    assert response.json()["total"] == 0


@pytest.mark.parametrize(
    "role,action,resource,allowed",
    [
        (UserRole.STUDENT, "create", "reservation", True),
        (UserRole.PARENT, "create", "reservation", True),
        (UserRole.VISITOR, "create", "reservation", False),
        (UserRole.INSTRUCTOR, "create", "reservation", False),
        (UserRole.INSTRUCTOR, "read", "reservation", True),
        (UserRole.STUDENT, "confirm", "reservation", False),
        (UserRole.CO_ADMIN, "confirm", "reservation", True),
        (UserRole.ADMIN, "reject", "reservation", True),
        (UserRole.STUDENT, "manage", "catalog", False),
        (UserRole.CO_ADMIN, "read", "audit_log", False),
        (UserRole.ADMIN, "read", "audit_log", True),
        (UserRole.ADMIN, "delete", "universe", False),
    ],
)
def test_policy_table(role, action, resource, allowed):
    assert is_allowed(role, action, resource) is allowed


@pytest.mark.asyncio
async def test_redis_helpers_cover_deny_list_and_rate_limit(fake_redis):
    cache = RedisCache(fake_redis)
    fake_redis.store["jwt_revoked:gone"] = "1"

    assert await cache.is_token_revoked("gone") is True
    assert await cache.is_token_revoked("fresh") is False
    assert [await cache.check_rate_limit("rl:1.2.3.4", limit=2) for _ in range(3)] == [True, True, False]
