"""
shared/utils/security.py
Access-token encoding and verification.

Tokens are issued by the identity provider; this service only verifies them.
create_access_token exists for service-to-service calls and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings
from shared.models.models import UserRole

REQUIRED_CLAIMS = ("sub", "role", "email", "jti")


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """Sign an access token for one of the school roles. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)

    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
        **(extra or {}),
    }
    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str) -> dict:
    """
    Decode an access token and check its claims.

    Beyond signature and expiry, the token must carry every claim in
    REQUIRED_CLAIMS, a UUID subject and a role this school knows.
    Any failure raises JWTError.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")

    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        raise JWTError(f"Missing claims: {', '.join(missing)}")
    try:
        uuid.UUID(payload["sub"])
        UserRole(payload["role"])
    except ValueError as e:
        raise JWTError(f"Malformed claims: {e}")
    return payload
