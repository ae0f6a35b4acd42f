"""
Bearer token verification.

Tokens are issued by the identity service that owns login; this API checks
the signature and expiry and reads the subject and role claims.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer

from app.core.config import settings

security = HTTPBearer()


def credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign `claims` (sub, role, email) with an expiry; used by tooling and tests."""
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise credentials_error("Invalid or expired token")


def subject_id(payload: dict) -> int:
    """Numeric user id from the `sub` claim (`user_id` is accepted from older tokens)."""
    raw = payload.get("sub") or payload.get("user_id")
    if raw is None:
        raise credentials_error("Invalid token: missing user identifier (sub)")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise credentials_error("Invalid token: user identifier is not numeric")
