from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt
from passlib.context import CryptContext

from sharespace.core.config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(
    subject: str,
    ttl_minutes: int | None = None,
    extra: dict[str, Any] | None = None,
    *,
    secret: str | None = None,
) -> str:
    ttl = ttl_minutes or settings.JWT_ACCESS_TTL_MIN
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret or settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, *, secret: str | None = None) -> dict[str, Any]:
    return jwt.decode(token, secret or settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
