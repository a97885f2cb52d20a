"""
Password hashing and access tokens.

- passwords: passlib, pbkdf2_sha256
- tokens: PyJWT, HS256 only
- outside dev/test a real JWT_SECRET is mandatory
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from caterflow.app.core.config import get_settings

_JWT_ALG = "HS256"

_DEV_SECRETS = {
    "",
    "dev-temp-secret",
    "dev-secret-change-me",
}

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _secret() -> str:
    settings = get_settings()
    if settings.ENV not in {"dev", "test"} and settings.JWT_SECRET in _DEV_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is not configured for ENV={settings.ENV!r}; "
            "set a strong JWT_SECRET in the environment or .env file"
        )
    return settings.JWT_SECRET


def get_password_hash(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return _pwd_context.verify(plain_password, password_hash)
    except ValueError:
        # unknown / malformed hash
        return False


def create_access_token(
    data: Dict[str, Any],
    expires_minutes: Optional[int] = None,
) -> str:
    payload = dict(data)
    minutes = expires_minutes or get_settings().ACCESS_TOKEN_EXPIRE_MINUTES
    payload["exp"] = int(time.time()) + 60 * minutes
    return jwt.encode(payload, _secret(), algorithm=_JWT_ALG)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        out = jwt.decode(token, _secret(), algorithms=[_JWT_ALG])
    except jwt.PyJWTError:
        return None
    return out if isinstance(out, dict) else None
