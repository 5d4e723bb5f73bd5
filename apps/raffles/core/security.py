from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from apps.raffles.infra.settings import get_settings

settings = get_settings()


class AuthError(Exception):
    pass


def create_access_token(user_id: int, role: str) -> tuple[str, int]:
    ttl = settings.access_jwt_ttl
    expires = datetime.now(tz=timezone.utc) + timedelta(seconds=ttl)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expires,
        "type": "access",
    }
    token = jwt.encode(payload, settings.access_jwt_secret, algorithm="HS256")
    return token, ttl


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.access_jwt_secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid token") from exc
    if payload.get("type") != "access":
        raise AuthError("Invalid token type")
    return payload
