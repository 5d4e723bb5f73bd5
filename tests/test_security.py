from __future__ import annotations

import jwt
import pytest

from apps.raffles.core.security import AuthError, create_access_token, decode_access_token
from apps.raffles.infra.settings import get_settings


def test_access_token_roundtrip() -> None:
    token, ttl = create_access_token(42, "admin")
    payload = decode_access_token(token)
    assert payload["sub"] == "42"
    assert payload["role"] == "admin"
    assert ttl == get_settings().access_jwt_ttl


def test_garbage_token_is_rejected() -> None:
    with pytest.raises(AuthError):
        decode_access_token("not-a-token")


def test_token_of_another_type_is_rejected() -> None:
    token = jwt.encode({"sub": "1", "type": "refresh"}, get_settings().access_jwt_secret, algorithm="HS256")
    with pytest.raises(AuthError):
        decode_access_token(token)
