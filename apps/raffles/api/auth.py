from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.api.deps import as_http_error, get_session
from apps.raffles.core.errors import RaffleCoreError
from apps.raffles.core.security import create_access_token
from apps.raffles.repositories.users import register_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255)
    referral_code: str | None = None
    country: str | None = None


@router.post("/signup")
async def signup(request: SignupRequest, session: AsyncSession = Depends(get_session)):
    try:
        user = await register_user(
            session,
            name=request.name,
            email=request.email,
            referral_code=request.referral_code,
            country=request.country,
        )
    except RaffleCoreError as exc:
        raise as_http_error(exc)
    token, ttl = create_access_token(user.id, user.role)
    return {
        "user_id": user.id,
        "referral_code": user.referral_code,
        "upline_depth": len(user.upline or []),
        "token": token,
        "expires_in": ttl,
    }
