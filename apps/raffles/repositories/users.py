from __future__ import annotations

import logging
import random
import re
import string

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import EmailAlreadyRegistered, UserNotFound
from apps.raffles.core.upline import resolve_upline
from apps.raffles.db.models import User, UserRole
from apps.raffles.infra.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

REF_PREFIX_LENGTH = 4
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _code_prefix(name: str) -> str:
    letters = re.sub(r"[^A-Za-z0-9]", "", name or "").upper()
    return (letters[:REF_PREFIX_LENGTH] or "USER").ljust(REF_PREFIX_LENGTH, "X")


def _generate_code(name: str) -> str:
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=settings.referral_code_suffix_length))
    return f"{_code_prefix(name)}{suffix}"


async def generate_referral_code(session: AsyncSession, name: str) -> str:
    while True:
        candidate = _generate_code(name)
        exists = await session.scalar(select(User.id).where(User.referral_code == candidate))
        if not exists:
            return candidate


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFound()
    return user


async def get_by_email(session: AsyncSession, email: str) -> User | None:
    return await session.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))


async def register_user(
    session: AsyncSession,
    *,
    name: str,
    email: str,
    referral_code: str | None = None,
    role: UserRole = UserRole.USER,
    country: str | None = None,
) -> User:
    """Create a user and freeze their referral chain.

    An unknown referral code fails the signup with ``InvalidReferralCode``
    instead of silently creating an unreferred user.
    """
    email = email.strip()
    if not email:
        raise ValueError("email is required")
    if await get_by_email(session, email) is not None:
        raise EmailAlreadyRegistered()

    referred_by = None
    upline: list[int] = []
    if referral_code and referral_code.strip():
        referrer, upline = await resolve_upline(session, referral_code)
        referred_by = referrer.id

    user = User(
        name=name.strip(),
        email=email,
        role=role.value,
        referral_code=await generate_referral_code(session, name),
        referred_by=referred_by,
        upline=upline,
        country=country,
    )
    session.add(user)
    await session.flush()
    logger.info("Registered user %s (referred_by=%s, upline depth=%d)", user.id, referred_by, len(upline))
    return user


async def list_direct_referrals(session: AsyncSession, user_id: int) -> list[User]:
    rows = await session.scalars(select(User).where(User.referred_by == user_id).order_by(User.id.asc()))
    return list(rows)
