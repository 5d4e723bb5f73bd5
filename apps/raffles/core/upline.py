from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import InvalidReferralCode
from apps.raffles.db.models import User

UPLINE_DEPTH = 3


def build_upline(referrer_id: int, referrer_upline: Sequence[int] | None = None) -> list[int]:
    """Snapshot of the ancestor chain for a user referred by ``referrer_id``, most direct first."""
    return [referrer_id, *(referrer_upline or [])][:UPLINE_DEPTH]


async def find_referrer(session: AsyncSession, referral_code: str) -> User:
    code = (referral_code or "").strip()
    if not code:
        raise InvalidReferralCode()
    referrer = await session.scalar(select(User).where(func.upper(User.referral_code) == code.upper()))
    if referrer is None:
        raise InvalidReferralCode()
    return referrer


async def resolve_upline(session: AsyncSession, referral_code: str) -> tuple[User, list[int]]:
    """Return the direct referrer for ``referral_code`` and the upline a new user inherits.

    The chain is computed once at signup and stored on the user; it is never
    recomputed when an ancestor's own chain changes later.
    """
    referrer = await find_referrer(session, referral_code)
    return referrer, build_upline(referrer.id, referrer.upline)
