from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import RedemptionMismatch
from apps.raffles.core.events import track_event
from apps.raffles.db.models import ExtraPrize, UserPrize
from apps.raffles.infra.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

CODE_ALPHABET = string.ascii_uppercase + string.digits


def _generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(settings.prize_code_length))


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


async def _unique_code(session: AsyncSession) -> str:
    while True:
        candidate = _generate_code()
        exists = await session.scalar(select(UserPrize.id).where(UserPrize.code == candidate))
        if not exists:
            return candidate


async def award_prize(session: AsyncSession, *, user_id: int, prize: ExtraPrize) -> UserPrize:
    user_prize = UserPrize(
        user_id=user_id,
        prize_id=prize.id,
        prize_name=prize.name,
        raffle_id=prize.raffle_id,
        code=await _unique_code(session),
        date_won=datetime.now(tz=timezone.utc),
        redeemed=False,
    )
    session.add(user_prize)
    await session.flush()
    await track_event(session, user_id=user_id, name="prize_won", props={"user_prize_id": user_prize.id})
    logger.info("User %s won prize %s on raffle %s", user_id, prize.id, prize.raffle_id)
    return user_prize


async def redeem_prize(session: AsyncSession, user_prize_id: int, code: str, *, admin_id: int) -> UserPrize:
    """Mark a won prize as handed over.

    The write only lands when the record exists, is still unredeemed and the
    code matches, all checked by the store in one statement. Every failure
    raises the same ``RedemptionMismatch``.
    """
    normalized = normalize_code(code)
    if not normalized:
        raise RedemptionMismatch()
    result = await session.execute(
        update(UserPrize)
        .where(
            UserPrize.id == user_prize_id,
            UserPrize.redeemed.is_(False),
            UserPrize.code == normalized,
        )
        .values(
            redeemed=True,
            redeemed_date=datetime.now(tz=timezone.utc),
            redeemed_by_admin_id=admin_id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Rejected prize redemption attempt by admin %s", admin_id)
        raise RedemptionMismatch()

    user_prize = await session.get(UserPrize, user_prize_id)
    await session.refresh(user_prize)
    await track_event(session, user_id=user_prize.user_id, name="prize_redeemed", props={"user_prize_id": user_prize.id})
    logger.info("Prize %s redeemed by admin %s", user_prize.id, admin_id)
    return user_prize


async def list_unredeemed(session: AsyncSession, *, raffle_id: int | None = None) -> list[UserPrize]:
    stmt = select(UserPrize).where(UserPrize.redeemed.is_(False)).order_by(UserPrize.date_won)
    if raffle_id is not None:
        stmt = stmt.where(UserPrize.raffle_id == raffle_id)
    return list((await session.scalars(stmt)).all())
