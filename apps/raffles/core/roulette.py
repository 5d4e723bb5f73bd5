from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.util import identity_key

from apps.raffles.core.errors import InsufficientChances, NoPrizesAvailable, RaffleNotFound
from apps.raffles.core.prizes import award_prize
from apps.raffles.db.models import ExtraPrize, Raffle, RouletteChance, UserPrize
from apps.raffles.infra.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_rng = random.SystemRandom()


@dataclass
class SpinResult:
    won: bool
    chances_left: int
    prize: UserPrize | None = None

    def to_dict(self) -> dict:
        data = {"won": self.won, "chances_left": self.chances_left}
        if self.prize is not None:
            data["prize"] = {
                "id": self.prize.id,
                "prize_id": self.prize.prize_id,
                "name": self.prize.prize_name,
                "code": self.prize.code,
            }
        return data


def _insert_for(session: AsyncSession):
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def has_available_extra_prizes(session: AsyncSession, raffle_id: int) -> bool:
    found = await session.scalar(
        select(ExtraPrize.id).where(ExtraPrize.raffle_id == raffle_id, ExtraPrize.quantity > 0).limit(1)
    )
    return found is not None


async def increment_chances(session: AsyncSession, user_id: int, raffle_id: int, amount: int) -> int:
    """Add ``amount`` spins to the (user, raffle) balance, creating the record on first grant.

    Runs as one upsert so concurrent grants for the same key add up instead of
    overwriting each other.
    """
    if amount <= 0:
        raise ValueError("amount must be positive")
    insert = _insert_for(session)
    stmt = insert(RouletteChance).values(user_id=user_id, raffle_id=raffle_id, chances=amount)
    stmt = stmt.on_conflict_do_update(
        index_elements=[RouletteChance.user_id, RouletteChance.raffle_id],
        set_={"chances": RouletteChance.chances + stmt.excluded.chances, "updated_at": func.now()},
    ).returning(RouletteChance.chances)
    balance = await session.scalar(stmt)
    logger.info("Granted %d roulette chances to user %s on raffle %s (balance %s)", amount, user_id, raffle_id, balance)
    return int(balance)


async def decrement_chances(session: AsyncSession, user_id: int, raffle_id: int) -> int:
    """Consume one spin. The balance never goes below zero."""
    stmt = (
        update(RouletteChance)
        .where(
            RouletteChance.user_id == user_id,
            RouletteChance.raffle_id == raffle_id,
            RouletteChance.chances > 0,
        )
        .values(chances=RouletteChance.chances - 1)
        .returning(RouletteChance.chances)
        .execution_options(synchronize_session=False)
    )
    balance = await session.scalar(stmt)
    if balance is None:
        raise InsufficientChances()
    return int(balance)


async def get_chances(session: AsyncSession, user_id: int, raffle_id: int) -> int:
    balance = await session.scalar(
        select(RouletteChance.chances).where(RouletteChance.user_id == user_id, RouletteChance.raffle_id == raffle_id)
    )
    return int(balance or 0)


async def _take_prize(session: AsyncSession, prize_id: int) -> bool:
    result = await session.execute(
        update(ExtraPrize)
        .where(ExtraPrize.id == prize_id, ExtraPrize.quantity > 0)
        .values(quantity=ExtraPrize.quantity - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    loaded = session.identity_map.get(identity_key(ExtraPrize, prize_id))
    if loaded is not None:
        session.expire(loaded, ["quantity"])
    return True


async def spin(
    session: AsyncSession,
    user_id: int,
    raffle_id: int,
    *,
    rng: random.Random | None = None,
) -> SpinResult:
    rng = rng or _rng
    raffle = await session.get(Raffle, raffle_id)
    if raffle is None:
        raise RaffleNotFound()
    if not await has_available_extra_prizes(session, raffle_id):
        raise NoPrizesAvailable()
    chances_left = await decrement_chances(session, user_id, raffle_id)

    if rng.random() >= settings.roulette_win_probability:
        return SpinResult(won=False, chances_left=chances_left)

    available = (
        await session.scalars(
            select(ExtraPrize).where(ExtraPrize.raffle_id == raffle_id, ExtraPrize.quantity > 0).order_by(ExtraPrize.id)
        )
    ).all()
    candidates = list(available)
    while candidates:
        prize = rng.choice(candidates)
        if await _take_prize(session, prize.id):
            user_prize = await award_prize(session, user_id=user_id, prize=prize)
            return SpinResult(won=True, chances_left=chances_left, prize=user_prize)
        candidates.remove(prize)

    logger.info("Spin by user %s on raffle %s landed on a win with no prizes left", user_id, raffle_id)
    return SpinResult(won=False, chances_left=chances_left)
