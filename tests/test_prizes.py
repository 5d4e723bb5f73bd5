from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from apps.raffles.core.errors import RedemptionMismatch
from apps.raffles.core.prizes import award_prize, list_unredeemed, normalize_code, redeem_prize
from apps.raffles.db.models import ExtraPrize, UserPrize, UserRole
from apps.raffles.repositories.raffles import create_raffle
from apps.raffles.repositories.users import register_user


def test_normalize_code() -> None:
    assert normalize_code("  ab12cd ") == "AB12CD"
    assert normalize_code(None) == ""


async def _won_prize(session, make_user, make_raffle):
    winner = await make_user("Winner")
    admin = await make_user("Admin", role=UserRole.ADMIN)
    raffle = await make_raffle(extra_prizes=[{"name": "Headphones", "quantity": 1}])
    prize = await session.scalar(select(ExtraPrize).where(ExtraPrize.raffle_id == raffle.id))
    user_prize = await award_prize(session, user_id=winner.id, prize=prize)
    return user_prize, admin


@pytest.mark.asyncio
async def test_redeem_once(session, make_user, make_raffle):
    user_prize, admin = await _won_prize(session, make_user, make_raffle)
    assert [p.id for p in await list_unredeemed(session)] == [user_prize.id]

    redeemed = await redeem_prize(session, user_prize.id, user_prize.code, admin_id=admin.id)

    assert redeemed.redeemed is True
    assert redeemed.redeemed_by_admin_id == admin.id
    assert redeemed.redeemed_date is not None
    assert await list_unredeemed(session) == []

    with pytest.raises(RedemptionMismatch):
        await redeem_prize(session, user_prize.id, user_prize.code, admin_id=admin.id)


@pytest.mark.asyncio
async def test_redeem_accepts_lowercase_code(session, make_user, make_raffle):
    user_prize, admin = await _won_prize(session, make_user, make_raffle)
    redeemed = await redeem_prize(session, user_prize.id, f" {user_prize.code.lower()} ", admin_id=admin.id)
    assert redeemed.redeemed is True


@pytest.mark.asyncio
async def test_every_failure_looks_the_same(session, make_user, make_raffle):
    user_prize, admin = await _won_prize(session, make_user, make_raffle)

    with pytest.raises(RedemptionMismatch) as wrong_code:
        await redeem_prize(session, user_prize.id, "WRONG000", admin_id=admin.id)
    with pytest.raises(RedemptionMismatch) as missing:
        await redeem_prize(session, user_prize.id + 100, user_prize.code, admin_id=admin.id)
    with pytest.raises(RedemptionMismatch):
        await redeem_prize(session, user_prize.id, "", admin_id=admin.id)

    assert str(wrong_code.value) == str(missing.value)
    await session.refresh(user_prize)
    assert user_prize.redeemed is False


@pytest.mark.asyncio
async def test_concurrent_redemptions_succeed_once(database):
    async with database.unit_of_work() as db:
        winner = await register_user(db, name="Winner", email="winner@example.com")
        raffle = await create_raffle(
            db, title="Prizes", ticket_price=Decimal("5.00"), extra_prizes=[{"name": "Bike", "quantity": 1}]
        )
        prize = await db.scalar(select(ExtraPrize).where(ExtraPrize.raffle_id == raffle.id))
        user_prize = await award_prize(db, user_id=winner.id, prize=prize)
        admins = [
            await register_user(db, name=f"Admin {n}", email=f"admin{n}@example.com", role=UserRole.ADMIN)
            for n in range(5)
        ]

    async def redeem(admin_id: int) -> UserPrize:
        async with database.unit_of_work() as db:
            return await redeem_prize(db, user_prize.id, user_prize.code, admin_id=admin_id)

    outcomes = await asyncio.gather(*(redeem(admin.id) for admin in admins), return_exceptions=True)

    winners = [o for o in outcomes if isinstance(o, UserPrize)]
    assert len(winners) == 1
    assert sum(isinstance(o, RedemptionMismatch) for o in outcomes) == len(admins) - 1
    async with database.session() as check:
        stored = await check.get(UserPrize, user_prize.id)
        assert stored.redeemed is True
        assert stored.redeemed_by_admin_id == winners[0].redeemed_by_admin_id
