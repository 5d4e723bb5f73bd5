from __future__ import annotations

import pytest
from sqlalchemy import func, select

from apps.raffles.core.errors import EmailAlreadyRegistered, InvalidReferralCode
from apps.raffles.core.upline import build_upline
from apps.raffles.db.models import User
from apps.raffles.repositories.users import register_user


def test_build_upline_prepends_referrer_and_caps_at_three() -> None:
    assert build_upline(1) == [1]
    assert build_upline(1, [2]) == [1, 2]
    assert build_upline(1, [2, 3, 4]) == [1, 2, 3]


@pytest.mark.asyncio
async def test_four_ancestors_yield_an_upline_of_three(session, make_user):
    a = await make_user("Alpha")
    b = await make_user("Bravo", referral_code=a.referral_code)
    c = await make_user("Charlie", referral_code=b.referral_code)
    d = await make_user("Delta", referral_code=c.referral_code)
    e = await make_user("Echo", referral_code=d.referral_code)

    assert a.upline == []
    assert b.upline == [a.id]
    assert d.upline == [c.id, b.id, a.id]
    assert e.upline == [d.id, c.id, b.id]
    assert e.referred_by == d.id


@pytest.mark.asyncio
async def test_upline_is_a_snapshot_taken_at_signup(session, make_user):
    root = await make_user("Root")
    child = await make_user("Child", referral_code=root.referral_code)

    root.upline = [999]
    await session.flush()

    assert child.upline == [root.id]
    grandchild = await make_user("Grandchild", referral_code=child.referral_code)
    assert grandchild.upline == [child.id, root.id]


@pytest.mark.asyncio
async def test_unknown_referral_code_fails_signup(session):
    with pytest.raises(InvalidReferralCode):
        await register_user(session, name="Ghost", email="ghost@example.com", referral_code="NOPE123")
    total = await session.scalar(select(func.count(User.id)))
    assert total == 0


@pytest.mark.asyncio
async def test_referral_code_lookup_ignores_case(session, make_user):
    sponsor = await make_user("Sponsor")
    user = await register_user(session, name="Lower", email="lower@example.com", referral_code=sponsor.referral_code.lower())
    assert user.referred_by == sponsor.id


@pytest.mark.asyncio
async def test_referral_code_uses_name_prefix(session, make_user):
    user = await make_user("maria lopez")
    assert user.referral_code.startswith("MARI")
    assert len(user.referral_code) == 7


@pytest.mark.asyncio
async def test_email_must_be_unique_ignoring_case(session):
    await register_user(session, name="One", email="same@example.com")
    with pytest.raises(EmailAlreadyRegistered):
        await register_user(session, name="Two", email="SAME@example.com")
