from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from apps.raffles.core.commissions import (
    COMMISSION_RATES,
    calculate_commissions,
    compute_pack_rewards,
    get_commission_stats,
    get_pack_rewards,
    mark_commission_paid,
    record_commissions,
    revert_commission,
    rate_for_level,
)
from apps.raffles.core.errors import InvalidStateTransition
from apps.raffles.core.tickets import PackInfo, issue_tickets
from apps.raffles.db.models import Commission, CommissionStatus


def test_commission_schedule_is_pinned() -> None:
    assert COMMISSION_RATES == {1: Decimal("0.20"), 2: Decimal("0.10"), 3: Decimal("0.05")}


@pytest.mark.parametrize("depth", [0, 1, 2, 3, 4, 6])
def test_one_pending_commission_per_present_level(depth: int) -> None:
    upline = [100 + i for i in range(depth)]
    drafts = calculate_commissions(Decimal("100"), 1, upline, raffle_id=7)

    assert len(drafts) == min(depth, 3)
    for level, draft in enumerate(drafts, start=1):
        assert draft.level == level
        assert draft.user_id == upline[level - 1]
        assert draft.status == CommissionStatus.PENDING
        assert draft.amount == Decimal("100") * COMMISSION_RATES[level]
        assert draft.source_user_id == 1
        assert draft.raffle_id == 7


def test_hundred_dollar_sale_pays_20_10_5() -> None:
    drafts = calculate_commissions(Decimal("100"), 9, [11, 12, 13], raffle_id=1)
    assert [(d.amount, d.level, d.user_id) for d in drafts] == [
        (Decimal("20.00"), 1, 11),
        (Decimal("10.00"), 2, 12),
        (Decimal("5.00"), 3, 13),
    ]


def test_amounts_round_to_cents() -> None:
    drafts = calculate_commissions(Decimal("3.33"), 9, [11, 12, 13], raffle_id=1)
    assert [d.amount for d in drafts] == [Decimal("0.67"), Decimal("0.33"), Decimal("0.17")]


@pytest.mark.parametrize("level", [0, 4, -1])
def test_invalid_levels_are_rejected(level: int) -> None:
    with pytest.raises(ValueError):
        rate_for_level(level)


@pytest.mark.asyncio
async def test_record_commissions_is_idempotent_per_source_key(session, make_user, make_raffle):
    top = await make_user("Top")
    mid = await make_user("Mid", referral_code=top.referral_code)
    buyer = await make_user("Buyer", referral_code=mid.referral_code)
    raffle = await make_raffle()

    first = await record_commissions(
        session,
        amount=Decimal("50"),
        source_user_id=buyer.id,
        upline=buyer.upline,
        raffle_id=raffle.id,
        source_key="order:1",
    )
    replay = await record_commissions(
        session,
        amount=Decimal("50"),
        source_user_id=buyer.id,
        upline=buyer.upline,
        raffle_id=raffle.id,
        source_key="order:1",
    )

    assert len(first) == 2
    assert replay == []
    rows = (await session.scalars(select(Commission))).all()
    assert len(rows) == 2
    assert {(row.user_id, row.level) for row in rows} == {(mid.id, 1), (top.id, 2)}


@pytest.mark.asyncio
async def test_pay_and_revert_keep_an_audit_trail(session, make_user, make_raffle):
    admin = await make_user("Admin")
    sponsor = await make_user("Sponsor")
    buyer = await make_user("Buyer", referral_code=sponsor.referral_code)
    raffle = await make_raffle()
    [commission] = await record_commissions(
        session,
        amount=Decimal("10"),
        source_user_id=buyer.id,
        upline=buyer.upline,
        raffle_id=raffle.id,
        source_key="order:42",
    )

    paid = await mark_commission_paid(
        session, commission.id, admin_id=admin.id, payment_method="transferencia", payment_notes="dep 123"
    )
    assert paid.status == CommissionStatus.PAID.value
    assert paid.paid_by_admin_id == admin.id
    assert paid.paid_at is not None

    with pytest.raises(InvalidStateTransition):
        await mark_commission_paid(session, commission.id, admin_id=admin.id)

    reverted = await revert_commission(session, commission.id, admin_id=admin.id, reason="wrong account")
    assert reverted.status == CommissionStatus.PENDING.value
    assert reverted.reverted_by_admin_id == admin.id
    assert "wrong account" in reverted.revert_notes

    await mark_commission_paid(session, commission.id, admin_id=admin.id)
    await revert_commission(session, commission.id, admin_id=admin.id, reason="bounced")
    await session.refresh(commission)
    assert commission.revert_notes.count("\n") == 1
    assert "bounced" in commission.revert_notes

    with pytest.raises(InvalidStateTransition):
        await revert_commission(session, commission.id, admin_id=admin.id, reason="again")


@pytest.mark.asyncio
async def test_commission_stats_split_by_status_and_level(session, make_user, make_raffle):
    admin = await make_user("Admin")
    grand = await make_user("Grand")
    parent = await make_user("Parent", referral_code=grand.referral_code)
    buyer = await make_user("Buyer", referral_code=parent.referral_code)
    raffle = await make_raffle()

    await record_commissions(
        session, amount=Decimal("100"), source_user_id=buyer.id, upline=buyer.upline, raffle_id=raffle.id, source_key="a"
    )
    direct = await record_commissions(
        session, amount=Decimal("40"), source_user_id=parent.id, upline=parent.upline, raffle_id=raffle.id, source_key="b"
    )
    await mark_commission_paid(session, direct[0].id, admin_id=admin.id)

    stats = await get_commission_stats(session, grand.id)
    assert stats.count == 2
    assert stats.total == Decimal("18.00")
    assert stats.paid == Decimal("8.00")
    assert stats.pending == Decimal("10.00")
    assert stats.by_level[1] == Decimal("8.00")
    assert stats.by_level[2] == Decimal("10.00")
    assert stats.by_level[3] == Decimal("0")


@pytest.mark.asyncio
async def test_repeated_payment_keeps_earlier_payment_notes(session, make_user, make_raffle):
    admin = await make_user("Admin")
    sponsor = await make_user("Sponsor")
    buyer = await make_user("Buyer", referral_code=sponsor.referral_code)
    raffle = await make_raffle()
    [commission] = await record_commissions(
        session,
        amount=Decimal("50"),
        source_user_id=buyer.id,
        upline=buyer.upline,
        raffle_id=raffle.id,
        source_key="order:7",
    )

    await mark_commission_paid(session, commission.id, admin_id=admin.id, payment_method="transfer", payment_notes="dep 123")
    await revert_commission(session, commission.id, admin_id=admin.id, reason="wrong account")
    repaid = await mark_commission_paid(session, commission.id, admin_id=admin.id, payment_method="cash", payment_notes="dep 456")

    assert repaid.status == CommissionStatus.PAID.value
    assert repaid.payment_method == "cash"
    lines = repaid.payment_notes.splitlines()
    assert len(lines) == 2
    assert "via transfer: dep 123" in lines[0]
    assert "via cash: dep 456" in lines[1]


def _pack_ticket(raffle_id: int, buyer_id: int, *, quantity: int, price: str, bonus: int | None):
    info = {"quantity": quantity, "price": price, "participation_bonus_percent": bonus, "is_fidelity_pack": False}
    return SimpleNamespace(raffle_id=raffle_id, original_user_id=buyer_id, purchased_pack_info=info)


def test_pack_rewards_split_the_bonus_pool_between_buyers() -> None:
    raffles = {
        1: SimpleNamespace(id=1, title="Moto", current_sales=Decimal("200.00")),
        2: SimpleNamespace(id=2, title="TV", current_sales=Decimal("0")),
    }
    tickets = [
        _pack_ticket(1, 10, quantity=10, price="80.00", bonus=10),
        _pack_ticket(1, 10, quantity=10, price="80.00", bonus=10),
        _pack_ticket(1, 20, quantity=10, price="80", bonus=10),
        _pack_ticket(1, 10, quantity=5, price="45.00", bonus=None),
        _pack_ticket(1, 30, quantity=20, price="150.00", bonus=5),
        _pack_ticket(2, 10, quantity=10, price="80.00", bonus=10),
        SimpleNamespace(raffle_id=1, original_user_id=10, purchased_pack_info=None),
    ]

    first = compute_pack_rewards(10, tickets, raffles)
    assert first.total == Decimal("10.00")
    [reward] = first.breakdown
    assert (reward.raffle_id, reward.pack_quantity, reward.buyers, reward.amount) == (1, 10, 2, Decimal("10.00"))

    assert compute_pack_rewards(20, tickets, raffles).total == Decimal("10.00")
    assert compute_pack_rewards(30, tickets, raffles).total == Decimal("10.00")
    assert compute_pack_rewards(40, tickets, raffles).breakdown == []


@pytest.mark.asyncio
async def test_pack_rewards_from_stored_tickets(session, make_user, make_raffle):
    first = await make_user("First")
    second = await make_user("Second")
    raffle = await make_raffle(ticket_price="10.00")
    pack = PackInfo(quantity=2, price=Decimal("15.00"), participation_bonus_percent=10)
    for buyer in (first, second):
        await issue_tickets(
            session,
            raffle_id=raffle.id,
            user_id=buyer.id,
            quantity=2,
            unit_price=Decimal("10.00"),
            total_price=Decimal("15.00"),
            pack=pack,
        )

    rewards = await get_pack_rewards(session, first.id)

    assert rewards.total == Decimal("1.50")
    assert rewards.to_dict()["breakdown"][0]["buyers"] == 2
    assert (await get_pack_rewards(session, 999)).total == Decimal("0")
