from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from apps.raffles.core.errors import RaffleNotFound, TransferNotAllowed
from apps.raffles.core.tickets import PackInfo, format_ticket_number, has_fidelity_access, issue_tickets, transfer_tickets
from apps.raffles.db.models import Raffle, Ticket, User
from apps.raffles.repositories.raffles import create_raffle
from apps.raffles.repositories.users import register_user


def test_ticket_number_format() -> None:
    assert format_ticket_number("JUAN123", 7) == "JUAN123-7"
    assert format_ticket_number("JUAN123", 7, fidelity=True) == "JUAN123-7F"


@pytest.mark.asyncio
async def test_issue_tickets_numbers_and_counters(session, make_user, make_raffle):
    buyer = await make_user("Juan")
    raffle = await make_raffle(ticket_price="5.00")

    first = await issue_tickets(session, raffle_id=raffle.id, user_id=buyer.id, quantity=3, unit_price=Decimal("5.00"))
    second = await issue_tickets(session, raffle_id=raffle.id, user_id=buyer.id, quantity=2, unit_price=Decimal("5.00"))

    numbers = [t.ticket_number for t in first + second]
    code = buyer.referral_code
    assert numbers == [f"{code}-{n}" for n in range(1, 6)]
    assert all(t.original_user_id == buyer.id and t.user_id == buyer.id for t in first + second)
    assert all(t.transfer_count == 0 for t in first + second)

    await session.refresh(raffle)
    assert raffle.sold_tickets == 5
    assert raffle.current_sales == Decimal("25.00")


@pytest.mark.asyncio
async def test_order_total_overrides_unit_price_for_sales(session, make_user, make_raffle):
    buyer = await make_user("Pack Buyer")
    raffle = await make_raffle(ticket_price="5.00")
    pack = PackInfo(quantity=10, price=Decimal("40.00"), participation_bonus_percent=10, is_fidelity_pack=True)

    tickets = await issue_tickets(
        session,
        raffle_id=raffle.id,
        user_id=buyer.id,
        quantity=10,
        unit_price=Decimal("5.00"),
        total_price=Decimal("40.00"),
        pack=pack,
    )

    assert all(t.ticket_number.endswith("F") for t in tickets)
    assert tickets[0].purchased_pack_info == pack.to_dict()
    assert PackInfo.from_snapshot(tickets[0].purchased_pack_info) == pack
    await session.refresh(raffle)
    assert raffle.current_sales == Decimal("40.00")
    assert await has_fidelity_access(session, raffle_id=raffle.id, user_id=buyer.id)


@pytest.mark.asyncio
async def test_issue_tickets_for_missing_raffle(session, make_user):
    buyer = await make_user("Nobody")
    with pytest.raises(RaffleNotFound):
        await issue_tickets(session, raffle_id=404, user_id=buyer.id, quantity=1, unit_price=Decimal("1"))
    assert (await session.scalars(select(Ticket))).all() == []


@pytest.mark.asyncio
async def test_issue_tickets_rejects_non_positive_quantity(session, make_user, make_raffle):
    buyer = await make_user("Zero")
    raffle = await make_raffle()
    with pytest.raises(ValueError):
        await issue_tickets(session, raffle_id=raffle.id, user_id=buyer.id, quantity=0, unit_price=Decimal("1"))


@pytest.mark.asyncio
async def test_concurrent_issuance_never_repeats_a_number(database):
    async with database.unit_of_work() as setup:
        buyer = await register_user(setup, name="Racer", email="racer@example.com")
        raffle = await create_raffle(setup, title="Race", ticket_price=Decimal("2.00"))

    async def buy_one() -> str:
        async with database.unit_of_work() as db:
            [ticket] = await issue_tickets(db, raffle_id=raffle.id, user_id=buyer.id, quantity=1, unit_price=Decimal("2.00"))
            return ticket.ticket_number

    attempts = 12
    numbers = await asyncio.gather(*(buy_one() for _ in range(attempts)))

    assert len(set(numbers)) == attempts
    async with database.session() as check:
        stored = await check.get(Raffle, raffle.id)
        assert stored.sold_tickets == attempts
        assert stored.current_sales == Decimal("24.00")


async def _tickets_for(session, user: User, raffle, quantity: int = 2) -> list[Ticket]:
    return await issue_tickets(session, raffle_id=raffle.id, user_id=user.id, quantity=quantity, unit_price=Decimal("1"))


@pytest.mark.asyncio
async def test_transfer_moves_holder_and_keeps_original_buyer(session, make_user, make_raffle):
    sender = await make_user("Sender")
    recipient = await make_user("Recipient")
    raffle = await make_raffle()
    tickets = await _tickets_for(session, sender, raffle)

    result = await transfer_tickets(
        session, sender_id=sender.id, ticket_ids=[t.id for t in tickets], recipient_email=recipient.email.upper()
    )

    assert result.id == recipient.id
    for ticket in tickets:
        await session.refresh(ticket)
        assert ticket.user_id == recipient.id
        assert ticket.original_user_id == sender.id
        assert ticket.transfer_count == 1


@pytest.mark.asyncio
async def test_transfer_is_all_or_nothing(session, make_user, make_raffle):
    sender = await make_user("Sender")
    other = await make_user("Other")
    recipient = await make_user("Recipient")
    raffle = await make_raffle()
    mine = await _tickets_for(session, sender, raffle, quantity=1)
    theirs = await _tickets_for(session, other, raffle, quantity=1)

    with pytest.raises(TransferNotAllowed):
        await transfer_tickets(
            session, sender_id=sender.id, ticket_ids=[mine[0].id, theirs[0].id], recipient_email=recipient.email
        )

    await session.refresh(mine[0])
    assert mine[0].user_id == sender.id
    assert mine[0].transfer_count == 0


@pytest.mark.asyncio
async def test_transfer_limit_and_self_transfer(session, make_user, make_raffle):
    a = await make_user("Ana")
    b = await make_user("Beto")
    raffle = await make_raffle()
    [ticket] = await _tickets_for(session, a, raffle, quantity=1)

    with pytest.raises(TransferNotAllowed):
        await transfer_tickets(session, sender_id=a.id, ticket_ids=[ticket.id], recipient_email=a.email)

    holders = [(a, b), (b, a), (a, b)]
    for sender, receiver in holders:
        await transfer_tickets(session, sender_id=sender.id, ticket_ids=[ticket.id], recipient_email=receiver.email)

    await session.refresh(ticket)
    assert ticket.transfer_count == 3
    assert ticket.user_id == b.id
    with pytest.raises(TransferNotAllowed):
        await transfer_tickets(session, sender_id=b.id, ticket_ids=[ticket.id], recipient_email=a.email)


@pytest.mark.asyncio
async def test_transfer_is_visible_to_later_queries_in_the_same_session(session, make_user, make_raffle):
    sender = await make_user("Sender")
    recipient = await make_user("Recipient")
    raffle = await make_raffle()
    tickets = await _tickets_for(session, sender, raffle, quantity=2)
    moved_id = tickets[0].id

    await transfer_tickets(session, sender_id=sender.id, ticket_ids=[moved_id], recipient_email=recipient.email)

    rows = (await session.scalars(select(Ticket).where(Ticket.raffle_id == raffle.id).order_by(Ticket.id))).all()
    holders = {ticket.id: (ticket.user_id, ticket.transfer_count) for ticket in rows}
    assert holders[moved_id] == (recipient.id, 1)
    assert holders[tickets[1].id] == (sender.id, 0)
