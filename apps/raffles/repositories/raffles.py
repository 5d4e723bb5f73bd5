from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import RaffleNotFound
from apps.raffles.db.models import ExtraPrize, Raffle, TicketPack


async def create_raffle(
    session: AsyncSession,
    *,
    title: str,
    ticket_price: Decimal,
    description: str = "",
    prize_info: str = "",
    packs: Iterable[dict[str, Any]] = (),
    extra_prizes: Iterable[dict[str, Any]] = (),
    is_monthly: bool = False,
    is_fidelity: bool = False,
) -> Raffle:
    if Decimal(ticket_price) <= 0:
        raise ValueError("ticket_price must be positive")
    raffle = Raffle(
        title=title,
        description=description,
        prize_info=prize_info,
        ticket_price=Decimal(ticket_price),
        sold_tickets=0,
        current_sales=Decimal("0"),
        is_monthly=is_monthly,
        is_fidelity=is_fidelity,
    )
    session.add(raffle)
    await session.flush()
    for pack in packs:
        await add_ticket_pack(session, raffle.id, **pack)
    for prize in extra_prizes:
        await add_extra_prize(session, raffle.id, **prize)
    return raffle


async def add_ticket_pack(
    session: AsyncSession,
    raffle_id: int,
    *,
    quantity: int,
    price: Decimal,
    participation_bonus_percent: int | None = None,
    is_fidelity_pack: bool = False,
) -> TicketPack:
    if quantity <= 0:
        raise ValueError("pack quantity must be positive")
    pack = TicketPack(
        raffle_id=raffle_id,
        quantity=quantity,
        price=Decimal(price),
        participation_bonus_percent=participation_bonus_percent,
        is_fidelity_pack=is_fidelity_pack,
    )
    session.add(pack)
    await session.flush()
    return pack


async def add_extra_prize(session: AsyncSession, raffle_id: int, *, name: str, quantity: int) -> ExtraPrize:
    if quantity < 0:
        raise ValueError("prize quantity must not be negative")
    prize = ExtraPrize(raffle_id=raffle_id, name=name, quantity=quantity)
    session.add(prize)
    await session.flush()
    return prize


async def get_raffle(session: AsyncSession, raffle_id: int) -> Raffle:
    raffle = await session.get(Raffle, raffle_id)
    if raffle is None:
        raise RaffleNotFound()
    return raffle


async def list_packs(session: AsyncSession, raffle_id: int) -> list[TicketPack]:
    rows = await session.scalars(select(TicketPack).where(TicketPack.raffle_id == raffle_id).order_by(TicketPack.quantity))
    return list(rows)


async def list_extra_prizes(session: AsyncSession, raffle_id: int) -> list[ExtraPrize]:
    rows = await session.scalars(select(ExtraPrize).where(ExtraPrize.raffle_id == raffle_id).order_by(ExtraPrize.id))
    return list(rows)
