from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.util import identity_key

from apps.raffles.core.errors import RaffleNotFound, TransferNotAllowed, UserNotFound
from apps.raffles.core.events import track_event
from apps.raffles.db.models import FidelityAccess, Raffle, Ticket, User
from apps.raffles.infra.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

FIDELITY_SUFFIX = "F"


@dataclass(frozen=True)
class PackInfo:
    quantity: int
    price: Decimal
    participation_bonus_percent: int | None = None
    is_fidelity_pack: bool = False

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None) -> "PackInfo | None":
        if not data:
            return None
        return cls(
            quantity=int(data["quantity"]),
            price=Decimal(str(data["price"])),
            participation_bonus_percent=data.get("participation_bonus_percent"),
            is_fidelity_pack=bool(data.get("is_fidelity_pack", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "quantity": self.quantity,
            "price": str(self.price),
            "participation_bonus_percent": self.participation_bonus_percent,
            "is_fidelity_pack": self.is_fidelity_pack,
        }


def format_ticket_number(referral_code: str, sequence: int, *, fidelity: bool = False) -> str:
    number = f"{referral_code}-{sequence}"
    return f"{number}{FIDELITY_SUFFIX}" if fidelity else number


async def _reserve_sequence(session: AsyncSession, raffle_id: int, quantity: int, amount: Decimal) -> range:
    # A single UPDATE ... RETURNING both bumps the aggregates and reserves the
    # block of sequence numbers, so two purchases can never share a suffix.
    stmt = (
        update(Raffle)
        .where(Raffle.id == raffle_id)
        .values(
            sold_tickets=Raffle.sold_tickets + quantity,
            current_sales=Raffle.current_sales + amount,
        )
        .returning(Raffle.sold_tickets)
        .execution_options(synchronize_session=False)
    )
    last = await session.scalar(stmt)
    if last is None:
        raise RaffleNotFound()
    loaded = session.identity_map.get(identity_key(Raffle, raffle_id))
    if loaded is not None:
        session.expire(loaded, ["sold_tickets", "current_sales"])
    return range(last - quantity + 1, last + 1)


async def issue_tickets(
    session: AsyncSession,
    *,
    raffle_id: int,
    user_id: int,
    quantity: int,
    unit_price: Decimal,
    total_price: Decimal | None = None,
    pack: PackInfo | None = None,
    order_id: int | None = None,
) -> list[Ticket]:
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    buyer = await session.get(User, user_id)
    if buyer is None:
        raise UserNotFound()

    amount = Decimal(total_price) if total_price is not None else Decimal(unit_price) * quantity
    sequence = await _reserve_sequence(session, raffle_id, quantity, amount)

    fidelity = bool(pack and pack.is_fidelity_pack)
    pack_info = pack.to_dict() if pack else None
    purchase_date = datetime.now(tz=timezone.utc)
    tickets = [
        Ticket(
            raffle_id=raffle_id,
            user_id=buyer.id,
            original_user_id=buyer.id,
            order_id=order_id,
            ticket_number=format_ticket_number(buyer.referral_code, number, fidelity=fidelity),
            transfer_count=0,
            purchased_pack_info=pack_info,
            purchase_date=purchase_date,
        )
        for number in sequence
    ]
    session.add_all(tickets)
    await session.flush()

    if fidelity:
        await grant_fidelity_access(session, raffle_id=raffle_id, user_id=buyer.id)

    logger.info(
        "Issued %d tickets (%s..%s) on raffle %s",
        quantity,
        tickets[0].ticket_number,
        tickets[-1].ticket_number,
        raffle_id,
    )
    return tickets


async def grant_fidelity_access(session: AsyncSession, *, raffle_id: int, user_id: int) -> bool:
    existing = await session.scalar(
        select(FidelityAccess.id).where(FidelityAccess.raffle_id == raffle_id, FidelityAccess.user_id == user_id)
    )
    if existing is not None:
        return False
    session.add(FidelityAccess(raffle_id=raffle_id, user_id=user_id))
    await session.flush()
    await track_event(session, user_id=user_id, name="fidelity_access_granted", props={"raffle_id": raffle_id})
    return True


async def has_fidelity_access(session: AsyncSession, *, raffle_id: int, user_id: int) -> bool:
    found = await session.scalar(
        select(FidelityAccess.id).where(FidelityAccess.raffle_id == raffle_id, FidelityAccess.user_id == user_id)
    )
    return found is not None


async def transfer_tickets(
    session: AsyncSession,
    *,
    sender_id: int,
    ticket_ids: Sequence[int],
    recipient_email: str,
) -> User:
    """Hand tickets over to another user; either every ticket moves or none does."""
    ids = list(dict.fromkeys(ticket_ids))
    if not ids:
        raise TransferNotAllowed()
    recipient = await session.scalar(select(User).where(func.lower(User.email) == recipient_email.strip().lower()))
    if recipient is None:
        raise UserNotFound()
    if recipient.id == sender_id:
        raise TransferNotAllowed("cannot transfer tickets to yourself")

    max_transfers = settings.max_ticket_transfers
    eligible = await session.scalar(
        select(func.count(Ticket.id)).where(
            Ticket.id.in_(ids),
            Ticket.user_id == sender_id,
            Ticket.transfer_count < max_transfers,
        )
    )
    if eligible != len(ids):
        raise TransferNotAllowed()

    result = await session.execute(
        update(Ticket)
        .where(
            Ticket.id.in_(ids),
            Ticket.user_id == sender_id,
            Ticket.transfer_count < max_transfers,
        )
        .values(user_id=recipient.id, transfer_count=Ticket.transfer_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(ids):
        # Lost a race with another transfer; the caller's rollback undoes the
        # rows that did match.
        raise TransferNotAllowed()

    # The bulk update bypasses the identity map; drop the stale holder fields
    # of any ticket this session already loaded.
    for ticket_id in ids:
        loaded = session.identity_map.get(identity_key(Ticket, ticket_id))
        if loaded is not None:
            session.expire(loaded, ["user_id", "transfer_count"])

    await track_event(
        session,
        user_id=recipient.id,
        name="tickets_transferred",
        props={"from_user_id": sender_id, "count": len(ids)},
    )
    logger.info("Transferred %d tickets from user %s to user %s", len(ids), sender_id, recipient.id)
    return recipient
