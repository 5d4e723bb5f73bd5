from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.commissions import record_commissions
from apps.raffles.core.errors import (
    InvalidStateTransition,
    MissingRejectionReason,
    OrderNotFound,
    PackNotFound,
    RaffleNotFound,
    UserNotFound,
)
from apps.raffles.core.events import track_event
from apps.raffles.core.roulette import has_available_extra_prizes, increment_chances
from apps.raffles.core.tickets import PackInfo, issue_tickets
from apps.raffles.db.models import Commission, PurchaseOrder, PurchaseOrderStatus, Raffle, Ticket, TicketPack, User

logger = logging.getLogger(__name__)

Status = PurchaseOrderStatus

TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    Status.PENDING: frozenset({Status.PAID, Status.REJECTED, Status.CANCELLED}),
    Status.PAID: frozenset({Status.VERIFIED, Status.REJECTED}),
    Status.VERIFIED: frozenset(),
    Status.REJECTED: frozenset(),
    Status.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


@dataclass
class VerificationResult:
    order: PurchaseOrder
    tickets: list[Ticket]
    commissions: list[Commission] = field(default_factory=list)
    chances_granted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": serialize_order(self.order),
            "ticket_numbers": [ticket.ticket_number for ticket in self.tickets],
            "commissions_created": len(self.commissions),
            "chances_granted": self.chances_granted,
        }


def can_transition(current: PurchaseOrderStatus | str, target: PurchaseOrderStatus | str) -> bool:
    return Status(target) in TRANSITIONS[Status(current)]


def ensure_transition(current: PurchaseOrderStatus | str, target: PurchaseOrderStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransition(f"{Status(current).value} -> {Status(target).value}")


def generate_order_code(now: datetime | None = None) -> str:
    now = now or datetime.now(tz=timezone.utc)
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def serialize_order(order: PurchaseOrder) -> dict[str, Any]:
    return {
        "id": order.id,
        "order_code": order.order_code,
        "user_id": order.user_id,
        "raffle_id": order.raffle_id,
        "pack_id": order.pack_id,
        "pack": order.pack_snapshot,
        "quantity": order.quantity,
        "total_price": str(order.total_price),
        "status": order.status,
        "ticket_ids": list(order.ticket_ids or []),
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "verified_at": order.verified_at.isoformat() if order.verified_at else None,
        "rejection_reason": order.rejection_reason,
    }


async def _unique_order_code(session: AsyncSession) -> str:
    while True:
        candidate = generate_order_code()
        exists = await session.scalar(select(PurchaseOrder.id).where(PurchaseOrder.order_code == candidate))
        if not exists:
            return candidate


async def get_order(session: AsyncSession, order_id: int) -> PurchaseOrder:
    order = await session.get(PurchaseOrder, order_id)
    if order is None:
        raise OrderNotFound()
    return order


async def get_order_by_code(session: AsyncSession, order_code: str) -> PurchaseOrder:
    order = await session.scalar(
        select(PurchaseOrder).where(PurchaseOrder.order_code == order_code.strip().upper())
    )
    if order is None:
        raise OrderNotFound()
    return order


async def search_orders(
    session: AsyncSession,
    *,
    code: str | None = None,
    status: PurchaseOrderStatus | None = None,
    user_id: int | None = None,
    limit: int = 50,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(desc(PurchaseOrder.created_at), desc(PurchaseOrder.id)).limit(limit)
    if code:
        stmt = stmt.where(func.upper(PurchaseOrder.order_code).contains(code.strip().upper()))
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == Status(status).value)
    if user_id is not None:
        stmt = stmt.where(PurchaseOrder.user_id == user_id)
    return list((await session.scalars(stmt)).all())


async def _transition(
    session: AsyncSession,
    order: PurchaseOrder,
    target: PurchaseOrderStatus,
    **values: Any,
) -> PurchaseOrder:
    """Move ``order`` to ``target``; the only place an order status is written.

    The write is conditioned on the status the caller observed, so two admins
    acting on the same order cannot both succeed.
    """
    current = Status(order.status)
    ensure_transition(current, target)
    result = await session.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == order.id, PurchaseOrder.status == current.value)
        .values(status=target.value, updated_at=datetime.now(tz=timezone.utc), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateTransition(f"{current.value} -> {target.value} (stale)")
    await session.refresh(order)
    logger.info("Order %s moved %s -> %s", order.order_code, current.value, target.value)
    return order


async def create_order(
    session: AsyncSession,
    *,
    user_id: int,
    raffle_id: int,
    quantity: int | None = None,
    pack_id: int | None = None,
) -> PurchaseOrder:
    if pack_id is None and (quantity is None or quantity <= 0):
        raise ValueError("quantity must be positive")

    raffle = await session.get(Raffle, raffle_id)
    if raffle is None:
        raise RaffleNotFound()
    if await session.get(User, user_id) is None:
        raise UserNotFound()

    pack_snapshot = None
    if pack_id is not None:
        pack = await session.get(TicketPack, pack_id)
        if pack is None or pack.raffle_id != raffle.id:
            raise PackNotFound()
        quantity = pack.quantity
        total_price = Decimal(pack.price)
        pack_snapshot = pack.snapshot()
    else:
        total_price = Decimal(raffle.ticket_price) * quantity

    order = PurchaseOrder(
        order_code=await _unique_order_code(session),
        user_id=user_id,
        raffle_id=raffle.id,
        pack_id=pack_id,
        pack_snapshot=pack_snapshot,
        quantity=quantity,
        total_price=total_price,
        status=Status.PENDING.value,
        ticket_ids=[],
    )
    session.add(order)
    await session.flush()
    await track_event(session, user_id=user_id, name="order_created", props={"order_id": order.id})
    logger.info("Created order %s for %d tickets on raffle %s", order.order_code, quantity, raffle.id)
    return order


async def mark_order_paid(
    session: AsyncSession,
    order_id: int,
    *,
    admin_id: int,
    payment_method: str | None = None,
    payment_notes: str | None = None,
) -> PurchaseOrder:
    order = await get_order(session, order_id)
    await _transition(
        session,
        order,
        Status.PAID,
        paid_at=datetime.now(tz=timezone.utc),
        paid_by_admin_id=admin_id,
        payment_method=payment_method,
        payment_notes=payment_notes,
    )
    await track_event(session, user_id=order.user_id, name="order_paid", props={"order_id": order.id})
    return order


async def reject_order(session: AsyncSession, order_id: int, *, admin_id: int, reason: str) -> PurchaseOrder:
    if not reason or not reason.strip():
        raise MissingRejectionReason()
    order = await get_order(session, order_id)
    await _transition(
        session,
        order,
        Status.REJECTED,
        rejection_reason=reason.strip(),
        rejected_at=datetime.now(tz=timezone.utc),
        rejected_by_admin_id=admin_id,
    )
    await track_event(session, user_id=order.user_id, name="order_rejected", props={"order_id": order.id})
    return order


async def cancel_order(session: AsyncSession, order_id: int, *, user_id: int | None = None) -> PurchaseOrder:
    order = await get_order(session, order_id)
    if user_id is not None and order.user_id != user_id:
        raise OrderNotFound()
    await _transition(session, order, Status.CANCELLED, cancelled_at=datetime.now(tz=timezone.utc))
    await track_event(session, user_id=order.user_id, name="order_cancelled", props={"order_id": order.id})
    return order


async def verify_order(
    session: AsyncSession,
    order_id: int,
    *,
    admin_id: int,
    notes: str | None = None,
) -> VerificationResult:
    """Issue the tickets for a paid order.

    Every write happens in the caller's transaction: the status claim, the
    tickets and raffle counters, ``ticket_ids``, the upline commissions and the
    roulette grant. If any step raises, the caller rolls back and the order is
    still PAID with nothing issued.
    """
    order = await get_order(session, order_id)
    await _transition(
        session,
        order,
        Status.VERIFIED,
        verified_at=datetime.now(tz=timezone.utc),
        verified_by_admin_id=admin_id,
        verification_notes=notes,
    )

    raffle = await session.get(Raffle, order.raffle_id)
    if raffle is None:
        raise RaffleNotFound()
    buyer = await session.get(User, order.user_id)
    if buyer is None:
        raise UserNotFound()

    # Pack terms are frozen on the order at creation.
    pack = PackInfo.from_snapshot(order.pack_snapshot)

    tickets = await issue_tickets(
        session,
        raffle_id=raffle.id,
        user_id=buyer.id,
        quantity=order.quantity,
        unit_price=Decimal(raffle.ticket_price),
        total_price=Decimal(order.total_price),
        pack=pack,
        order_id=order.id,
    )
    order.ticket_ids = [ticket.id for ticket in tickets]

    commissions = await record_commissions(
        session,
        amount=Decimal(order.total_price),
        source_user_id=buyer.id,
        upline=buyer.upline or [],
        raffle_id=raffle.id,
        source_key=f"order:{order.id}",
    )

    chances_granted = 0
    if await has_available_extra_prizes(session, raffle.id):
        await increment_chances(session, buyer.id, raffle.id, order.quantity)
        chances_granted = order.quantity
    else:
        logger.debug("Raffle %s has no extra prizes left; no roulette chances for order %s", raffle.id, order.order_code)

    await session.flush()
    await track_event(
        session,
        user_id=buyer.id,
        name="order_verified",
        props={"order_id": order.id, "tickets": len(tickets), "chances": chances_granted},
    )
    return VerificationResult(order=order, tickets=tickets, commissions=commissions, chances_granted=chances_granted)
