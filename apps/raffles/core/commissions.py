from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.errors import CommissionNotFound, InvalidStateTransition
from apps.raffles.core.events import track_event
from apps.raffles.core.tickets import PackInfo
from apps.raffles.core.upline import UPLINE_DEPTH
from apps.raffles.db.models import Commission, CommissionStatus, Raffle, Ticket

logger = logging.getLogger(__name__)

# The one commission schedule used by every purchase path.
COMMISSION_RATES: dict[int, Decimal] = {
    1: Decimal("0.20"),
    2: Decimal("0.10"),
    3: Decimal("0.05"),
}

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionDraft:
    user_id: int
    source_user_id: int
    raffle_id: int
    level: int
    amount: Decimal
    status: CommissionStatus = CommissionStatus.PENDING


@dataclass
class CommissionStats:
    total: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    count: int = 0
    by_level: dict[int, Decimal] = field(default_factory=lambda: {level: Decimal("0") for level in COMMISSION_RATES})

    def to_dict(self) -> dict:
        return {
            "total": str(self.total),
            "pending": str(self.pending),
            "paid": str(self.paid),
            "count": self.count,
            "by_level": {str(level): str(value) for level, value in self.by_level.items()},
        }


def rate_for_level(level: int) -> Decimal:
    if level not in COMMISSION_RATES:
        raise ValueError(f"commission level must be between 1 and {UPLINE_DEPTH}")
    return COMMISSION_RATES[level]


def commission_amount(amount: Decimal, level: int) -> Decimal:
    return (Decimal(amount) * rate_for_level(level)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_commissions(
    amount: Decimal,
    source_user_id: int,
    upline: Sequence[int],
    raffle_id: int,
) -> list[CommissionDraft]:
    if Decimal(amount) < 0:
        raise ValueError("amount must not be negative")
    drafts: list[CommissionDraft] = []
    for level, beneficiary_id in enumerate(list(upline)[:UPLINE_DEPTH], start=1):
        if beneficiary_id is None:
            continue
        drafts.append(
            CommissionDraft(
                user_id=beneficiary_id,
                source_user_id=source_user_id,
                raffle_id=raffle_id,
                level=level,
                amount=commission_amount(amount, level),
            )
        )
    return drafts


async def record_commissions(
    session: AsyncSession,
    *,
    amount: Decimal,
    source_user_id: int,
    upline: Sequence[int],
    raffle_id: int,
    source_key: str,
) -> list[Commission]:
    """Persist the commission set for one sale, at most once per ``source_key``.

    A replay with a key that was already used returns an empty list and writes
    nothing. The unique ``(source_key, level)`` constraint backs this up when two
    sessions race past the existence check.
    """
    existing = await session.scalar(select(Commission.id).where(Commission.source_key == source_key).limit(1))
    if existing is not None:
        logger.info("Commissions for %s already recorded; skipping", source_key)
        return []

    created: list[Commission] = []
    for draft in calculate_commissions(amount, source_user_id, upline, raffle_id):
        commission = Commission(
            user_id=draft.user_id,
            source_user_id=draft.source_user_id,
            raffle_id=draft.raffle_id,
            source_key=source_key,
            level=draft.level,
            amount=draft.amount,
            status=draft.status.value,
        )
        session.add(commission)
        created.append(commission)
    if not created:
        return created

    await session.flush()
    for commission in created:
        await track_event(
            session,
            user_id=commission.user_id,
            name="commission_created",
            props={"commission_id": commission.id, "level": commission.level, "amount": str(commission.amount)},
        )
    logger.info("Recorded %d commissions for %s", len(created), source_key)
    return created


async def get_commission(session: AsyncSession, commission_id: int) -> Commission:
    commission = await session.get(Commission, commission_id)
    if commission is None:
        raise CommissionNotFound()
    return commission


def _append_note(existing: str | None, note: str) -> str:
    stamp = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
    line = f"[{stamp}] {note}"
    return f"{existing}\n{line}" if existing else line


def _payment_entry(admin_id: int, method: str | None, notes: str | None) -> str:
    entry = f"paid by admin {admin_id}"
    if method:
        entry += f" via {method}"
    if notes:
        entry += f": {notes}"
    return entry


async def _conditional_update(session: AsyncSession, commission: Commission, expected: CommissionStatus, values: dict) -> None:
    result = await session.execute(
        update(Commission)
        .where(Commission.id == commission.id, Commission.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateTransition()
    await session.refresh(commission)


async def mark_commission_paid(
    session: AsyncSession,
    commission_id: int,
    *,
    admin_id: int,
    payment_method: str | None = None,
    payment_notes: str | None = None,
) -> Commission:
    commission = await get_commission(session, commission_id)
    if commission.status != CommissionStatus.PENDING.value:
        raise InvalidStateTransition()
    await _conditional_update(
        session,
        commission,
        CommissionStatus.PENDING,
        {
            "status": CommissionStatus.PAID.value,
            "paid_at": datetime.now(tz=timezone.utc),
            "paid_by_admin_id": admin_id,
            "payment_method": payment_method,
            "payment_notes": _append_note(commission.payment_notes, _payment_entry(admin_id, payment_method, payment_notes)),
        },
    )
    await track_event(session, user_id=commission.user_id, name="commission_paid", props={"commission_id": commission.id})
    logger.info("Commission %s marked as paid by admin %s", commission.id, admin_id)
    return commission


async def revert_commission(
    session: AsyncSession,
    commission_id: int,
    *,
    admin_id: int,
    reason: str,
) -> Commission:
    if not reason or not reason.strip():
        raise ValueError("a reason is required to revert a commission")
    commission = await get_commission(session, commission_id)
    if commission.status != CommissionStatus.PAID.value:
        raise InvalidStateTransition()
    await _conditional_update(
        session,
        commission,
        CommissionStatus.PAID,
        {
            "status": CommissionStatus.PENDING.value,
            "reverted_at": datetime.now(tz=timezone.utc),
            "reverted_by_admin_id": admin_id,
            "revert_notes": _append_note(commission.revert_notes, reason.strip()),
        },
    )
    await track_event(session, user_id=commission.user_id, name="commission_reverted", props={"commission_id": commission.id})
    logger.info("Commission %s reverted to pending by admin %s", commission.id, admin_id)
    return commission


def summarize_commissions(commissions: Iterable[Commission]) -> CommissionStats:
    stats = CommissionStats()
    for commission in commissions:
        amount = Decimal(commission.amount)
        stats.total += amount
        stats.count += 1
        if commission.status == CommissionStatus.PAID.value:
            stats.paid += amount
        else:
            stats.pending += amount
        if commission.level in stats.by_level:
            stats.by_level[commission.level] += amount
    return stats


async def get_commission_stats(session: AsyncSession, user_id: int) -> CommissionStats:
    rows = (await session.scalars(select(Commission).where(Commission.user_id == user_id))).all()
    return summarize_commissions(rows)


@dataclass(frozen=True)
class PackReward:
    raffle_id: int
    raffle_title: str
    pack_quantity: int
    pack_price: Decimal
    bonus_percent: int
    buyers: int
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "raffle_id": self.raffle_id,
            "raffle_title": self.raffle_title,
            "pack_quantity": self.pack_quantity,
            "pack_price": str(self.pack_price),
            "bonus_percent": self.bonus_percent,
            "buyers": self.buyers,
            "amount": str(self.amount),
        }


@dataclass
class PackRewards:
    total: Decimal = Decimal("0")
    breakdown: list[PackReward] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"total": str(self.total), "breakdown": [reward.to_dict() for reward in self.breakdown]}


def _pack_key(pack: PackInfo) -> tuple[int, Decimal]:
    return pack.quantity, pack.price.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_pack_rewards(user_id: int, tickets: Iterable[Ticket], raffles: Mapping[int, Raffle]) -> PackRewards:
    """Participation bonus owed to ``user_id`` for the bonus packs they bought.

    Every pack with a participation bonus funds a pool of
    ``current_sales * bonus%`` of its raffle, split evenly between the distinct
    buyers of that pack (same quantity and price). Raffles without sales pay
    nothing.
    """
    buyers: dict[tuple[int, int, Decimal], set[int]] = {}
    packs: dict[tuple[int, int, Decimal], PackInfo] = {}
    for ticket in tickets:
        pack = PackInfo.from_snapshot(ticket.purchased_pack_info)
        if pack is None or not pack.participation_bonus_percent:
            continue
        key = (ticket.raffle_id, *_pack_key(pack))
        buyers.setdefault(key, set()).add(ticket.original_user_id)
        packs.setdefault(key, pack)

    rewards = PackRewards()
    for key in sorted(buyers):
        pack_buyers = buyers[key]
        if user_id not in pack_buyers:
            continue
        raffle = raffles.get(key[0])
        if raffle is None or not raffle.current_sales:
            continue
        pack = packs[key]
        pool = Decimal(raffle.current_sales) * Decimal(pack.participation_bonus_percent) / Decimal(100)
        share = (pool / len(pack_buyers)).quantize(CENT, rounding=ROUND_HALF_UP)
        rewards.breakdown.append(
            PackReward(
                raffle_id=raffle.id,
                raffle_title=raffle.title,
                pack_quantity=key[1],
                pack_price=key[2],
                bonus_percent=pack.participation_bonus_percent,
                buyers=len(pack_buyers),
                amount=share,
            )
        )
        rewards.total += share
    return rewards


async def get_pack_rewards(session: AsyncSession, user_id: int) -> PackRewards:
    raffle_ids = (
        await session.scalars(select(Ticket.raffle_id).where(Ticket.original_user_id == user_id).distinct())
    ).all()
    if not raffle_ids:
        return PackRewards()
    tickets = (await session.scalars(select(Ticket).where(Ticket.raffle_id.in_(raffle_ids)))).all()
    raffles = (await session.scalars(select(Raffle).where(Raffle.id.in_(raffle_ids)))).all()
    return compute_pack_rewards(user_id, tickets, {raffle.id: raffle for raffle in raffles})
