from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.raffles.core.commissions import CommissionStats, summarize_commissions
from apps.raffles.core.errors import UserNotFound
from apps.raffles.db.models import Commission, Raffle, Ticket, User


@dataclass
class NetworkStats:
    user_id: int
    direct_referral_ids: list[int]
    downline_ids: list[int]
    direct_sales: Decimal = Decimal("0")
    network_sales: Decimal = Decimal("0")
    network_tickets: int = 0
    commissions: CommissionStats = field(default_factory=CommissionStats)

    @property
    def direct_referrals_count(self) -> int:
        return len(self.direct_referral_ids)

    @property
    def total_network_size(self) -> int:
        return len(self.downline_ids)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "direct_referrals_count": self.direct_referrals_count,
            "total_network_size": self.total_network_size,
            "direct_referral_ids": self.direct_referral_ids,
            "direct_sales": str(self.direct_sales),
            "network_sales": str(self.network_sales),
            "network_tickets": self.network_tickets,
            "commissions": self.commissions.to_dict(),
        }


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: int
    name: str
    referral_code: str
    direct_sales: Decimal
    network_sales: Decimal

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "referral_code": self.referral_code,
            "direct_sales": str(self.direct_sales),
            "network_sales": str(self.network_sales),
        }


def build_children_index(users: Iterable[User]) -> dict[int, list[int]]:
    children: dict[int, list[int]] = defaultdict(list)
    for user in users:
        if user.referred_by is not None:
            children[user.referred_by].append(user.id)
    return children


def collect_downline(user_id: int, children: Mapping[int, Sequence[int]]) -> list[int]:
    """Breadth-first walk of everyone transitively referred by ``user_id``.

    Depth is unbounded (unlike the three-level upline snapshot). Each user is
    counted once even if the graph is not a tree, and cycles terminate.
    """
    seen: set[int] = {user_id}
    ordered: list[int] = []
    queue: deque[int] = deque(children.get(user_id, ()))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        ordered.append(current)
        queue.extend(children.get(current, ()))
    return ordered


@dataclass
class _TicketTotals:
    bought_value: dict[int, Decimal] = field(default_factory=lambda: defaultdict(Decimal))
    bought_count: dict[int, int] = field(default_factory=lambda: defaultdict(int))
    resold_value: dict[int, Decimal] = field(default_factory=lambda: defaultdict(Decimal))


def _ticket_totals(tickets: Iterable[Ticket], prices: Mapping[int, Decimal]) -> _TicketTotals:
    totals = _TicketTotals()
    for ticket in tickets:
        value = prices.get(ticket.raffle_id, Decimal("0"))
        totals.bought_value[ticket.original_user_id] += value
        totals.bought_count[ticket.original_user_id] += 1
        if ticket.user_id != ticket.original_user_id:
            totals.resold_value[ticket.original_user_id] += value
    return totals


def _sales_for(user_id: int, member_ids: Iterable[int], totals: _TicketTotals) -> Decimal:
    # Tickets bought by the members count, and so do the user's own tickets
    # that now sit with someone else (resold or transferred).
    total = totals.resold_value.get(user_id, Decimal("0"))
    for member_id in member_ids:
        total += totals.bought_value.get(member_id, Decimal("0"))
    return total


def compute_network_stats(
    user_id: int,
    users: Sequence[User],
    tickets: Sequence[Ticket],
    commissions: Sequence[Commission],
    prices: Mapping[int, Decimal],
) -> NetworkStats:
    children = build_children_index(users)
    direct_ids = list(children.get(user_id, ()))
    downline_ids = collect_downline(user_id, children)
    totals = _ticket_totals(tickets, prices)
    return NetworkStats(
        user_id=user_id,
        direct_referral_ids=direct_ids,
        downline_ids=downline_ids,
        direct_sales=_sales_for(user_id, direct_ids, totals),
        network_sales=_sales_for(user_id, downline_ids, totals),
        network_tickets=sum(totals.bought_count.get(member_id, 0) for member_id in downline_ids),
        commissions=summarize_commissions(c for c in commissions if c.user_id == user_id),
    )


def compute_leaderboard(
    users: Sequence[User],
    tickets: Sequence[Ticket],
    prices: Mapping[int, Decimal],
    *,
    by: str = "direct_sales",
    limit: int = 10,
) -> list[LeaderboardEntry]:
    if by not in ("direct_sales", "network_sales"):
        raise ValueError("by must be 'direct_sales' or 'network_sales'")
    children = build_children_index(users)
    totals = _ticket_totals(tickets, prices)
    entries = []
    for user in users:
        direct = children.get(user.id, ())
        downline = collect_downline(user.id, children)
        entries.append(
            LeaderboardEntry(
                user_id=user.id,
                name=user.name,
                referral_code=user.referral_code,
                direct_sales=_sales_for(user.id, direct, totals),
                network_sales=_sales_for(user.id, downline, totals),
            )
        )
    ranked = [entry for entry in entries if getattr(entry, by) > 0]
    ranked.sort(key=lambda entry: (-getattr(entry, by), entry.user_id))
    return ranked[:limit]


async def _load_prices(session: AsyncSession) -> dict[int, Decimal]:
    rows = await session.execute(select(Raffle.id, Raffle.ticket_price))
    return {raffle_id: Decimal(price) for raffle_id, price in rows.all()}


async def get_network_stats(session: AsyncSession, user_id: int) -> NetworkStats:
    if await session.get(User, user_id) is None:
        raise UserNotFound()
    users = (await session.scalars(select(User))).all()
    tickets = (await session.scalars(select(Ticket))).all()
    commissions = (await session.scalars(select(Commission).where(Commission.user_id == user_id))).all()
    return compute_network_stats(user_id, users, tickets, commissions, await _load_prices(session))


async def get_leaderboard(session: AsyncSession, *, by: str = "direct_sales", limit: int = 10) -> list[LeaderboardEntry]:
    users = (await session.scalars(select(User))).all()
    tickets = (await session.scalars(select(Ticket))).all()
    return compute_leaderboard(users, tickets, await _load_prices(session), by=by, limit=limit)
