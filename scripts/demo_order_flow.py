from __future__ import annotations

import asyncio
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from apps.raffles.core.commissions import get_commission_stats
from apps.raffles.core.network import get_network_stats
from apps.raffles.core.orders import create_order, mark_order_paid, verify_order
from apps.raffles.db import Base
from apps.raffles.db.models import UserRole
from apps.raffles.repositories.raffles import create_raffle
from apps.raffles.repositories.users import register_user


async def main() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        admin = await register_user(session, name="Admin", email="admin@example.com", role=UserRole.ADMIN)
        sponsor = await register_user(session, name="Sponsor", email="sponsor@example.com")
        leader = await register_user(session, name="Leader", email="leader@example.com", referral_code=sponsor.referral_code)
        buyer = await register_user(session, name="Buyer", email="buyer@example.com", referral_code=leader.referral_code)

        raffle = await create_raffle(
            session,
            title="Demo raffle",
            ticket_price=Decimal("10.00"),
            extra_prizes=[{"name": "T-shirt", "quantity": 2}],
        )
        order = await create_order(session, user_id=buyer.id, raffle_id=raffle.id, quantity=5)
        await mark_order_paid(session, order.id, admin_id=admin.id, payment_method="transfer")
        result = await verify_order(session, order.id, admin_id=admin.id)
        await session.commit()

        print("Order:", result.order.order_code, result.order.status)
        print("Tickets:", ", ".join(ticket.ticket_number for ticket in result.tickets))
        print("Roulette chances granted:", result.chances_granted)
        for user in (leader, sponsor):
            stats = await get_commission_stats(session, user.id)
            print(f"Commissions for {user.name}: total={stats.total} pending={stats.pending}")
        network = await get_network_stats(session, sponsor.id)
        print("Sponsor network:", network.to_dict())

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
