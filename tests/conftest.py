from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from apps.raffles.db import Base
from apps.raffles.db.models import UserRole
from apps.raffles.infra.db import Database
from apps.raffles.infra.settings import Settings
from apps.raffles.repositories.raffles import create_raffle
from apps.raffles.repositories.users import register_user


@pytest_asyncio.fixture()
async def session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as db:
        yield db
    await engine.dispose()


@pytest_asyncio.fixture()
async def database(tmp_path):
    # File-backed so independent sessions really run against one store.
    db = Database(Settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'core.db'}"))
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    async def _make(name: str = "Tester", *, referral_code: str | None = None, role: UserRole = UserRole.USER):
        counter["n"] += 1
        return await register_user(
            session,
            name=name,
            email=f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com",
            referral_code=referral_code,
            role=role,
        )

    return _make


@pytest.fixture()
def make_raffle(session):
    async def _make(*, ticket_price: str = "10.00", packs=(), extra_prizes=(), title: str = "Gran Rifa"):
        return await create_raffle(
            session,
            title=title,
            ticket_price=Decimal(ticket_price),
            packs=packs,
            extra_prizes=extra_prizes,
        )

    return _make
