from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, JSON, Numeric, SmallInteger, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from apps.raffles.db import Base

JSONType = JSON().with_variant(JSONB, "postgresql")
PKBigInt = BigInteger().with_variant(Integer, "sqlite")
Money = Numeric(12, 2)


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    INACTIVE = "inactive"


class CommissionStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PurchaseOrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=UserRole.USER.value, server_default=UserRole.USER.value)
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    referred_by: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    upline: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    country: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class Raffle(Base):
    __tablename__ = "raffles"
    __table_args__ = (
        CheckConstraint("sold_tickets >= 0", name="ck_raffles_sold_tickets"),
        CheckConstraint("current_sales >= 0", name="ck_raffles_current_sales"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    prize_info: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    ticket_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    sold_tickets: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_sales: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default="0")
    sales_goal: Mapped[Decimal | None] = mapped_column(Money)
    is_monthly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_fidelity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class TicketPack(Base):
    __tablename__ = "ticket_packs"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    participation_bonus_percent: Mapped[int | None] = mapped_column(SmallInteger)
    is_fidelity_pack: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    def snapshot(self) -> dict[str, Any]:
        return {
            "quantity": self.quantity,
            "price": str(self.price),
            "participation_bonus_percent": self.participation_bonus_percent,
            "is_fidelity_pack": bool(self.is_fidelity_pack),
        }


class ExtraPrize(Base):
    __tablename__ = "extra_prizes"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_extra_prizes_quantity"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("raffle_id", "ticket_number", name="uq_tickets_raffle_number"),
        CheckConstraint("transfer_count >= 0", name="ck_tickets_transfer_count"),
        Index("ix_tickets_original_user", "original_user_id"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="RESTRICT"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="RESTRICT"), index=True, nullable=False)
    original_user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    order_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("purchase_orders.id", ondelete="SET NULL"), index=True)
    ticket_number: Mapped[str] = mapped_column(String(64), nullable=False)
    transfer_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0, server_default="0")
    purchased_pack_info: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    purchase_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class Commission(Base):
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("source_key", "level", name="uq_commissions_source_level"),
        CheckConstraint("level BETWEEN 1 AND 3", name="ck_commissions_level"),
        CheckConstraint("status IN ('PENDING','PAID')", name="ck_commissions_status"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    source_user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    source_key: Mapped[str] = mapped_column(String(64), nullable=False)
    level: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=CommissionStatus.PENDING.value, server_default=CommissionStatus.PENDING.value)
    payment_method: Mapped[str | None] = mapped_column(String(32))
    payment_notes: Mapped[str | None] = mapped_column(Text)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))
    reverted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reverted_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))
    revert_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint("order_code", name="uq_purchase_orders_code"),
        Index("ix_purchase_orders_status", "status"),
        CheckConstraint("quantity > 0", name="ck_purchase_orders_quantity"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    order_code: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="RESTRICT"), index=True, nullable=False)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="RESTRICT"), index=True, nullable=False)
    pack_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("ticket_packs.id", ondelete="SET NULL"))
    pack_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PurchaseOrderStatus.PENDING.value, server_default=PurchaseOrderStatus.PENDING.value)
    ticket_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), onupdate=func.now(), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))
    payment_method: Mapped[str | None] = mapped_column(String(32))
    payment_notes: Mapped[str | None] = mapped_column(Text)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verified_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))
    verification_notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RouletteChance(Base):
    __tablename__ = "roulette_chances"
    __table_args__ = (
        UniqueConstraint("user_id", "raffle_id", name="uq_roulette_chances_user_raffle"),
        CheckConstraint("chances >= 0", name="ck_roulette_chances_non_negative"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    chances: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), onupdate=func.now(), nullable=False)


class UserPrize(Base):
    __tablename__ = "user_prizes"
    __table_args__ = (UniqueConstraint("code", name="uq_user_prizes_code"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    prize_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("extra_prizes.id", ondelete="RESTRICT"), nullable=False)
    prize_name: Mapped[str] = mapped_column(String(128), nullable=False)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    date_won: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)
    redeemed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    redeemed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    redeemed_by_admin_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="SET NULL"))


class FidelityAccess(Base):
    __tablename__ = "fidelity_access"
    __table_args__ = (UniqueConstraint("raffle_id", "user_id", name="uq_fidelity_access_raffle_user"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    props: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="core", server_default="core")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
