"""raffle core schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("referral_code", sa.String(length=32), nullable=False, unique=True),
        sa.Column("referred_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL"), index=True),
        sa.Column("upline", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("country", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "raffles",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("prize_info", sa.Text(), nullable=False, server_default=""),
        sa.Column("ticket_price", MONEY, nullable=False),
        sa.Column("sold_tickets", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("current_sales", MONEY, nullable=False, server_default="0"),
        sa.Column("sales_goal", MONEY),
        sa.Column("is_monthly", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_fidelity", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("sold_tickets >= 0", name="ck_raffles_sold_tickets"),
        sa.CheckConstraint("current_sales >= 0", name="ck_raffles_current_sales"),
    )

    op.create_table(
        "ticket_packs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("participation_bonus_percent", sa.SmallInteger()),
        sa.Column("is_fidelity_pack", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "extra_prizes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity >= 0", name="ck_extra_prizes_quantity"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("order_code", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("pack_id", sa.BigInteger(), sa.ForeignKey("ticket_packs.id", ondelete="SET NULL")),
        sa.Column("pack_snapshot", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_price", MONEY, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("ticket_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("paid_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("payment_method", sa.String(length=32)),
        sa.Column("payment_notes", sa.Text()),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("verified_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("verification_notes", sa.Text()),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("order_code", name="uq_purchase_orders_code"),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_orders_quantity"),
    )
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("original_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"), index=True),
        sa.Column("ticket_number", sa.String(length=64), nullable=False),
        sa.Column("transfer_count", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("purchased_pack_info", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("raffle_id", "ticket_number", name="uq_tickets_raffle_number"),
        sa.CheckConstraint("transfer_count >= 0", name="ck_tickets_transfer_count"),
    )
    op.create_index("ix_tickets_original_user", "tickets", ["original_user_id"])

    op.create_table(
        "commissions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("source_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_key", sa.String(length=64), nullable=False),
        sa.Column("level", sa.SmallInteger(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("payment_method", sa.String(length=32)),
        sa.Column("payment_notes", sa.Text()),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("paid_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("reverted_at", sa.DateTime(timezone=True)),
        sa.Column("reverted_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("revert_notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("source_key", "level", name="uq_commissions_source_level"),
        sa.CheckConstraint("level BETWEEN 1 AND 3", name="ck_commissions_level"),
        sa.CheckConstraint("status IN ('PENDING','PAID')", name="ck_commissions_status"),
    )

    op.create_table(
        "roulette_chances",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chances", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "raffle_id", name="uq_roulette_chances_user_raffle"),
        sa.CheckConstraint("chances >= 0", name="ck_roulette_chances_non_negative"),
    )

    op.create_table(
        "user_prizes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("prize_id", sa.BigInteger(), sa.ForeignKey("extra_prizes.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("prize_name", sa.String(length=128), nullable=False),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("date_won", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("redeemed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redeemed_date", sa.DateTime(timezone=True)),
        sa.Column("redeemed_by_admin_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.UniqueConstraint("code", name="uq_user_prizes_code"),
    )

    op.create_table(
        "fidelity_access",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("raffle_id", sa.BigInteger(), sa.ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("raffle_id", "user_id", name="uq_fidelity_access_raffle_user"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), index=True),
        sa.Column("name", sa.String(length=64), nullable=False, index=True),
        sa.Column("props", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="core"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("events")
    op.drop_table("fidelity_access")
    op.drop_table("user_prizes")
    op.drop_table("roulette_chances")
    op.drop_table("commissions")
    op.drop_index("ix_tickets_original_user", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_purchase_orders_status", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_table("extra_prizes")
    op.drop_table("ticket_packs")
    op.drop_table("raffles")
    op.drop_table("users")
