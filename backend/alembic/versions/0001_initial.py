"""initial pools schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _amount() -> sa.types.TypeEngine:
    return sa.Numeric(38, 0).with_variant(sa.BigInteger(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "pools",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("pool_seed", sa.String(length=64), nullable=False),
        sa.Column("pool_address", sa.String(length=64), nullable=True),
        sa.Column("asset", sa.String(length=16), nullable=False),
        sa.Column("interval_key", sa.String(length=16), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("lock_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("strike_price", _amount(), nullable=True),
        sa.Column("final_price", _amount(), nullable=True),
        sa.Column("total_up", _amount(), nullable=False),
        sa.Column("total_down", _amount(), nullable=False),
        sa.Column("winner", sa.String(length=8), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("pool_seed", name="uq_pools_pool_seed"),
        sa.CheckConstraint("lock_time < start_time AND start_time < end_time", name="ck_pools_time_order"),
        sa.CheckConstraint("total_up >= 0 AND total_down >= 0", name="ck_pools_totals_non_negative"),
    )
    op.create_index("ix_pools_asset", "pools", ["asset"], unique=False)
    op.create_index("ix_pools_status_lock_time", "pools", ["status", "lock_time"], unique=False)
    op.create_index("ix_pools_status_end_time", "pools", ["status", "end_time"], unique=False)

    op.create_table(
        "bets",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("pool_id", sa.Uuid(), sa.ForeignKey("pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("side", sa.String(length=8), nullable=False),
        sa.Column("amount", _amount(), nullable=False),
        sa.Column("deposit_tx", sa.String(length=128), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claim_tx", sa.String(length=128), nullable=True),
        sa.Column("payout_amount", _amount(), nullable=True),
        sa.Column("claim_submitted_tx", sa.String(length=128), nullable=True),
        sa.Column("claim_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("pool_id", "wallet_address", name="uq_bets_pool_wallet"),
        sa.UniqueConstraint("deposit_tx", name="uq_bets_deposit_tx"),
        sa.UniqueConstraint("claim_tx", name="uq_bets_claim_tx"),
        sa.CheckConstraint("amount > 0", name="ck_bets_amount_positive"),
    )
    op.create_index("ix_bets_pool_id", "bets", ["pool_id"], unique=False)
    op.create_index("ix_bets_wallet_address", "bets", ["wallet_address"], unique=False)

    op.create_table(
        "price_snapshots",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("pool_id", sa.Uuid(), sa.ForeignKey("pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("price", _amount(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("raw_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("pool_id", "type", name="uq_price_snapshots_pool_type"),
    )
    op.create_index("ix_price_snapshots_pool_id", "price_snapshots", ["pool_id"], unique=False)

    op.create_table(
        "event_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_event_logs_event_type", "event_logs", ["event_type"], unique=False)
    op.create_index("ix_event_logs_entity_id", "event_logs", ["entity_id"], unique=False)
    op.create_index("ix_event_logs_created_at", "event_logs", ["created_at"], unique=False)
    op.create_index(
        "ix_event_logs_created_at_desc",
        "event_logs",
        [sa.text("created_at DESC")],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_event_logs_created_at_desc", table_name="event_logs")
    op.drop_index("ix_event_logs_created_at", table_name="event_logs")
    op.drop_index("ix_event_logs_entity_id", table_name="event_logs")
    op.drop_index("ix_event_logs_event_type", table_name="event_logs")
    op.drop_table("event_logs")

    op.drop_index("ix_price_snapshots_pool_id", table_name="price_snapshots")
    op.drop_table("price_snapshots")

    op.drop_index("ix_bets_wallet_address", table_name="bets")
    op.drop_index("ix_bets_pool_id", table_name="bets")
    op.drop_table("bets")

    op.drop_index("ix_pools_status_end_time", table_name="pools")
    op.drop_index("ix_pools_status_lock_time", table_name="pools")
    op.drop_index("ix_pools_asset", table_name="pools")
    op.drop_table("pools")
