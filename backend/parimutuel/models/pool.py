import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parimutuel.models.base import Base, TimestampMixin, TokenAmount, UTCDateTime
from parimutuel.models.enums import PoolStatus


class Pool(Base, TimestampMixin):
    __tablename__ = "pools"
    __table_args__ = (
        CheckConstraint("lock_time < start_time AND start_time < end_time", name="ck_pools_time_order"),
        CheckConstraint("total_up >= 0 AND total_down >= 0", name="ck_pools_totals_non_negative"),
        Index("ix_pools_status_lock_time", "status", "lock_time"),
        Index("ix_pools_status_end_time", "status", "end_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    pool_seed: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    pool_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    asset: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    interval_key: Mapped[str] = mapped_column(String(16), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PoolStatus.UPCOMING.value)
    lock_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    strike_price: Mapped[int | None] = mapped_column(TokenAmount(), nullable=True)
    final_price: Mapped[int | None] = mapped_column(TokenAmount(), nullable=True)
    total_up: Mapped[int] = mapped_column(TokenAmount(), nullable=False, default=0)
    total_down: Mapped[int] = mapped_column(TokenAmount(), nullable=False, default=0)
    winner: Mapped[str | None] = mapped_column(String(8), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    bets = relationship("Bet", back_populates="pool", cascade="all, delete-orphan", passive_deletes=True)
    snapshots = relationship(
        "PriceSnapshot", back_populates="pool", cascade="all, delete-orphan", passive_deletes=True
    )
