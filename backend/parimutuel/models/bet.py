import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parimutuel.models.base import Base, TimestampMixin, TokenAmount, UTCDateTime


class Bet(Base, TimestampMixin):
    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("pool_id", "wallet_address", name="uq_bets_pool_wallet"),
        CheckConstraint("amount > 0", name="ck_bets_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    pool_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("pools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(TokenAmount(), nullable=False)
    deposit_tx: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claim_tx: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    payout_amount: Mapped[int | None] = mapped_column(TokenAmount(), nullable=True)
    claim_submitted_tx: Mapped[str | None] = mapped_column(String(128), nullable=True)
    claim_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    pool = relationship("Pool", back_populates="bets")
