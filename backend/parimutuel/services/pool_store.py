import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from parimutuel.adapters.oracle.base import PriceTick
from parimutuel.models.bet import Bet
from parimutuel.models.enums import PoolStatus, Side, SnapshotType
from parimutuel.models.event_log import EventLog
from parimutuel.models.pool import Pool
from parimutuel.models.price_snapshot import PriceSnapshot


class PoolStore:
    """Persistence primitives for pools, bets, snapshots and the event log.

    Every state change is a single statement guarded by the expected prior state, and
    reports whether it applied. Nothing here commits; callers own the transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def insert_pool(self, **fields) -> Pool:
        pool = Pool(**fields)
        self.db.add(pool)
        await self.db.flush()
        return pool

    async def get_pool(self, pool_id: uuid.UUID) -> Pool | None:
        return await self.db.get(Pool, pool_id)

    async def list_pool_ids(
        self,
        status: PoolStatus,
        *,
        lock_time_before: datetime | None = None,
        end_time_before: datetime | None = None,
        resolved_before: datetime | None = None,
    ) -> list[uuid.UUID]:
        stmt = select(Pool.id).where(Pool.status == status.value)
        if lock_time_before is not None:
            stmt = stmt.where(Pool.lock_time <= lock_time_before)
        if end_time_before is not None:
            stmt = stmt.where(Pool.end_time <= end_time_before)
        if resolved_before is not None:
            stmt = stmt.where(Pool.resolved_at.is_not(None), Pool.resolved_at <= resolved_before)
        stmt = stmt.order_by(Pool.lock_time.asc())
        return list((await self.db.execute(stmt)).scalars().all())

    async def transition(
        self,
        pool_id: uuid.UUID,
        from_status: PoolStatus,
        to_status: PoolStatus,
        **values,
    ) -> bool:
        stmt = (
            update(Pool)
            .where(Pool.id == pool_id, Pool.status == from_status.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def add_snapshot(self, pool_id: uuid.UUID, snapshot_type: SnapshotType, tick: PriceTick) -> PriceSnapshot:
        snapshot = PriceSnapshot(
            pool_id=pool_id,
            type=snapshot_type.value,
            price=tick.price,
            timestamp=tick.timestamp,
            source=tick.source,
            raw_hash=tick.raw_hash,
        )
        self.db.add(snapshot)
        await self.db.flush()
        return snapshot

    async def list_snapshots(self, pool_id: uuid.UUID) -> list[PriceSnapshot]:
        stmt = select(PriceSnapshot).where(PriceSnapshot.pool_id == pool_id).order_by(PriceSnapshot.created_at)
        return list((await self.db.execute(stmt)).scalars().all())

    async def increment_totals(
        self,
        pool_id: uuid.UUID,
        side: Side,
        amount: int,
        allowed_statuses: Iterable[PoolStatus],
    ) -> bool:
        column = Pool.total_up if side == Side.UP else Pool.total_down
        stmt = (
            update(Pool)
            .where(Pool.id == pool_id, Pool.status.in_([status.value for status in allowed_statuses]))
            .values({column.key: column + amount})
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def insert_bet(self, **fields) -> Bet:
        bet = Bet(**fields)
        self.db.add(bet)
        await self.db.flush()
        return bet

    async def get_bet(self, bet_id: uuid.UUID) -> Bet | None:
        return await self.db.get(Bet, bet_id)

    async def get_bet_for_wallet(self, pool_id: uuid.UUID, wallet_address: str) -> Bet | None:
        stmt = select(Bet).where(Bet.pool_id == pool_id, Bet.wallet_address == wallet_address)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_bet_by_deposit_tx(self, deposit_tx: str) -> Bet | None:
        stmt = select(Bet).where(Bet.deposit_tx == deposit_tx)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_bet_by_claim_tx(self, claim_tx: str) -> Bet | None:
        stmt = select(Bet).where(Bet.claim_tx == claim_tx)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_bets(self, pool_id: uuid.UUID) -> list[Bet]:
        stmt = select(Bet).where(Bet.pool_id == pool_id).order_by(Bet.created_at)
        return list((await self.db.execute(stmt)).scalars().all())

    async def mark_claimed(self, bet_id: uuid.UUID, claim_tx: str, payout_amount: int) -> bool:
        stmt = (
            update(Bet)
            .where(Bet.id == bet_id, Bet.claimed.is_(False))
            .values(claimed=True, claim_tx=claim_tx, payout_amount=payout_amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def reserve_claim(self, bet_id: uuid.UUID, submitted_tx: str, submitted_at: datetime) -> bool:
        stmt = (
            update(Bet)
            .where(Bet.id == bet_id, Bet.claimed.is_(False), Bet.claim_submitted_tx.is_(None))
            .values(claim_submitted_tx=submitted_tx, claim_submitted_at=submitted_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def release_claim(self, bet_id: uuid.UUID, submitted_tx: str) -> bool:
        stmt = (
            update(Bet)
            .where(Bet.id == bet_id, Bet.claimed.is_(False), Bet.claim_submitted_tx == submitted_tx)
            .values(claim_submitted_tx=None, claim_submitted_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def append_event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        payload: Mapping | None = None,
    ) -> EventLog:
        event = EventLog(
            event_type=str(event_type),
            entity_type=entity_type,
            entity_id=entity_id,
            payload=dict(payload) if payload is not None else {},
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def list_events(self, entity_id: str | None = None, event_type: str | None = None) -> list[EventLog]:
        stmt = select(EventLog)
        if entity_id is not None:
            stmt = stmt.where(EventLog.entity_id == entity_id)
        if event_type is not None:
            stmt = stmt.where(EventLog.event_type == event_type)
        return list((await self.db.execute(stmt.order_by(EventLog.created_at))).scalars().all())

    async def delete_empty_pools(self, ended_before: datetime, statuses: Iterable[PoolStatus]) -> list[uuid.UUID]:
        """Delete settled pools that never took a bet, snapshots first."""
        empty = and_(
            Pool.status.in_([status.value for status in statuses]),
            Pool.total_up == 0,
            Pool.total_down == 0,
            Pool.end_time < ended_before,
        )
        pool_ids = list((await self.db.execute(select(Pool.id).where(empty))).scalars().all())
        if not pool_ids:
            return []
        await self.db.execute(
            delete(PriceSnapshot)
            .where(PriceSnapshot.pool_id.in_(pool_ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(Pool).where(Pool.id.in_(pool_ids), empty).execution_options(synchronize_session=False)
        )
        return pool_ids
