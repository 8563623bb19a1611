import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parimutuel.adapters.ledger.addresses import pool_pda
from parimutuel.adapters.ledger.program import OnchainSettlement, SettlementAttempt
from parimutuel.adapters.oracle.base import PriceOracle
from parimutuel.adapters.oracle.errors import PriceOracleError
from parimutuel.core.config import Settings
from parimutuel.models.enums import CLAIM_STATUSES, EventType, PoolStatus, SnapshotType
from parimutuel.services.notifications import NotificationSink
from parimutuel.services.payouts import determine_winner
from parimutuel.services.pool_store import PoolStore
from parimutuel.services.templates import PoolTemplate

logger = logging.getLogger(__name__)

POOL_ENTITY = "pool"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def _attempt_payload(attempt: SettlementAttempt | None) -> dict:
    if attempt is None or not attempt.attempted:
        return {"onchain": "skipped"}
    return {
        "onchain": "confirmed" if attempt.succeeded else "failed",
        "onchain_signature": attempt.signature,
        "onchain_error": attempt.error,
    }


class SettlementEngine:
    """Drives pools through UPCOMING -> JOINING -> ACTIVE -> RESOLVED -> CLAIMABLE.

    Every sweep re-reads candidates from the store and advances each pool with a
    conditional update keyed on its prior status, so overlapping sweeps from several
    processes cannot double-capture a price. Oracle and ledger calls happen outside
    database transactions, and one failing pool never stops the rest of a sweep.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        oracle: PriceOracle,
        notifier: NotificationSink,
        settings: Settings,
        onchain: OnchainSettlement | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._oracle = oracle
        self._notifier = notifier
        self._settings = settings
        self._onchain = onchain
        self._clock = clock

    async def _create(self, template: PoolTemplate) -> uuid.UUID:
        now = self._clock()
        lock_time = now + timedelta(seconds=template.join_window_seconds)
        start_time = lock_time + timedelta(seconds=template.lock_buffer_seconds)
        end_time = start_time + timedelta(seconds=template.duration_seconds)
        pool_seed = secrets.token_bytes(32).hex()
        pool_address = str(pool_pda(pool_seed, self._settings.program_id))

        attempt = None
        if self._onchain is not None:
            attempt = await self._onchain.initialize_pool(
                pool_seed=pool_seed,
                asset=template.asset,
                start_time=start_time,
                end_time=end_time,
                lock_time=lock_time,
            )

        async with self._session_factory() as db:
            store = PoolStore(db)
            pool = await store.insert_pool(
                pool_seed=pool_seed,
                pool_address=pool_address,
                asset=template.asset,
                interval_key=template.interval_key,
                duration_seconds=template.duration_seconds,
                status=PoolStatus.UPCOMING.value,
                lock_time=lock_time,
                start_time=start_time,
                end_time=end_time,
                total_up=0,
                total_down=0,
            )
            pool_id = pool.id
            await store.append_event(
                EventType.POOL_CREATED,
                POOL_ENTITY,
                str(pool_id),
                {
                    "asset": template.asset,
                    "interval_key": template.interval_key,
                    "pool_address": pool_address,
                    "lock_time": lock_time.isoformat(),
                    "start_time": start_time.isoformat(),
                    "end_time": end_time.isoformat(),
                    **_attempt_payload(attempt),
                },
            )
            await db.commit()

        logger.info(
            "Pool created",
            extra={
                "pool_id": str(pool_id),
                "asset": template.asset,
                "interval_key": template.interval_key,
                "lock_time": lock_time.isoformat(),
                "end_time": end_time.isoformat(),
            },
        )
        await self._notifier.emit_pool_created(
            pool_id,
            {
                "asset": template.asset,
                "interval_key": template.interval_key,
                "status": PoolStatus.UPCOMING.value,
                "lock_time": lock_time.isoformat(),
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
            },
        )
        return pool_id

    async def create_pool(self, template: PoolTemplate) -> uuid.UUID | None:
        try:
            return await self._create(template)
        except Exception:
            logger.exception(
                "Pool creation failed",
                extra={"asset": template.asset, "interval_key": template.interval_key},
            )
            return None

    async def create_pool_manual(
        self,
        asset: str,
        interval_seconds: int,
        join_window_seconds: int,
        interval_key: str = "1h",
        lock_buffer_seconds: int = 60,
    ) -> uuid.UUID:
        """Admin/test entry point; errors propagate to the caller."""
        template = PoolTemplate(
            asset=asset,
            interval_key=interval_key,
            duration_seconds=interval_seconds,
            join_window_seconds=join_window_seconds,
            lock_buffer_seconds=lock_buffer_seconds,
        )
        return await self._create(template)

    async def _pool_ids(self, status: PoolStatus, **filters) -> list[uuid.UUID]:
        async with self._session_factory() as db:
            return await PoolStore(db).list_pool_ids(status, **filters)

    async def _open_joining(self, pool_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            store = PoolStore(db)
            if not await store.transition(pool_id, PoolStatus.UPCOMING, PoolStatus.JOINING):
                await db.rollback()
                return False
            await store.append_event(EventType.POOL_JOINING, POOL_ENTITY, str(pool_id), {})
            await db.commit()

        logger.info("Pool joining", extra={"pool_id": str(pool_id)})
        await self._notifier.emit_pool_status_changed(pool_id, {"status": PoolStatus.JOINING.value})
        return True

    async def _activate(self, pool_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            pool = await PoolStore(db).get_pool(pool_id)
            if pool is None or pool.status != PoolStatus.JOINING:
                return False
            asset = pool.asset

        tick = await self._oracle.get_spot_price(asset)

        async with self._session_factory() as db:
            store = PoolStore(db)
            if not await store.transition(
                pool_id, PoolStatus.JOINING, PoolStatus.ACTIVE, strike_price=tick.price
            ):
                await db.rollback()
                return False
            try:
                await store.add_snapshot(pool_id, SnapshotType.STRIKE, tick)
            except IntegrityError:
                await db.rollback()
                logger.warning("Strike snapshot already recorded", extra={"pool_id": str(pool_id)})
                return False
            await store.append_event(
                EventType.POOL_ACTIVATED,
                POOL_ENTITY,
                str(pool_id),
                {"strike_price": tick.price, "source": tick.source, "raw_hash": tick.raw_hash},
            )
            await db.commit()

        logger.info(
            "Pool activated",
            extra={"pool_id": str(pool_id), "asset": asset, "strike_price": tick.price},
        )
        await self._notifier.emit_pool_status_changed(
            pool_id, {"status": PoolStatus.ACTIVE.value, "strike_price": tick.price}
        )
        return True

    async def process_status_transitions(self) -> dict[str, int]:
        summary = {"joining": 0, "activated": 0, "skipped": 0, "failed": 0}

        # Pools never seen before their lock time still pass through JOINING, then
        # the activation pass below picks them up in the same sweep.
        for pool_id in await self._pool_ids(PoolStatus.UPCOMING):
            try:
                if await self._open_joining(pool_id):
                    summary["joining"] += 1
            except Exception:
                summary["failed"] += 1
                logger.exception("Pool joining transition failed", extra={"pool_id": str(pool_id)})

        now = self._clock()
        for pool_id in await self._pool_ids(PoolStatus.JOINING, lock_time_before=now):
            try:
                if await self._activate(pool_id):
                    summary["activated"] += 1
            except PriceOracleError as exc:
                summary["skipped"] += 1
                logger.warning(
                    "Strike price unavailable; activation deferred",
                    extra={"pool_id": str(pool_id), "code": exc.code, "reason": exc.reason},
                )
            except Exception:
                summary["failed"] += 1
                logger.exception("Pool activation failed", extra={"pool_id": str(pool_id)})

        if any(summary.values()):
            logger.info("Status transition sweep finished", extra=summary)
        return summary

    async def _resolve(self, pool_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            pool = await PoolStore(db).get_pool(pool_id)
            if pool is None or pool.status != PoolStatus.ACTIVE:
                return False
            asset, pool_seed, strike_price = pool.asset, pool.pool_seed, pool.strike_price

        if strike_price is None:
            raise RuntimeError(f"active pool {pool_id} has no strike price")

        tick = await self._oracle.get_spot_price(asset)
        winner = determine_winner(strike_price, tick.price)

        attempt = None
        if self._onchain is not None:
            attempt = await self._onchain.resolve_pool(
                pool_seed=pool_seed, strike_price=strike_price, final_price=tick.price
            )

        resolved_at = self._clock()
        async with self._session_factory() as db:
            store = PoolStore(db)
            if not await store.transition(
                pool_id,
                PoolStatus.ACTIVE,
                PoolStatus.RESOLVED,
                final_price=tick.price,
                winner=winner.value,
                resolved_at=resolved_at,
            ):
                await db.rollback()
                return False
            try:
                await store.add_snapshot(pool_id, SnapshotType.FINAL, tick)
            except IntegrityError:
                await db.rollback()
                logger.warning("Final snapshot already recorded", extra={"pool_id": str(pool_id)})
                return False
            await store.append_event(
                EventType.POOL_RESOLVED,
                POOL_ENTITY,
                str(pool_id),
                {
                    "strike_price": strike_price,
                    "final_price": tick.price,
                    "winner": winner.value,
                    "source": tick.source,
                    "raw_hash": tick.raw_hash,
                    **_attempt_payload(attempt),
                },
            )
            await db.commit()

        logger.info(
            "Pool resolved",
            extra={
                "pool_id": str(pool_id),
                "asset": asset,
                "strike_price": strike_price,
                "final_price": tick.price,
                "winner": winner.value,
            },
        )
        await self._notifier.emit_pool_status_changed(
            pool_id,
            {"status": PoolStatus.RESOLVED.value, "final_price": tick.price, "winner": winner.value},
        )
        return True

    async def process_resolutions(self) -> dict[str, int]:
        summary = {"resolved": 0, "skipped": 0, "failed": 0}
        now = self._clock()
        for pool_id in await self._pool_ids(PoolStatus.ACTIVE, end_time_before=now):
            try:
                if await self._resolve(pool_id):
                    summary["resolved"] += 1
            except PriceOracleError as exc:
                summary["skipped"] += 1
                logger.warning(
                    "Final price unavailable; resolution deferred",
                    extra={"pool_id": str(pool_id), "code": exc.code, "reason": exc.reason},
                )
            except Exception:
                summary["failed"] += 1
                logger.exception("Pool resolution failed", extra={"pool_id": str(pool_id)})

        if any(summary.values()):
            logger.info("Resolution sweep finished", extra=summary)
        return summary

    async def _make_claimable(self, pool_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            store = PoolStore(db)
            if not await store.transition(pool_id, PoolStatus.RESOLVED, PoolStatus.CLAIMABLE):
                await db.rollback()
                return False
            await store.append_event(EventType.POOL_CLAIMABLE, POOL_ENTITY, str(pool_id), {})
            await db.commit()

        logger.info("Pool claimable", extra={"pool_id": str(pool_id)})
        await self._notifier.emit_pool_status_changed(pool_id, {"status": PoolStatus.CLAIMABLE.value})
        return True

    async def process_claimable_transitions(self) -> dict[str, int]:
        summary = {"claimable": 0, "failed": 0}
        cutoff = self._clock() - timedelta(seconds=self._settings.claimable_delay_seconds)
        for pool_id in await self._pool_ids(PoolStatus.RESOLVED, resolved_before=cutoff):
            try:
                if await self._make_claimable(pool_id):
                    summary["claimable"] += 1
            except Exception:
                summary["failed"] += 1
                logger.exception("Claimable transition failed", extra={"pool_id": str(pool_id)})
        return summary

    async def cleanup_empty_pools(self) -> dict[str, int]:
        cutoff = self._clock() - timedelta(seconds=self._settings.empty_pool_retention_seconds)
        async with self._session_factory() as db:
            store = PoolStore(db)
            deleted = await store.delete_empty_pools(cutoff, CLAIM_STATUSES)
            if deleted:
                await store.append_event(
                    EventType.POOLS_CLEANUP,
                    POOL_ENTITY,
                    "batch",
                    {"count": len(deleted), "pool_ids": [str(pool_id) for pool_id in deleted]},
                )
            await db.commit()

        if deleted:
            logger.info("Empty pools cleaned up", extra={"deleted": len(deleted), "cutoff": cutoff.isoformat()})
        return {"deleted": len(deleted)}

    async def run_all_sweeps(self) -> dict[str, dict[str, int]]:
        return {
            "transitions": await self.process_status_transitions(),
            "resolutions": await self.process_resolutions(),
            "claimable": await self.process_claimable_transitions(),
        }
