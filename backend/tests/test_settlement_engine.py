from datetime import timedelta

from conftest import new_wallet
from parimutuel.adapters.ledger.program import SettlementAttempt
from parimutuel.models.enums import EventType, PoolStatus, SnapshotType
from parimutuel.services.pool_store import PoolStore
from parimutuel.services.settlement_engine import SettlementEngine
from parimutuel.services.templates import PoolTemplate


async def _load(session_factory, pool_id):
    async with session_factory() as db:
        store = PoolStore(db)
        return await store.get_pool(pool_id), await store.list_snapshots(pool_id)


async def test_create_pool_persists_upcoming_pool_with_derived_times(engine, session_factory, clock, notifier) -> None:
    template = PoolTemplate(asset="eth", interval_key="5m", duration_seconds=300, join_window_seconds=240)

    pool_id = await engine.create_pool(template)

    pool, snapshots = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.UPCOMING
    assert pool.asset == "ETH"
    assert pool.lock_time == clock.now + timedelta(seconds=240)
    assert pool.start_time == pool.lock_time + timedelta(seconds=60)
    assert pool.end_time == pool.start_time + timedelta(seconds=300)
    assert len(pool.pool_seed) == 64
    assert pool.pool_address
    assert pool.total_up == 0 and pool.total_down == 0
    assert snapshots == []
    assert notifier.created[0][0] == pool_id

    async with session_factory() as db:
        events = await PoolStore(db).list_events(entity_id=str(pool_id))
    assert [event.event_type for event in events] == [EventType.POOL_CREATED]
    assert events[0].payload["onchain"] == "skipped"


async def test_activation_at_lock_writes_single_strike_snapshot(engine, session_factory, oracle, clock) -> None:
    oracle.set_prices("BTC", 97_250_500_000)
    pool_id = await engine.create_pool_manual("BTC", 3600, 3000)

    first = await engine.process_status_transitions()
    assert first["joining"] == 1
    assert first["activated"] == 0

    pool, _ = await _load(session_factory, pool_id)
    clock.now = pool.lock_time + timedelta(seconds=1)

    second = await engine.process_status_transitions()
    third = await engine.process_status_transitions()

    assert second["activated"] == 1
    assert third == {"joining": 0, "activated": 0, "skipped": 0, "failed": 0}

    pool, snapshots = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.ACTIVE
    assert pool.strike_price == 97_250_500_000
    assert [snapshot.type for snapshot in snapshots] == [SnapshotType.STRIKE]
    assert snapshots[0].price == 97_250_500_000
    assert oracle.calls == ["BTC"]


async def test_pool_past_lock_is_fast_forwarded_in_one_sweep(engine, session_factory, oracle, clock) -> None:
    oracle.set_prices("SOL", 150_000_000)
    pool_id = await engine.create_pool_manual("SOL", 300, 120)
    clock.advance(600)

    summary = await engine.process_status_transitions()

    assert summary["joining"] == 1
    assert summary["activated"] == 1
    pool, _ = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.ACTIVE
    async with session_factory() as db:
        events = await PoolStore(db).list_events(entity_id=str(pool_id))
    assert [event.event_type for event in events] == [
        EventType.POOL_CREATED,
        EventType.POOL_JOINING,
        EventType.POOL_ACTIVATED,
    ]


async def test_oracle_failure_defers_activation_without_blocking_other_pools(
    engine, session_factory, oracle, clock
) -> None:
    oracle.fail("BTC")
    oracle.set_prices("ETH", 3_000_000_000)
    btc_id = await engine.create_pool_manual("BTC", 300, 120)
    eth_id = await engine.create_pool_manual("ETH", 300, 120)
    clock.advance(121)

    summary = await engine.process_status_transitions()

    assert summary["activated"] == 1
    assert summary["skipped"] == 1
    btc, btc_snapshots = await _load(session_factory, btc_id)
    eth, _ = await _load(session_factory, eth_id)
    assert btc.status == PoolStatus.JOINING
    assert btc.strike_price is None
    assert btc_snapshots == []
    assert eth.status == PoolStatus.ACTIVE

    oracle.errors.clear()
    oracle.set_prices("BTC", 97_000_000_000)
    retry = await engine.process_status_transitions()
    assert retry["activated"] == 1


async def test_resolution_picks_winner_and_records_final_snapshot(engine, session_factory, oracle, clock) -> None:
    oracle.set_prices("BTC", 100_000_000, 100_500_000)
    pool_id = await engine.create_pool_manual("BTC", 300, 120)
    clock.advance(121)
    await engine.process_status_transitions()

    clock.advance(60 + 300)
    summary = await engine.process_resolutions()

    assert summary == {"resolved": 1, "skipped": 0, "failed": 0}
    pool, snapshots = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.RESOLVED
    assert pool.final_price == 100_500_000
    assert pool.winner == "UP"
    assert pool.resolved_at == clock.now
    assert sorted(snapshot.type for snapshot in snapshots) == [SnapshotType.FINAL, SnapshotType.STRIKE]

    again = await engine.process_resolutions()
    assert again["resolved"] == 0


async def test_unchanged_price_resolves_down(engine, session_factory, oracle, clock) -> None:
    oracle.set_prices("ETH", 3_000_000_000)
    pool_id = await engine.create_pool_manual("ETH", 300, 120)
    clock.advance(121)
    await engine.process_status_transitions()
    clock.advance(400)

    await engine.process_resolutions()

    pool, _ = await _load(session_factory, pool_id)
    assert pool.winner == "DOWN"


async def test_pool_not_resolved_before_end_time(engine, session_factory, oracle, clock) -> None:
    oracle.set_prices("BTC", 100_000_000)
    pool_id = await engine.create_pool_manual("BTC", 300, 120)
    clock.advance(121)
    await engine.process_status_transitions()
    clock.advance(100)

    summary = await engine.process_resolutions()

    assert summary["resolved"] == 0
    pool, _ = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.ACTIVE


async def test_claimable_after_delay(engine, session_factory, clock, seed_pool, notifier) -> None:
    pool, _ = await seed_pool(status=PoolStatus.RESOLVED, winner="UP", resolved_at=clock.now)

    assert (await engine.process_claimable_transitions())["claimable"] == 0
    clock.advance(5)
    assert (await engine.process_claimable_transitions())["claimable"] == 1
    assert (await engine.process_claimable_transitions())["claimable"] == 0

    loaded, _ = await _load(session_factory, pool.id)
    assert loaded.status == PoolStatus.CLAIMABLE
    assert notifier.status_changes[-1] == (pool.id, {"status": "CLAIMABLE"})


async def test_cleanup_removes_only_old_empty_pools(engine, session_factory, oracle, clock, seed_pool) -> None:
    empty_pool, _ = await seed_pool(status=PoolStatus.CLAIMABLE, winner="DOWN", resolved_at=clock.now)
    funded_pool, _ = await seed_pool(
        status=PoolStatus.CLAIMABLE,
        winner="UP",
        resolved_at=clock.now,
        total_up=5_000_000,
        bets=((new_wallet(), "UP", 5_000_000),),
    )
    recent_pool, _ = await seed_pool(status=PoolStatus.RESOLVED, winner="DOWN", resolved_at=clock.now, lock_in=7200)
    async with session_factory() as db:
        store = PoolStore(db)
        oracle.set_prices("BTC", 100_000_000)
        tick = await oracle.get_spot_price("BTC")
        await store.add_snapshot(empty_pool.id, SnapshotType.STRIKE, tick)
        await db.commit()

    clock.now = empty_pool.end_time + timedelta(seconds=3601)
    summary = await engine.cleanup_empty_pools()

    assert summary == {"deleted": 1}
    async with session_factory() as db:
        store = PoolStore(db)
        assert await store.get_pool(empty_pool.id) is None
        assert await store.list_snapshots(empty_pool.id) == []
        assert await store.get_pool(funded_pool.id) is not None
        assert await store.get_pool(recent_pool.id) is not None
        events = await store.list_events(event_type=EventType.POOLS_CLEANUP)
    assert events[0].entity_id == "batch"
    assert events[0].payload["pool_ids"] == [str(empty_pool.id)]


class _FailingOnchain:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def initialize_pool(self, **kwargs) -> SettlementAttempt:
        self.calls.append("initialize_pool")
        return SettlementAttempt(attempted=True, error="blockhash not found")

    async def resolve_pool(self, **kwargs) -> SettlementAttempt:
        self.calls.append("resolve")
        return SettlementAttempt(attempted=True, signature="sig", error="custom program error: 0x1")


async def test_onchain_failure_still_persists_pool_state(
    session_factory, oracle, notifier, settings, clock
) -> None:
    onchain = _FailingOnchain()
    engine = SettlementEngine(
        session_factory=session_factory,
        oracle=oracle,
        notifier=notifier,
        settings=settings,
        onchain=onchain,
        clock=clock,
    )
    oracle.set_prices("BTC", 100_000_000, 99_000_000)

    pool_id = await engine.create_pool_manual("BTC", 300, 120)
    clock.advance(121)
    await engine.process_status_transitions()
    clock.advance(400)
    await engine.process_resolutions()

    assert onchain.calls == ["initialize_pool", "resolve"]
    pool, _ = await _load(session_factory, pool_id)
    assert pool.status == PoolStatus.RESOLVED
    assert pool.winner == "DOWN"
    async with session_factory() as db:
        resolved = await PoolStore(db).list_events(entity_id=str(pool_id), event_type=EventType.POOL_RESOLVED)
    assert resolved[0].payload["onchain"] == "failed"
    assert resolved[0].payload["onchain_error"] == "custom program error: 0x1"


async def test_create_pool_logs_and_returns_none_on_failure(engine, monkeypatch) -> None:
    async def broken_create(template):
        raise RuntimeError("database is down")

    monkeypatch.setattr(engine, "_create", broken_create)
    template = PoolTemplate(asset="BTC", interval_key="1h", duration_seconds=3600, join_window_seconds=3000)

    assert await engine.create_pool(template) is None
