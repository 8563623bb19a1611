from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parimutuel.adapters.ledger.program import OnchainSettlement
from parimutuel.adapters.ledger.solana_rpc import SolanaLedgerClient
from parimutuel.adapters.oracle import PriceOracle, build_price_oracle
from parimutuel.core.config import Settings
from parimutuel.services.notifications import NotificationSink, NullNotificationSink, RedisNotificationSink
from parimutuel.services.reconciler import Reconciler
from parimutuel.services.settlement_engine import SettlementEngine
from parimutuel.tasks.scheduler import PoolScheduler


@dataclass
class Runtime:
    oracle: PriceOracle
    ledger: SolanaLedgerClient
    notifier: NotificationSink
    onchain: OnchainSettlement
    engine: SettlementEngine
    reconciler: Reconciler
    scheduler: PoolScheduler


def build_runtime(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis | None,
) -> Runtime:
    oracle = build_price_oracle(settings)
    ledger = SolanaLedgerClient(settings)
    notifier: NotificationSink = (
        RedisNotificationSink(redis, settings.notifications_channel) if redis is not None else NullNotificationSink()
    )
    onchain = OnchainSettlement(ledger, settings)
    engine = SettlementEngine(
        session_factory=session_factory,
        oracle=oracle,
        notifier=notifier,
        settings=settings,
        onchain=onchain,
    )
    reconciler = Reconciler(
        session_factory=session_factory,
        ledger=ledger,
        settings=settings,
        notifier=notifier,
    )
    scheduler = PoolScheduler(
        engine=engine,
        settings=settings,
        oracle=oracle,
        authority=onchain.authority_address,
    )
    return Runtime(
        oracle=oracle,
        ledger=ledger,
        notifier=notifier,
        onchain=onchain,
        engine=engine,
        reconciler=reconciler,
        scheduler=scheduler,
    )
