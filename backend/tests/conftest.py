import os
import secrets
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from solders.keypair import Keypair
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Must be set before parimutuel.core.database builds its module-level engine.
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from parimutuel.adapters.ledger.base import LedgerTransaction, SignatureStatus  # noqa: E402
from parimutuel.adapters.ledger.errors import LedgerUpstreamError  # noqa: E402
from parimutuel.adapters.oracle.base import PriceTick  # noqa: E402
from parimutuel.adapters.oracle.errors import PROVIDER_UNAVAILABLE, PriceOracleError  # noqa: E402
from parimutuel.core.config import get_settings  # noqa: E402
from parimutuel.core.database import build_engine, build_session_factory, get_db  # noqa: E402
from parimutuel.main import app  # noqa: E402
from parimutuel.models import Base  # noqa: E402
from parimutuel.models.enums import PoolStatus  # noqa: E402
from parimutuel.services.pool_store import PoolStore  # noqa: E402
from parimutuel.services.reconciler import Reconciler  # noqa: E402
from parimutuel.services.settlement_engine import SettlementEngine  # noqa: E402
from parimutuel.services.templates import default_templates  # noqa: E402
from parimutuel.tasks.scheduler import PoolScheduler  # noqa: E402

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeOracle:
    """Programmable price feed. A queued list of prices is consumed one call at a time."""

    def __init__(self) -> None:
        self.prices: dict[str, list[int]] = {}
        self.errors: dict[str, PriceOracleError] = {}
        self.calls: list[str] = []
        self.healthy = True

    def set_prices(self, asset: str, *prices: int) -> None:
        self.prices[asset] = list(prices)

    def fail(self, asset: str, code: str = PROVIDER_UNAVAILABLE) -> None:
        self.errors[asset] = PriceOracleError(code, asset, "feed down")

    async def get_spot_price(self, asset: str) -> PriceTick:
        self.calls.append(asset)
        if asset in self.errors:
            raise self.errors[asset]
        queue = self.prices[asset]
        price = queue.pop(0) if len(queue) > 1 else queue[0]
        return PriceTick(
            symbol=asset,
            price=price,
            timestamp=START,
            source="fake",
            raw_hash=secrets.token_hex(32),
        )

    async def is_healthy(self) -> bool:
        return self.healthy


class FakeLedger:
    """In-memory ledger covering both the verifier and writer sides."""

    def __init__(self) -> None:
        self.transactions: dict[str, LedgerTransaction] = {}
        self.unavailable = False
        self.blockhash = "11111111111111111111111111111111"
        self.sent: list[bytes] = []
        self.statuses: dict[str, SignatureStatus] = {}
        self.send_error: LedgerUpstreamError | None = None
        # Applied to any signature submitted through send_transaction.
        self.on_send: LedgerTransaction | None = None
        self.sent_status = SignatureStatus(found=True, confirmation_status="confirmed")

    def add_transfer(self, tx_ref: str, deltas: dict[str, int], block_time: datetime | None = None) -> None:
        self.transactions[tx_ref] = LedgerTransaction(
            found=True, succeeded=True, balance_deltas=tuple(deltas.items()), block_time=block_time
        )

    def add_failed(self, tx_ref: str, error: str = "InstructionError") -> None:
        self.transactions[tx_ref] = LedgerTransaction(found=True, succeeded=False, error=error)

    async def get_transaction(self, tx_ref: str) -> LedgerTransaction:
        if self.unavailable:
            raise LedgerUpstreamError("getTransaction", "connection refused")
        return self.transactions.get(tx_ref, LedgerTransaction(found=False))

    async def get_latest_blockhash(self) -> str:
        if self.unavailable:
            raise LedgerUpstreamError("getLatestBlockhash", "connection refused")
        return self.blockhash

    async def send_transaction(self, raw_transaction: bytes) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw_transaction)
        return "sent"

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        return self.statuses.get(signature, SignatureStatus(found=False))

    async def wait_for_confirmation(self, signature: str, timeout_seconds: float) -> SignatureStatus:
        if self.on_send is not None:
            self.transactions[signature] = self.on_send
        self.statuses[signature] = self.sent_status
        return self.sent_status


class RecordingNotifier:
    def __init__(self) -> None:
        self.created: list[tuple] = []
        self.status_changes: list[tuple] = []

    async def emit_pool_created(self, pool_id, fields) -> None:
        self.created.append((pool_id, dict(fields)))

    async def emit_pool_status_changed(self, pool_id, fields) -> None:
        self.status_changes.append((pool_id, dict(fields)))


def new_wallet() -> str:
    return str(Keypair().pubkey())


def new_tx_ref() -> str:
    return secrets.token_hex(44)


@pytest.fixture
def settings():
    return get_settings().model_copy(
        update={
            "platform_fee_bps": 500,
            "min_deposit_amount": 1,
            "max_deposit_amount": 100_000_000_000,
            "claimable_delay_seconds": 5,
            "empty_pool_retention_seconds": 3600,
            "claim_resubmit_after_seconds": 120,
            "authority_secret_key": "",
            "onchain_settlement_enabled": False,
            "scheduler_enabled": True,
            "pool_templates": "",
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh file-backed SQLite database per test.

    A file rather than :memory: so that every session sees the same data.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pools.db'}")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def engine(session_factory, oracle, notifier, settings, clock) -> SettlementEngine:
    return SettlementEngine(
        session_factory=session_factory,
        oracle=oracle,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def reconciler(session_factory, ledger, settings, notifier, clock) -> Reconciler:
    return Reconciler(
        session_factory=session_factory,
        ledger=ledger,
        settings=settings,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def seed_pool(session_factory, clock):
    """Insert a pool directly in a given state; bets are (wallet, side, amount) tuples."""

    async def _seed(
        *,
        status: PoolStatus = PoolStatus.JOINING,
        asset: str = "BTC",
        lock_in: int = 120,
        duration: int = 300,
        total_up: int = 0,
        total_down: int = 0,
        winner: str | None = None,
        resolved_at: datetime | None = None,
        bets: tuple = (),
    ):
        lock_time = clock.now + timedelta(seconds=lock_in)
        start_time = lock_time + timedelta(seconds=60)
        async with session_factory() as db:
            store = PoolStore(db)
            pool = await store.insert_pool(
                pool_seed=secrets.token_bytes(32).hex(),
                asset=asset,
                interval_key="5m",
                duration_seconds=duration,
                status=status.value,
                lock_time=lock_time,
                start_time=start_time,
                end_time=start_time + timedelta(seconds=duration),
                strike_price=100_000_000 if status != PoolStatus.UPCOMING and status != PoolStatus.JOINING else None,
                total_up=total_up,
                total_down=total_down,
                winner=winner,
                resolved_at=resolved_at,
            )
            bet_ids = []
            for wallet, side, amount in bets:
                bet = await store.insert_bet(
                    pool_id=pool.id,
                    wallet_address=wallet,
                    side=side,
                    amount=amount,
                    deposit_tx=new_tx_ref(),
                )
                bet_ids.append(bet.id)
            await db.commit()
            return pool, bet_ids

    return _seed


@pytest_asyncio.fixture
async def async_client(session_factory, engine, reconciler, settings, oracle) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX client on the FastAPI app with services wired to the per-test database.

    ASGITransport does not run the lifespan, so app.state is populated here instead.
    """
    scheduler = PoolScheduler(engine=engine, settings=settings, oracle=oracle, templates=default_templates())
    services = {
        "session_factory": session_factory,
        "oracle": oracle,
        "engine": engine,
        "reconciler": reconciler,
        "scheduler": scheduler,
        "redis": None,
    }
    for name, service in services.items():
        setattr(app.state, name, service)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        for name in services:
            setattr(app.state, name, None)
