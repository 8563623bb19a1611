import logging
from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from parimutuel.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _configure_sqlite(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two writers deadlock on
    # lock promotion. Take the write lock up front so concurrent sessions queue instead.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> AsyncEngine:
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        engine = create_async_engine(url, future=True, connect_args={"timeout": 30})
        _configure_sqlite(engine)
        return engine
    return create_async_engine(url, future=True, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


resolved_database_url = settings.resolved_database_url
resolved_database_url_source = settings.resolved_database_url_source
logger.info(
    "Database URL resolved",
    extra={
        "database_url_source": resolved_database_url_source,
        "database_host": settings.postgres_host if resolved_database_url_source == "postgres_fallback" else None,
        "database_name": settings.postgres_db if resolved_database_url_source == "postgres_fallback" else None,
    },
)

engine = build_engine(resolved_database_url)
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
