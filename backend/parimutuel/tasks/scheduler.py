import asyncio
import logging
import math
import signal
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from redis.asyncio import Redis

from parimutuel.adapters.oracle.base import PriceOracle
from parimutuel.core.config import Settings, get_settings
from parimutuel.core.database import AsyncSessionLocal
from parimutuel.core.logging import setup_logging
from parimutuel.services.settlement_engine import SettlementEngine
from parimutuel.services.templates import PoolTemplate, load_templates

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
TickFactory = Callable[[], Awaitable[object]]


def seconds_until_boundary(now: datetime, period_seconds: float, offset_seconds: float = 0.0) -> float:
    """Seconds from *now* to the next multiple of *period_seconds* (plus offset) since the epoch."""
    period = max(1.0, float(period_seconds))
    current = now.timestamp() - offset_seconds
    next_boundary = (math.floor(current / period) + 1) * period
    return max(0.0, next_boundary - current)


class PoolScheduler:
    """Owns the periodic jobs: one creation job per template plus three sweeps.

    Every sweep is idempotent against the store, so several schedulers (API process
    and standalone worker) may run at once.
    """

    def __init__(
        self,
        *,
        engine: SettlementEngine,
        settings: Settings,
        oracle: PriceOracle,
        templates: list[PoolTemplate] | None = None,
        authority: str | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._oracle = oracle
        self._templates = templates if templates is not None else load_templates(settings)
        self._authority = authority
        self._sleep = sleep
        self._clock = clock
        self._jobs: dict[str, asyncio.Task] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return bool(self._jobs)

    @property
    def templates(self) -> list[PoolTemplate]:
        return list(self._templates)

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "job_count": len(self._jobs),
            "authority": self._authority,
        }

    async def _run_job(self, name: str, period_seconds: float, tick: TickFactory, offset_seconds: float = 0.0) -> None:
        while True:
            await self._sleep(seconds_until_boundary(self._clock(), period_seconds, offset_seconds))
            task = asyncio.ensure_future(tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            try:
                # Cancelling the job must not abort a tick halfway through its pools.
                await asyncio.shield(task)
            except Exception:
                logger.exception("Scheduler tick failed", extra={"job": name})

    def _spawn(self, name: str, period_seconds: float, tick: TickFactory, offset_seconds: float = 0.0) -> None:
        self._jobs[name] = asyncio.create_task(
            self._run_job(name, period_seconds, tick, offset_seconds), name=f"scheduler:{name}"
        )

    async def _resolution_tick(self) -> dict:
        return {
            "resolutions": await self._engine.process_resolutions(),
            "claimable": await self._engine.process_claimable_transitions(),
        }

    async def start(self) -> None:
        if not self._settings.scheduler_enabled:
            logger.info("Scheduler disabled; not starting")
            return
        if self.is_running:
            return
        if not await self._oracle.is_healthy():
            raise RuntimeError("Price oracle health check failed; scheduler not started")

        for template in self._templates:
            self._spawn(
                f"create:{template.asset}:{template.interval_key}",
                template.period_seconds,
                lambda template=template: self._engine.create_pool(template),
            )
        self._spawn("transitions", self._settings.transition_interval_seconds, self._engine.process_status_transitions)
        self._spawn("resolutions", self._settings.resolution_interval_seconds, self._resolution_tick)
        cleanup_period = self._settings.cleanup_interval_seconds
        # Half a period off the creation boundaries, i.e. :30 past each hour by default.
        self._spawn("cleanup", cleanup_period, self._engine.cleanup_empty_pools, offset_seconds=cleanup_period / 2)

        logger.info(
            "Scheduler started",
            extra={
                "job_count": len(self._jobs),
                "templates": [f"{t.asset}:{t.interval_key}" for t in self._templates],
                "authority": self._authority,
            },
        )

    async def stop(self) -> None:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        if jobs:
            logger.info("Scheduler stopped", extra={"jobs_cancelled": len(jobs)})


async def main() -> None:
    from parimutuel.runtime import build_runtime

    setup_logging("scheduler")
    settings = get_settings()
    logger.info(
        "Starting pool scheduler worker",
        extra={
            "transition_interval_seconds": settings.transition_interval_seconds,
            "resolution_interval_seconds": settings.resolution_interval_seconds,
            "cleanup_interval_seconds": settings.cleanup_interval_seconds,
            "onchain_settlement_enabled": settings.onchain_settlement_enabled,
        },
    )

    redis: Redis | None = None
    try:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        await redis.ping()
    except Exception:
        logger.exception("Redis unavailable, scheduler running without notifications")
        redis = None

    runtime = build_runtime(settings, session_factory=AsyncSessionLocal, redis=redis)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await runtime.scheduler.start()
        await stop_event.wait()
    finally:
        await runtime.scheduler.stop()
        if redis is not None:
            await redis.aclose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
