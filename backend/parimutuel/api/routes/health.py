from fastapi import APIRouter, Request
from sqlalchemy import text

from parimutuel.core.config import get_settings
from parimutuel.core.database import AsyncSessionLocal

router = APIRouter()


@router.get("/health/live")
async def health_live() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(request: Request) -> dict:
    redis_ok = False
    db_ok = False
    oracle_ok = False

    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            pong = await redis.ping()
            redis_ok = bool(pong)
        except Exception:
            redis_ok = False

    session_factory = getattr(request.app.state, "session_factory", None) or AsyncSessionLocal
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        db_ok = False

    oracle = getattr(request.app.state, "oracle", None)
    if oracle is not None:
        oracle_ok = await oracle.is_healthy()

    status = "ok" if db_ok and redis_ok and oracle_ok else "degraded"
    return {"status": status, "db": db_ok, "redis": redis_ok, "oracle": oracle_ok}


@router.get("/health/flags")
async def health_flags() -> dict:
    s = get_settings()
    return {
        "scheduler_enabled": s.scheduler_enabled,
        "scheduler_in_api": s.scheduler_in_api,
        "onchain_settlement_enabled": s.onchain_settlement_enabled,
        "server_claims_configured": bool(s.authority_secret_key.strip()),
        "price_source": s.price_source,
        "platform_fee_bps": s.platform_fee_bps,
    }
