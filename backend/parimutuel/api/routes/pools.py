from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from parimutuel.api.deps import get_engine, get_scheduler
from parimutuel.core.database import get_db
from parimutuel.schemas.pools import CreateTestPoolRequest, PoolOut, SchedulerStatusOut
from parimutuel.services.pool_store import PoolStore
from parimutuel.services.settlement_engine import SettlementEngine
from parimutuel.services.templates import is_asset_supported, supported_assets
from parimutuel.tasks.scheduler import PoolScheduler

router = APIRouter()


@router.post("/pools/test", response_model=PoolOut, status_code=status.HTTP_201_CREATED)
async def create_test_pool(
    payload: CreateTestPoolRequest,
    db: AsyncSession = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
    scheduler: PoolScheduler = Depends(get_scheduler),
) -> PoolOut:
    if not is_asset_supported(payload.asset, scheduler.templates):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "VALIDATION_ERROR",
                "message": f"asset must be one of {', '.join(supported_assets(scheduler.templates))}",
            },
        )
    pool_id = await engine.create_pool_manual(
        payload.asset.strip().upper(),
        payload.interval_seconds,
        payload.join_window_seconds,
        interval_key=payload.interval_key or f"{payload.interval_seconds}s",
        lock_buffer_seconds=payload.lock_buffer_seconds,
    )
    pool = await PoolStore(db).get_pool(pool_id)
    if pool is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "POOL_CREATION_FAILED", "message": "Failed to create test pool"},
        )
    return PoolOut.model_validate(pool)


@router.get("/scheduler/status", response_model=SchedulerStatusOut)
async def scheduler_status(scheduler: PoolScheduler = Depends(get_scheduler)) -> SchedulerStatusOut:
    return SchedulerStatusOut(**scheduler.status())
