from fastapi import HTTPException, Request, status

from parimutuel.services.reconciler import ReconcileError, ReconcileErrorCode, Reconciler
from parimutuel.services.settlement_engine import SettlementEngine
from parimutuel.tasks.scheduler import PoolScheduler

RECONCILE_HTTP_STATUS: dict[ReconcileErrorCode, int] = {
    ReconcileErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ReconcileErrorCode.POOL_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReconcileErrorCode.BET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReconcileErrorCode.INVALID_POOL_STATUS: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.DEPOSIT_DEADLINE_PASSED: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.BET_EXISTS: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.TX_ALREADY_USED: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.POOL_NOT_CLAIMABLE: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.NOT_WINNER: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.ALREADY_CLAIMED: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.CLAIM_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ReconcileErrorCode.TX_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReconcileErrorCode.LEDGER_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ReconcileErrorCode.TX_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReconcileErrorCode.NO_TRANSFER_FOUND: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReconcileErrorCode.ZERO_PAYOUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReconcileErrorCode.CONFIG_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def reconcile_http_error(exc: ReconcileError) -> HTTPException:
    return HTTPException(
        status_code=RECONCILE_HTTP_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code.value, "message": exc.message},
    )


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "SERVICE_UNAVAILABLE", "message": f"{name} is not initialized"},
        )
    return service


def get_reconciler(request: Request) -> Reconciler:
    return _service(request, "reconciler")


def get_engine(request: Request) -> SettlementEngine:
    return _service(request, "engine")


def get_scheduler(request: Request) -> PoolScheduler:
    return _service(request, "scheduler")
