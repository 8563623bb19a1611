from fastapi import APIRouter, Depends

from parimutuel.api.deps import get_reconciler, reconcile_http_error
from parimutuel.schemas.transactions import (
    ClaimConfirmationOut,
    ClaimInstructionsOut,
    ClaimRequest,
    ConfirmClaimRequest,
    ConfirmDepositRequest,
    DepositConfirmationOut,
    DepositInstructionsOut,
    DepositRequest,
    PayoutOut,
)
from parimutuel.services.reconciler import ClaimConfirmation, ReconcileError, Reconciler

router = APIRouter()


def _claim_out(result: ClaimConfirmation) -> ClaimConfirmationOut:
    return ClaimConfirmationOut(
        status=result.status,
        bet_id=result.bet_id,
        pool_id=result.pool_id,
        wallet_address=result.wallet_address,
        claim_tx=result.claim_tx,
        payout_amount=str(result.payout_amount),
    )


@router.post("/deposit", response_model=DepositInstructionsOut)
async def prepare_deposit(
    payload: DepositRequest,
    reconciler: Reconciler = Depends(get_reconciler),
) -> DepositInstructionsOut:
    try:
        result = await reconciler.prepare_deposit(
            payload.pool_id, payload.wallet_address, payload.side.value, payload.amount
        )
    except ReconcileError as exc:
        raise reconcile_http_error(exc) from exc
    return DepositInstructionsOut.model_validate(result)


@router.post("/confirm-deposit", response_model=DepositConfirmationOut)
async def confirm_deposit(
    payload: ConfirmDepositRequest,
    reconciler: Reconciler = Depends(get_reconciler),
) -> DepositConfirmationOut:
    try:
        result = await reconciler.confirm_deposit(
            payload.pool_id, payload.wallet_address, payload.tx_signature, payload.side.value
        )
    except ReconcileError as exc:
        raise reconcile_http_error(exc) from exc
    return DepositConfirmationOut(
        status=result.status,
        bet_id=result.bet_id,
        pool_id=result.pool_id,
        wallet_address=result.wallet_address,
        side=result.side,
        amount=str(result.amount),
        deposit_tx=result.deposit_tx,
    )


@router.post("/claim", response_model=ClaimInstructionsOut)
async def prepare_claim(
    payload: ClaimRequest,
    reconciler: Reconciler = Depends(get_reconciler),
) -> ClaimInstructionsOut:
    try:
        result = await reconciler.prepare_claim(payload.pool_id, payload.wallet_address)
    except ReconcileError as exc:
        raise reconcile_http_error(exc) from exc
    return ClaimInstructionsOut(
        bet_id=result.bet_id,
        side=result.side,
        amount=str(result.amount),
        expected_payout=PayoutOut.model_validate(result.payout),
        accounts=result.accounts,
        program_id=result.program_id,
    )


@router.post("/confirm-claim", response_model=ClaimConfirmationOut)
async def confirm_claim(
    payload: ConfirmClaimRequest,
    reconciler: Reconciler = Depends(get_reconciler),
) -> ClaimConfirmationOut:
    try:
        result = await reconciler.confirm_claim(payload.bet_id, payload.tx_signature)
    except ReconcileError as exc:
        raise reconcile_http_error(exc) from exc
    return _claim_out(result)


@router.post("/execute-claim", response_model=ClaimConfirmationOut)
async def execute_claim(
    payload: ClaimRequest,
    reconciler: Reconciler = Depends(get_reconciler),
) -> ClaimConfirmationOut:
    try:
        result = await reconciler.execute_claim(payload.pool_id, payload.wallet_address)
    except ReconcileError as exc:
        raise reconcile_http_error(exc) from exc
    return _claim_out(result)
