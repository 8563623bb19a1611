from parimutuel.schemas.pools import CreateTestPoolRequest, PoolOut, SchedulerStatusOut
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

__all__ = [
    "ClaimConfirmationOut",
    "ClaimInstructionsOut",
    "ClaimRequest",
    "ConfirmClaimRequest",
    "ConfirmDepositRequest",
    "CreateTestPoolRequest",
    "DepositConfirmationOut",
    "DepositInstructionsOut",
    "DepositRequest",
    "PayoutOut",
    "PoolOut",
    "SchedulerStatusOut",
]
