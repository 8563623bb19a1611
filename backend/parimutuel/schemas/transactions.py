from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from parimutuel.models.enums import Side


class _Request(BaseModel):
    # Wallet clients send camelCase; snake_case is accepted too.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DepositRequest(_Request):
    pool_id: UUID
    wallet_address: str = Field(min_length=32, max_length=44)
    side: Side
    amount: int = Field(gt=0)


class ConfirmDepositRequest(_Request):
    pool_id: UUID
    wallet_address: str = Field(min_length=32, max_length=44)
    tx_signature: str = Field(min_length=64, max_length=128)
    side: Side


class ClaimRequest(_Request):
    pool_id: UUID
    wallet_address: str = Field(min_length=32, max_length=44)


class ConfirmClaimRequest(_Request):
    bet_id: UUID
    tx_signature: str = Field(min_length=64, max_length=128)


class PayoutOut(BaseModel):
    gross: int
    fee: int
    net: int

    model_config = {"from_attributes": True}


class DepositInstructionsOut(BaseModel):
    accounts: dict[str, str]
    args: dict
    program_id: str
    pool: dict
    estimated_payout: PayoutOut

    model_config = {"from_attributes": True}


class DepositConfirmationOut(BaseModel):
    status: str
    bet_id: UUID
    pool_id: UUID
    wallet_address: str
    side: str
    amount: str
    deposit_tx: str


class ClaimInstructionsOut(BaseModel):
    bet_id: UUID
    side: str
    amount: str
    expected_payout: PayoutOut
    accounts: dict[str, str]
    program_id: str


class ClaimConfirmationOut(BaseModel):
    status: str
    bet_id: UUID
    pool_id: UUID
    wallet_address: str
    claim_tx: str
    payout_amount: str
