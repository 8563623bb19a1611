"""Instruction builders for the pools program and SPL token payouts.

The pools program is an Anchor program, so every instruction starts with the first
eight bytes of ``sha256("global:<name>")`` followed by Borsh-encoded arguments.
"""

from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass
from datetime import datetime

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from parimutuel.adapters.ledger.addresses import associated_token_address, pool_pda, seed_bytes, vault_pda
from parimutuel.adapters.ledger.base import LedgerWriter
from parimutuel.core.config import RENT_SYSVAR_ID, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID, Settings

logger = logging.getLogger(__name__)

MAX_ASSET_LEN = 10
SPL_TRANSFER = 3
U64_MAX = 2**64 - 1


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def _borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def _u64(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"value does not fit in u64: {value}")
    return struct.pack("<Q", value)


def load_authority(settings: Settings) -> Keypair | None:
    secret = settings.authority_secret_key_bytes
    if secret is None:
        return None
    return Keypair.from_bytes(secret)


def initialize_pool_instruction(
    *,
    program_id: str,
    pool_seed: str,
    asset: str,
    start_time: datetime,
    end_time: datetime,
    lock_time: datetime,
    usdc_mint: str,
    authority: Pubkey,
) -> Instruction:
    if len(asset.encode("utf-8")) > MAX_ASSET_LEN:
        raise ValueError(f"asset symbol longer than {MAX_ASSET_LEN} bytes: {asset}")
    data = (
        anchor_discriminator("initialize_pool")
        + seed_bytes(pool_seed)
        + _borsh_string(asset)
        + struct.pack("<qqq", int(start_time.timestamp()), int(end_time.timestamp()), int(lock_time.timestamp()))
    )
    accounts = [
        AccountMeta(pool_pda(pool_seed, program_id), is_signer=False, is_writable=True),
        AccountMeta(vault_pda(pool_seed, program_id), is_signer=False, is_writable=True),
        AccountMeta(Pubkey.from_string(usdc_mint), is_signer=False, is_writable=False),
        AccountMeta(authority, is_signer=True, is_writable=True),
        AccountMeta(Pubkey.from_string(SYSTEM_PROGRAM_ID), is_signer=False, is_writable=False),
        AccountMeta(Pubkey.from_string(TOKEN_PROGRAM_ID), is_signer=False, is_writable=False),
        AccountMeta(Pubkey.from_string(RENT_SYSVAR_ID), is_signer=False, is_writable=False),
    ]
    return Instruction(Pubkey.from_string(program_id), data, accounts)


def resolve_instruction(
    *,
    program_id: str,
    pool_seed: str,
    strike_price: int,
    final_price: int,
    authority: Pubkey,
) -> Instruction:
    data = anchor_discriminator("resolve") + _u64(strike_price) + _u64(final_price)
    accounts = [
        AccountMeta(pool_pda(pool_seed, program_id), is_signer=False, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
    ]
    return Instruction(Pubkey.from_string(program_id), data, accounts)


def token_transfer_instruction(*, source: Pubkey, destination: Pubkey, owner: Pubkey, amount: int) -> Instruction:
    data = bytes([SPL_TRANSFER]) + _u64(amount)
    accounts = [
        AccountMeta(source, is_signer=False, is_writable=True),
        AccountMeta(destination, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(Pubkey.from_string(TOKEN_PROGRAM_ID), data, accounts)


def sign_transaction(instructions: list[Instruction], signer: Keypair, recent_blockhash: str) -> Transaction:
    return Transaction.new_signed_with_payer(
        instructions,
        signer.pubkey(),
        [signer],
        Hash.from_string(recent_blockhash),
    )


def build_payout_transaction(
    *,
    authority: Keypair,
    recipient: Pubkey,
    usdc_mint: str,
    amount: int,
    recent_blockhash: str,
) -> Transaction:
    """Treasury-to-bettor USDC transfer signed by the authority."""
    instruction = token_transfer_instruction(
        source=associated_token_address(authority.pubkey(), usdc_mint),
        destination=associated_token_address(recipient, usdc_mint),
        owner=authority.pubkey(),
        amount=amount,
    )
    return sign_transaction([instruction], authority, recent_blockhash)


@dataclass(frozen=True, slots=True)
class SettlementAttempt:
    attempted: bool
    succeeded: bool = False
    signature: str | None = None
    error: str | None = None


class OnchainSettlement:
    """Best-effort mirror of pool creation and resolution onto the pools program.

    Every call returns a SettlementAttempt and never raises; the database stays the
    book of record whatever happens here.
    """

    def __init__(self, ledger: LedgerWriter, settings: Settings) -> None:
        self._ledger = ledger
        self._settings = settings
        self._authority = load_authority(settings)

    @property
    def enabled(self) -> bool:
        return self._settings.onchain_settlement_enabled and self._authority is not None

    @property
    def authority_address(self) -> str | None:
        return str(self._authority.pubkey()) if self._authority is not None else None

    async def _submit(self, action: str, instruction_factory) -> SettlementAttempt:
        if not self.enabled:
            return SettlementAttempt(attempted=False)
        assert self._authority is not None
        try:
            instruction = instruction_factory(self._authority.pubkey())
            blockhash = await self._ledger.get_latest_blockhash()
            transaction = sign_transaction([instruction], self._authority, blockhash)
            signature = await self._ledger.send_transaction(bytes(transaction))
            status = await self._ledger.wait_for_confirmation(
                signature, self._settings.ledger_confirm_timeout_seconds
            )
        except Exception as exc:
            logger.warning(
                "On-chain settlement call failed",
                exc_info=True,
                extra={"action": action},
            )
            return SettlementAttempt(attempted=True, error=str(exc))

        if status.failed or not status.found:
            error = status.error or "not confirmed"
            logger.warning(
                "On-chain settlement not confirmed",
                extra={"action": action, "signature": signature, "error": error},
            )
            return SettlementAttempt(attempted=True, signature=signature, error=error)
        logger.info("On-chain settlement confirmed", extra={"action": action, "signature": signature})
        return SettlementAttempt(attempted=True, succeeded=True, signature=signature)

    async def initialize_pool(
        self,
        *,
        pool_seed: str,
        asset: str,
        start_time: datetime,
        end_time: datetime,
        lock_time: datetime,
    ) -> SettlementAttempt:
        return await self._submit(
            "initialize_pool",
            lambda authority: initialize_pool_instruction(
                program_id=self._settings.program_id,
                pool_seed=pool_seed,
                asset=asset,
                start_time=start_time,
                end_time=end_time,
                lock_time=lock_time,
                usdc_mint=self._settings.usdc_mint,
                authority=authority,
            ),
        )

    async def resolve_pool(self, *, pool_seed: str, strike_price: int, final_price: int) -> SettlementAttempt:
        return await self._submit(
            "resolve",
            lambda authority: resolve_instruction(
                program_id=self._settings.program_id,
                pool_seed=pool_seed,
                strike_price=strike_price,
                final_price=final_price,
                authority=authority,
            ),
        )
