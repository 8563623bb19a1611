"""Deposit and claim reconciliation against the ledger.

Callers tell us what they did on-chain; nothing is written until the ledger itself
confirms it. The amount of a deposit always comes from the ledger's balance change on
the pool vault, never from the request. All ledger I/O happens before the database
transaction that records the outcome, so a ledger failure leaves no partial state.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parimutuel.adapters.ledger.addresses import (
    associated_token_address,
    parse_pubkey,
    pool_pda,
    user_bet_pda,
    vault_pda,
)
from parimutuel.adapters.ledger.base import LedgerTransaction, LedgerVerifier, LedgerWriter
from parimutuel.adapters.ledger.errors import LedgerUpstreamError
from parimutuel.adapters.ledger.program import build_payout_transaction, load_authority
from parimutuel.core.config import SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID, Settings
from parimutuel.models.bet import Bet
from parimutuel.models.enums import CLAIM_STATUSES, DEPOSIT_STATUSES, EventType, PoolStatus, Side
from parimutuel.models.pool import Pool
from parimutuel.services.notifications import NotificationSink, NullNotificationSink
from parimutuel.services.payouts import PayoutBreakdown, compute_payout, estimate_payout
from parimutuel.services.pool_store import PoolStore
from parimutuel.services.settlement_engine import Clock, utc_now

logger = logging.getLogger(__name__)

BET_ENTITY = "bet"
MIN_TX_REF_LEN = 64
MAX_TX_REF_LEN = 128


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    EXTERNAL_UNAVAILABLE = "external_unavailable"
    EXTERNAL_FAILED = "external_failed"
    CONFIGURATION = "configuration"
    INVARIANT = "invariant"


class ReconcileErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    POOL_NOT_FOUND = "POOL_NOT_FOUND"
    BET_NOT_FOUND = "BET_NOT_FOUND"
    INVALID_POOL_STATUS = "INVALID_POOL_STATUS"
    DEPOSIT_DEADLINE_PASSED = "DEPOSIT_DEADLINE_PASSED"
    BET_EXISTS = "BET_EXISTS"
    TX_ALREADY_USED = "TX_ALREADY_USED"
    TX_NOT_FOUND = "TX_NOT_FOUND"
    TX_FAILED = "TX_FAILED"
    NO_TRANSFER_FOUND = "NO_TRANSFER_FOUND"
    POOL_NOT_CLAIMABLE = "POOL_NOT_CLAIMABLE"
    NOT_WINNER = "NOT_WINNER"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    ZERO_PAYOUT = "ZERO_PAYOUT"
    CONFIG_ERROR = "CONFIG_ERROR"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    CLAIM_IN_PROGRESS = "CLAIM_IN_PROGRESS"


_CATEGORIES: dict[ReconcileErrorCode, ErrorCategory] = {
    ReconcileErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    ReconcileErrorCode.POOL_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ReconcileErrorCode.BET_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ReconcileErrorCode.INVALID_POOL_STATUS: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.DEPOSIT_DEADLINE_PASSED: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.BET_EXISTS: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.TX_ALREADY_USED: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.POOL_NOT_CLAIMABLE: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.NOT_WINNER: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.ALREADY_CLAIMED: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.CLAIM_IN_PROGRESS: ErrorCategory.STATE_CONFLICT,
    ReconcileErrorCode.TX_NOT_FOUND: ErrorCategory.EXTERNAL_UNAVAILABLE,
    ReconcileErrorCode.LEDGER_UNAVAILABLE: ErrorCategory.EXTERNAL_UNAVAILABLE,
    ReconcileErrorCode.TX_FAILED: ErrorCategory.EXTERNAL_FAILED,
    ReconcileErrorCode.NO_TRANSFER_FOUND: ErrorCategory.EXTERNAL_FAILED,
    ReconcileErrorCode.CONFIG_ERROR: ErrorCategory.CONFIGURATION,
    ReconcileErrorCode.ZERO_PAYOUT: ErrorCategory.INVARIANT,
}


class ReconcileError(Exception):
    """A rejected reconciliation request with a stable machine-readable code."""

    def __init__(self, code: ReconcileErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        self.category = _CATEGORIES[code]
        super().__init__(f"[{code}] {message}")

    @property
    def retryable(self) -> bool:
        return self.category == ErrorCategory.EXTERNAL_UNAVAILABLE or self.code == ReconcileErrorCode.CLAIM_IN_PROGRESS


@dataclass(frozen=True, slots=True)
class DepositInstructions:
    accounts: dict[str, str]
    args: dict
    program_id: str
    pool: dict
    estimated_payout: PayoutBreakdown


@dataclass(frozen=True, slots=True)
class DepositConfirmation:
    status: str  # confirmed | already_confirmed
    bet_id: uuid.UUID
    pool_id: uuid.UUID
    wallet_address: str
    side: str
    amount: int
    deposit_tx: str


@dataclass(frozen=True, slots=True)
class ClaimInstructions:
    bet_id: uuid.UUID
    side: str
    amount: int
    payout: PayoutBreakdown
    accounts: dict[str, str]
    program_id: str


@dataclass(frozen=True, slots=True)
class ClaimConfirmation:
    status: str  # confirmed | already_confirmed
    bet_id: uuid.UUID
    pool_id: uuid.UUID
    wallet_address: str
    claim_tx: str
    payout_amount: int
    extra: dict = field(default_factory=dict)


def _validate_wallet(wallet_address: str):
    try:
        return parse_pubkey(wallet_address)
    except ValueError as exc:
        raise ReconcileError(ReconcileErrorCode.VALIDATION_ERROR, f"walletAddress: {exc}") from exc


def _validate_side(side: str) -> Side:
    try:
        return Side(side)
    except ValueError as exc:
        raise ReconcileError(ReconcileErrorCode.VALIDATION_ERROR, "side must be UP or DOWN") from exc


def _validate_tx_ref(tx_ref: str) -> str:
    candidate = (tx_ref or "").strip()
    if not MIN_TX_REF_LEN <= len(candidate) <= MAX_TX_REF_LEN:
        raise ReconcileError(
            ReconcileErrorCode.VALIDATION_ERROR,
            f"txSignature must be {MIN_TX_REF_LEN}-{MAX_TX_REF_LEN} characters",
        )
    return candidate


def _check_claim_eligibility(pool: Pool, bet: Bet | None) -> Bet:
    if bet is None:
        raise ReconcileError(ReconcileErrorCode.BET_NOT_FOUND, "No bet found for this wallet in this pool")
    if pool.status not in CLAIM_STATUSES:
        raise ReconcileError(
            ReconcileErrorCode.POOL_NOT_CLAIMABLE,
            f"Pool is in {pool.status} status, claims only allowed after resolution",
        )
    if pool.winner != bet.side:
        raise ReconcileError(ReconcileErrorCode.NOT_WINNER, "Bet did not win")
    return bet


class Reconciler:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerVerifier,
        settings: Settings,
        notifier: NotificationSink | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._settings = settings
        self._notifier = notifier or NullNotificationSink()
        self._clock = clock

    def _addresses(self, pool: Pool, user) -> dict[str, str]:
        program_id = self._settings.program_id
        pool_address = pool_pda(pool.pool_seed, program_id)
        return {
            "pool": str(pool_address),
            "vault": str(vault_pda(pool.pool_seed, program_id)),
            "userBet": str(user_bet_pda(pool_address, user, program_id)),
            "userTokenAccount": str(associated_token_address(user, self._settings.usdc_mint)),
            "user": str(user),
            "tokenProgram": TOKEN_PROGRAM_ID,
            "systemProgram": SYSTEM_PROGRAM_ID,
        }

    async def _fetch_transaction(self, tx_ref: str) -> LedgerTransaction:
        try:
            tx = await self._ledger.get_transaction(tx_ref)
        except LedgerUpstreamError as exc:
            logger.warning("Ledger lookup failed", extra={"tx_ref": tx_ref, "method": exc.method, "reason": exc.reason})
            raise ReconcileError(ReconcileErrorCode.LEDGER_UNAVAILABLE, "Ledger is unavailable, retry later") from exc
        if not tx.found:
            raise ReconcileError(
                ReconcileErrorCode.TX_NOT_FOUND,
                "Transaction not found on-chain. It may still be processing.",
            )
        if not tx.succeeded:
            raise ReconcileError(ReconcileErrorCode.TX_FAILED, f"Transaction failed on-chain: {tx.error}")
        return tx

    async def prepare_deposit(
        self,
        pool_id: uuid.UUID,
        wallet_address: str,
        side: str,
        amount: int,
    ) -> DepositInstructions:
        user = _validate_wallet(wallet_address)
        bet_side = _validate_side(side)
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ReconcileError(ReconcileErrorCode.VALIDATION_ERROR, "amount must be an integer")
        if not self._settings.min_deposit_amount <= amount <= self._settings.max_deposit_amount:
            raise ReconcileError(
                ReconcileErrorCode.VALIDATION_ERROR,
                f"amount must be within {self._settings.min_deposit_amount}..{self._settings.max_deposit_amount}",
            )

        async with self._session_factory() as db:
            store = PoolStore(db)
            pool = await store.get_pool(pool_id)
            if pool is None:
                raise ReconcileError(ReconcileErrorCode.POOL_NOT_FOUND, "Pool not found")
            if pool.status != PoolStatus.JOINING:
                raise ReconcileError(
                    ReconcileErrorCode.INVALID_POOL_STATUS,
                    f"Pool is in {pool.status} status, deposits only allowed during JOINING",
                )
            if self._clock() > pool.lock_time:
                raise ReconcileError(ReconcileErrorCode.DEPOSIT_DEADLINE_PASSED, "Deposit deadline has passed")
            if await store.get_bet_for_wallet(pool.id, str(user)) is not None:
                raise ReconcileError(ReconcileErrorCode.BET_EXISTS, "Wallet already has a bet in this pool")

            return DepositInstructions(
                accounts=self._addresses(pool, user),
                args={"side": {"up": {}} if bet_side == Side.UP else {"down": {}}, "amount": str(amount)},
                program_id=self._settings.program_id,
                pool={
                    "id": str(pool.id),
                    "pool_seed": pool.pool_seed,
                    "asset": pool.asset,
                    "lock_time": pool.lock_time.isoformat(),
                },
                estimated_payout=estimate_payout(
                    amount=amount,
                    side=bet_side,
                    total_up=pool.total_up,
                    total_down=pool.total_down,
                    fee_bps=self._settings.platform_fee_bps,
                ),
            )

    def _existing_deposit(self, bet: Bet, tx_ref: str) -> DepositConfirmation:
        if bet.deposit_tx != tx_ref:
            raise ReconcileError(ReconcileErrorCode.BET_EXISTS, "Bet already exists for this wallet and pool")
        return DepositConfirmation(
            status="already_confirmed",
            bet_id=bet.id,
            pool_id=bet.pool_id,
            wallet_address=bet.wallet_address,
            side=bet.side,
            amount=bet.amount,
            deposit_tx=bet.deposit_tx,
        )

    async def _resolve_deposit_conflict(self, pool_id: uuid.UUID, wallet_address: str, tx_ref: str) -> DepositConfirmation:
        async with self._session_factory() as db:
            store = PoolStore(db)
            bet = await store.get_bet_for_wallet(pool_id, wallet_address)
            if bet is not None:
                return self._existing_deposit(bet, tx_ref)
            if await store.get_bet_by_deposit_tx(tx_ref) is not None:
                raise ReconcileError(ReconcileErrorCode.TX_ALREADY_USED, "Transaction already recorded for another bet")
        raise RuntimeError("bet insert conflicted but no conflicting row was found")

    async def confirm_deposit(
        self,
        pool_id: uuid.UUID,
        wallet_address: str,
        tx_ref: str,
        side: str,
    ) -> DepositConfirmation:
        user = _validate_wallet(wallet_address)
        wallet = str(user)
        bet_side = _validate_side(side)
        tx_ref = _validate_tx_ref(tx_ref)

        async with self._session_factory() as db:
            store = PoolStore(db)
            pool = await store.get_pool(pool_id)
            if pool is None:
                raise ReconcileError(ReconcileErrorCode.POOL_NOT_FOUND, "Pool not found")
            existing = await store.get_bet_for_wallet(pool_id, wallet)
            if existing is not None:
                return self._existing_deposit(existing, tx_ref)
            if await store.get_bet_by_deposit_tx(tx_ref) is not None:
                raise ReconcileError(ReconcileErrorCode.TX_ALREADY_USED, "Transaction already recorded for another bet")
            if pool.status not in DEPOSIT_STATUSES:
                raise ReconcileError(
                    ReconcileErrorCode.INVALID_POOL_STATUS,
                    f"Pool is in {pool.status} status, deposits are closed",
                )
            vault = str(vault_pda(pool.pool_seed, self._settings.program_id))
            lock_time = pool.lock_time

        tx = await self._fetch_transaction(tx_ref)
        landed_at = tx.block_time or self._clock()
        if landed_at > lock_time:
            logger.info(
                "Late deposit rejected",
                extra={"pool_id": str(pool_id), "tx_ref": tx_ref, "landed_at": landed_at.isoformat()},
            )
            raise ReconcileError(
                ReconcileErrorCode.DEPOSIT_DEADLINE_PASSED,
                "Transfer landed after the pool's lock time",
            )
        amount = tx.delta_for(vault)
        if amount <= 0:
            raise ReconcileError(ReconcileErrorCode.NO_TRANSFER_FOUND, "No USDC transfer to the pool vault found")

        async with self._session_factory() as db:
            store = PoolStore(db)
            try:
                bet = await store.insert_bet(
                    pool_id=pool_id,
                    wallet_address=wallet,
                    side=bet_side.value,
                    amount=amount,
                    deposit_tx=tx_ref,
                )
            except IntegrityError:
                await db.rollback()
                logger.info(
                    "Concurrent deposit confirmation detected",
                    extra={"pool_id": str(pool_id), "wallet_address": wallet, "tx_ref": tx_ref},
                )
                return await self._resolve_deposit_conflict(pool_id, wallet, tx_ref)

            if not await store.increment_totals(pool_id, bet_side, amount, DEPOSIT_STATUSES):
                await db.rollback()
                raise ReconcileError(ReconcileErrorCode.INVALID_POOL_STATUS, "Pool closed before the deposit was recorded")
            bet_id = bet.id
            await store.append_event(
                EventType.DEPOSIT_CONFIRMED,
                BET_ENTITY,
                str(bet_id),
                {
                    "pool_id": str(pool_id),
                    "wallet_address": wallet,
                    "side": bet_side.value,
                    "amount": str(amount),
                    "tx_ref": tx_ref,
                },
            )
            pool = await store.get_pool(pool_id)
            totals = {"total_up": pool.total_up, "total_down": pool.total_down}
            await db.commit()

        logger.info(
            "Deposit confirmed",
            extra={
                "pool_id": str(pool_id),
                "bet_id": str(bet_id),
                "wallet_address": wallet,
                "side": bet_side.value,
                "amount": amount,
            },
        )
        await self._notifier.emit_pool_status_changed(pool_id, totals)
        return DepositConfirmation(
            status="confirmed",
            bet_id=bet_id,
            pool_id=pool_id,
            wallet_address=wallet,
            side=bet_side.value,
            amount=amount,
            deposit_tx=tx_ref,
        )

    def _payout_for(self, pool: Pool, bet: Bet) -> PayoutBreakdown:
        return compute_payout(
            amount=bet.amount,
            side=bet.side,
            winner=pool.winner,
            total_up=pool.total_up,
            total_down=pool.total_down,
            fee_bps=self._settings.platform_fee_bps,
        )

    async def prepare_claim(self, pool_id: uuid.UUID, wallet_address: str) -> ClaimInstructions:
        user = _validate_wallet(wallet_address)
        async with self._session_factory() as db:
            store = PoolStore(db)
            pool = await store.get_pool(pool_id)
            if pool is None:
                raise ReconcileError(ReconcileErrorCode.POOL_NOT_FOUND, "Pool not found")
            bet = _check_claim_eligibility(pool, await store.get_bet_for_wallet(pool_id, str(user)))
            if bet.claimed:
                raise ReconcileError(ReconcileErrorCode.ALREADY_CLAIMED, "Payout already claimed")

            accounts = self._addresses(pool, user)
            accounts.pop("systemProgram")
            return ClaimInstructions(
                bet_id=bet.id,
                side=bet.side,
                amount=bet.amount,
                payout=self._payout_for(pool, bet),
                accounts=accounts,
                program_id=self._settings.program_id,
            )

    def _existing_claim(self, bet: Bet, tx_ref: str) -> ClaimConfirmation:
        if bet.claim_tx != tx_ref:
            raise ReconcileError(ReconcileErrorCode.ALREADY_CLAIMED, "Bet already claimed")
        return ClaimConfirmation(
            status="already_confirmed",
            bet_id=bet.id,
            pool_id=bet.pool_id,
            wallet_address=bet.wallet_address,
            claim_tx=bet.claim_tx,
            payout_amount=bet.payout_amount or 0,
        )

    async def _finalize_claim(
        self,
        bet_id: uuid.UUID,
        pool_id: uuid.UUID,
        wallet_address: str,
        tx_ref: str,
        payout: PayoutBreakdown,
        source: str,
    ) -> ClaimConfirmation:
        async with self._session_factory() as db:
            store = PoolStore(db)
            try:
                marked = await store.mark_claimed(bet_id, tx_ref, payout.net)
            except IntegrityError as exc:
                await db.rollback()
                raise ReconcileError(
                    ReconcileErrorCode.TX_ALREADY_USED, "Transaction already recorded for another claim"
                ) from exc
            if not marked:
                await db.rollback()
                bet = await store.get_bet(bet_id)
                return self._existing_claim(bet, tx_ref)
            await store.append_event(
                EventType.CLAIM_CONFIRMED,
                BET_ENTITY,
                str(bet_id),
                {
                    "pool_id": str(pool_id),
                    "wallet_address": wallet_address,
                    "payout_amount": str(payout.net),
                    "gross_payout": str(payout.gross),
                    "fee": str(payout.fee),
                    "tx_ref": tx_ref,
                    "source": source,
                },
            )
            await db.commit()

        logger.info(
            "Claim confirmed",
            extra={
                "pool_id": str(pool_id),
                "bet_id": str(bet_id),
                "wallet_address": wallet_address,
                "payout_amount": payout.net,
                "source": source,
            },
        )
        return ClaimConfirmation(
            status="confirmed",
            bet_id=bet_id,
            pool_id=pool_id,
            wallet_address=wallet_address,
            claim_tx=tx_ref,
            payout_amount=payout.net,
            extra={"gross": payout.gross, "fee": payout.fee},
        )

    async def confirm_claim(self, bet_id: uuid.UUID, tx_ref: str) -> ClaimConfirmation:
        tx_ref = _validate_tx_ref(tx_ref)
        async with self._session_factory() as db:
            store = PoolStore(db)
            bet = await store.get_bet(bet_id)
            if bet is None:
                raise ReconcileError(ReconcileErrorCode.BET_NOT_FOUND, "Bet not found")
            if bet.claimed:
                return self._existing_claim(bet, tx_ref)
            if await store.get_bet_by_claim_tx(tx_ref) is not None:
                raise ReconcileError(ReconcileErrorCode.TX_ALREADY_USED, "Transaction already recorded for another claim")
            pool = await store.get_pool(bet.pool_id)
            if pool is None:
                raise ReconcileError(ReconcileErrorCode.POOL_NOT_FOUND, "Pool not found")
            _check_claim_eligibility(pool, bet)
            payout = self._payout_for(pool, bet)
            pool_id, wallet = pool.id, bet.wallet_address
            user_token_account = str(associated_token_address(parse_pubkey(wallet), self._settings.usdc_mint))
            vault = str(vault_pda(pool.pool_seed, self._settings.program_id))

        tx = await self._fetch_transaction(tx_ref)
        # The program's claim pays out of this pool's vault into the bettor's token account.
        if tx.delta_for(vault) >= 0 or tx.delta_for(user_token_account) <= 0:
            raise ReconcileError(
                ReconcileErrorCode.NO_TRANSFER_FOUND, "No USDC transfer from the pool vault to the bettor found"
            )
        return await self._finalize_claim(bet_id, pool_id, wallet, tx_ref, payout, source="client")

    async def _settle_prior_submission(self, bet: Bet, payout: PayoutBreakdown) -> ClaimConfirmation | None:
        """Resolve an earlier server submission from ledger truth.

        Returns the confirmation when the earlier transfer landed, None once the
        reservation has been released, and raises CLAIM_IN_PROGRESS while it may still land.
        """
        prior_tx = bet.claim_submitted_tx
        try:
            tx = await self._ledger.get_transaction(prior_tx)
        except LedgerUpstreamError as exc:
            raise ReconcileError(ReconcileErrorCode.LEDGER_UNAVAILABLE, "Ledger is unavailable, retry later") from exc

        if tx.found and tx.succeeded:
            return await self._finalize_claim(bet.id, bet.pool_id, bet.wallet_address, prior_tx, payout, source="server")

        if not tx.found:
            submitted_at = bet.claim_submitted_at or self._clock()
            if self._clock() - submitted_at < timedelta(seconds=self._settings.claim_resubmit_after_seconds):
                raise ReconcileError(ReconcileErrorCode.CLAIM_IN_PROGRESS, "A payout transfer is already pending")

        async with self._session_factory() as db:
            released = await PoolStore(db).release_claim(bet.id, prior_tx)
            await db.commit()
        logger.info(
            "Stale payout submission released",
            extra={"bet_id": str(bet.id), "tx_ref": prior_tx, "found": tx.found, "released": released},
        )
        return None

    async def execute_claim(self, pool_id: uuid.UUID, wallet_address: str) -> ClaimConfirmation:
        user = _validate_wallet(wallet_address)
        async with self._session_factory() as db:
            store = PoolStore(db)
            pool = await store.get_pool(pool_id)
            if pool is None:
                raise ReconcileError(ReconcileErrorCode.POOL_NOT_FOUND, "Pool not found")
            bet = _check_claim_eligibility(pool, await store.get_bet_for_wallet(pool_id, str(user)))
            if bet.claimed:
                if bet.claim_tx is not None and bet.claim_tx == bet.claim_submitted_tx:
                    return self._existing_claim(bet, bet.claim_tx)
                raise ReconcileError(ReconcileErrorCode.ALREADY_CLAIMED, "Payout already claimed")
            payout = self._payout_for(pool, bet)

        authority = load_authority(self._settings)
        if authority is None or not isinstance(self._ledger, LedgerWriter):
            raise ReconcileError(ReconcileErrorCode.CONFIG_ERROR, "Payout authority is not configured")
        if payout.net <= 0:
            raise ReconcileError(ReconcileErrorCode.ZERO_PAYOUT, "Computed payout is zero")

        if bet.claim_submitted_tx is not None:
            settled = await self._settle_prior_submission(bet, payout)
            if settled is not None:
                return settled

        try:
            blockhash = await self._ledger.get_latest_blockhash()
        except LedgerUpstreamError as exc:
            raise ReconcileError(ReconcileErrorCode.LEDGER_UNAVAILABLE, "Ledger is unavailable, retry later") from exc
        transaction = build_payout_transaction(
            authority=authority,
            recipient=user,
            usdc_mint=self._settings.usdc_mint,
            amount=payout.net,
            recent_blockhash=blockhash,
        )
        signature = str(transaction.signatures[0])

        async with self._session_factory() as db:
            store = PoolStore(db)
            if not await store.reserve_claim(bet.id, signature, self._clock()):
                await db.rollback()
                raise ReconcileError(ReconcileErrorCode.CLAIM_IN_PROGRESS, "A payout transfer is already pending")
            await store.append_event(
                EventType.CLAIM_SUBMITTED,
                BET_ENTITY,
                str(bet.id),
                {"pool_id": str(pool_id), "tx_ref": signature, "payout_amount": str(payout.net)},
            )
            await db.commit()

        logger.info(
            "Payout transfer submitting",
            extra={"bet_id": str(bet.id), "tx_ref": signature, "payout_amount": payout.net},
        )
        try:
            await self._ledger.send_transaction(bytes(transaction))
            status = await self._ledger.wait_for_confirmation(
                signature, self._settings.ledger_confirm_timeout_seconds
            )
        except LedgerUpstreamError as exc:
            # The transfer may still have reached the cluster; the reservation stays until
            # a later call can tell from the ledger.
            raise ReconcileError(ReconcileErrorCode.LEDGER_UNAVAILABLE, "Ledger is unavailable, retry later") from exc

        if status.failed:
            async with self._session_factory() as db:
                await PoolStore(db).release_claim(bet.id, signature)
                await db.commit()
            raise ReconcileError(ReconcileErrorCode.TX_FAILED, f"Payout transfer failed on-chain: {status.error}")
        if not status.found or status.confirmation_status is None:
            raise ReconcileError(ReconcileErrorCode.CLAIM_IN_PROGRESS, "Payout transfer not confirmed yet")

        try:
            tx = await self._ledger.get_transaction(signature)
        except LedgerUpstreamError as exc:
            raise ReconcileError(ReconcileErrorCode.LEDGER_UNAVAILABLE, "Ledger is unavailable, retry later") from exc
        if not tx.found:
            raise ReconcileError(ReconcileErrorCode.CLAIM_IN_PROGRESS, "Payout transfer not visible yet")
        if not tx.succeeded:
            async with self._session_factory() as db:
                await PoolStore(db).release_claim(bet.id, signature)
                await db.commit()
            raise ReconcileError(ReconcileErrorCode.TX_FAILED, f"Payout transfer failed on-chain: {tx.error}")

        return await self._finalize_claim(bet.id, pool_id, bet.wallet_address, signature, payout, source="server")
