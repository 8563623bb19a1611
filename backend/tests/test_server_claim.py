import json

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from conftest import new_tx_ref, new_wallet
from parimutuel.adapters.ledger.addresses import associated_token_address
from parimutuel.adapters.ledger.base import LedgerTransaction, SignatureStatus
from parimutuel.adapters.ledger.errors import LedgerUpstreamError
from parimutuel.models.enums import EventType, PoolStatus
from parimutuel.services.pool_store import PoolStore
from parimutuel.services.reconciler import ReconcileError, ReconcileErrorCode, Reconciler


@pytest.fixture
def authority() -> Keypair:
    return Keypair()


@pytest.fixture
def claim_settings(settings, authority):
    return settings.model_copy(update={"authority_secret_key": json.dumps(list(bytes(authority)))})


@pytest.fixture
def server_reconciler(session_factory, ledger, claim_settings, notifier, clock) -> Reconciler:
    return Reconciler(
        session_factory=session_factory,
        ledger=ledger,
        settings=claim_settings,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def winner() -> str:
    return new_wallet()


@pytest.fixture
def claimable_pool(seed_pool, winner, clock):
    async def _make(total_up: int = 1000):
        return await seed_pool(
            status=PoolStatus.CLAIMABLE,
            winner="UP",
            resolved_at=clock.now,
            total_up=total_up,
            total_down=500,
            bets=((winner, "UP", 100),),
        )

    return _make


def _payout_landed(wallet: str, settings, amount: int = 143) -> LedgerTransaction:
    ata = str(associated_token_address(Pubkey.from_string(wallet), settings.usdc_mint))
    return LedgerTransaction(found=True, succeeded=True, balance_deltas=((ata, amount),))


async def _get_bet(session_factory, bet_id):
    async with session_factory() as db:
        return await PoolStore(db).get_bet(bet_id)


async def test_execute_claim_requires_authority(reconciler, claimable_pool, winner) -> None:
    pool, _ = await claimable_pool()

    with pytest.raises(ReconcileError) as exc_info:
        await reconciler.execute_claim(pool.id, winner)
    assert exc_info.value.code == ReconcileErrorCode.CONFIG_ERROR


async def test_execute_claim_refuses_zero_payout(server_reconciler, claimable_pool, winner, ledger) -> None:
    pool, _ = await claimable_pool(total_up=0)

    with pytest.raises(ReconcileError) as exc_info:
        await server_reconciler.execute_claim(pool.id, winner)
    assert exc_info.value.code == ReconcileErrorCode.ZERO_PAYOUT
    assert ledger.sent == []


async def test_execute_claim_sends_signed_transfer(
    server_reconciler, claimable_pool, winner, ledger, claim_settings, session_factory
) -> None:
    pool, bet_ids = await claimable_pool()
    ledger.on_send = _payout_landed(winner, claim_settings)

    result = await server_reconciler.execute_claim(pool.id, winner)

    assert result.status == "confirmed"
    assert result.payout_amount == 143
    assert len(ledger.sent) == 1
    bet = await _get_bet(session_factory, bet_ids[0])
    assert bet.claimed is True
    assert bet.claim_tx == result.claim_tx == bet.claim_submitted_tx
    async with session_factory() as db:
        events = await PoolStore(db).list_events(entity_id=str(bet_ids[0]))
    assert [event.event_type for event in events] == [EventType.CLAIM_SUBMITTED, EventType.CLAIM_CONFIRMED]
    assert events[1].payload["source"] == "server"

    again = await server_reconciler.execute_claim(pool.id, winner)
    assert again.status == "already_confirmed"
    assert again.claim_tx == result.claim_tx
    assert len(ledger.sent) == 1


async def test_pending_submission_blocks_resubmit_until_window_passes(
    server_reconciler, claimable_pool, winner, ledger, claim_settings, session_factory, clock
) -> None:
    pool, bet_ids = await claimable_pool()
    pending_tx = new_tx_ref()
    async with session_factory() as db:
        assert await PoolStore(db).reserve_claim(bet_ids[0], pending_tx, clock.now)
        await db.commit()

    with pytest.raises(ReconcileError) as exc_info:
        await server_reconciler.execute_claim(pool.id, winner)
    assert exc_info.value.code == ReconcileErrorCode.CLAIM_IN_PROGRESS
    assert ledger.sent == []

    clock.advance(121)
    ledger.on_send = _payout_landed(winner, claim_settings)
    result = await server_reconciler.execute_claim(pool.id, winner)

    assert result.status == "confirmed"
    assert result.claim_tx != pending_tx
    assert len(ledger.sent) == 1


async def test_prior_submission_that_landed_is_finalized_without_resending(
    server_reconciler, claimable_pool, winner, ledger, claim_settings, session_factory, clock
) -> None:
    pool, bet_ids = await claimable_pool()
    landed_tx = new_tx_ref()
    ledger.transactions[landed_tx] = _payout_landed(winner, claim_settings)
    async with session_factory() as db:
        await PoolStore(db).reserve_claim(bet_ids[0], landed_tx, clock.now)
        await db.commit()

    result = await server_reconciler.execute_claim(pool.id, winner)

    assert result.claim_tx == landed_tx
    assert ledger.sent == []
    assert (await _get_bet(session_factory, bet_ids[0])).claimed is True


async def test_failed_transfer_releases_reservation(
    server_reconciler, claimable_pool, winner, ledger, session_factory
) -> None:
    pool, bet_ids = await claimable_pool()
    ledger.sent_status = SignatureStatus(found=True, confirmation_status="confirmed", error="InsufficientFunds")

    with pytest.raises(ReconcileError) as exc_info:
        await server_reconciler.execute_claim(pool.id, winner)

    assert exc_info.value.code == ReconcileErrorCode.TX_FAILED
    bet = await _get_bet(session_factory, bet_ids[0])
    assert bet.claimed is False
    assert bet.claim_submitted_tx is None


async def test_ledger_outage_during_send_keeps_reservation(
    server_reconciler, claimable_pool, winner, ledger, session_factory
) -> None:
    pool, bet_ids = await claimable_pool()
    ledger.send_error = LedgerUpstreamError("sendTransaction", "timeout")

    with pytest.raises(ReconcileError) as exc_info:
        await server_reconciler.execute_claim(pool.id, winner)

    assert exc_info.value.code == ReconcileErrorCode.LEDGER_UNAVAILABLE
    bet = await _get_bet(session_factory, bet_ids[0])
    assert bet.claimed is False
    assert bet.claim_submitted_tx is not None
