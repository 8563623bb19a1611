from solders.pubkey import Pubkey

from conftest import new_tx_ref, new_wallet
from parimutuel.adapters.ledger.addresses import associated_token_address, vault_pda
from parimutuel.models.enums import PoolStatus
from parimutuel.main import app


async def test_deposit_instructions(async_client, seed_pool, settings) -> None:
    pool, _ = await seed_pool()
    wallet = new_wallet()

    response = await async_client.post(
        "/api/v1/transactions/deposit",
        json={"poolId": str(pool.id), "walletAddress": wallet, "side": "UP", "amount": 2_000_000},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["program_id"] == settings.program_id
    assert body["accounts"]["vault"] == str(vault_pda(pool.pool_seed, settings.program_id))
    assert body["estimated_payout"] == {"gross": 2_000_000, "fee": 100_000, "net": 1_900_000}


async def test_confirm_deposit_reports_ledger_amount(async_client, seed_pool, ledger, settings) -> None:
    pool, _ = await seed_pool()
    wallet = new_wallet()
    tx_ref = new_tx_ref()
    ledger.add_transfer(tx_ref, {str(vault_pda(pool.pool_seed, settings.program_id)): 3_000_000})

    response = await async_client.post(
        "/api/v1/transactions/confirm-deposit",
        json={"poolId": str(pool.id), "walletAddress": wallet, "txSignature": tx_ref, "side": "DOWN", "amount": 1},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "confirmed"
    assert body["amount"] == "3000000"
    assert body["side"] == "DOWN"


async def test_confirm_deposit_pending_transaction_is_404(async_client, seed_pool) -> None:
    pool, _ = await seed_pool()

    response = await async_client.post(
        "/api/v1/transactions/confirm-deposit",
        json={"poolId": str(pool.id), "walletAddress": new_wallet(), "txSignature": new_tx_ref(), "side": "UP"},
    )

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "TX_NOT_FOUND"


async def test_invalid_body_is_validation_error(async_client, seed_pool) -> None:
    pool, _ = await seed_pool()

    response = await async_client.post(
        "/api/v1/transactions/deposit",
        json={"poolId": str(pool.id), "walletAddress": new_wallet(), "side": "SIDEWAYS", "amount": 1},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


async def test_claim_by_loser_is_conflict(async_client, seed_pool, clock) -> None:
    loser = new_wallet()
    pool, _ = await seed_pool(
        status=PoolStatus.CLAIMABLE,
        winner="UP",
        resolved_at=clock.now,
        total_up=1000,
        total_down=100,
        bets=((new_wallet(), "UP", 1000), (loser, "DOWN", 100)),
    )

    response = await async_client.post(
        "/api/v1/transactions/claim", json={"poolId": str(pool.id), "walletAddress": loser}
    )

    assert response.status_code == 409
    assert response.json()["detail"] == {"code": "NOT_WINNER", "message": "Bet did not win"}


async def test_claim_flow_over_http(async_client, seed_pool, ledger, settings, clock) -> None:
    winner = new_wallet()
    pool, bet_ids = await seed_pool(
        status=PoolStatus.CLAIMABLE,
        winner="UP",
        resolved_at=clock.now,
        total_up=1000,
        total_down=500,
        bets=((winner, "UP", 100),),
    )

    prepared = await async_client.post(
        "/api/v1/transactions/claim", json={"poolId": str(pool.id), "walletAddress": winner}
    )
    assert prepared.status_code == 200
    assert prepared.json()["expected_payout"] == {"gross": 150, "fee": 7, "net": 143}
    assert prepared.json()["bet_id"] == str(bet_ids[0])

    tx_ref = new_tx_ref()
    ata = str(associated_token_address(Pubkey.from_string(winner), settings.usdc_mint))
    vault = str(vault_pda(pool.pool_seed, settings.program_id))
    ledger.add_transfer(tx_ref, {vault: -143, ata: 143})
    confirmed = await async_client.post(
        "/api/v1/transactions/confirm-claim", json={"betId": str(bet_ids[0]), "txSignature": tx_ref}
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["payout_amount"] == "143"


async def test_execute_claim_without_authority_is_unavailable(async_client, seed_pool, clock) -> None:
    winner = new_wallet()
    pool, _ = await seed_pool(
        status=PoolStatus.CLAIMABLE,
        winner="UP",
        resolved_at=clock.now,
        total_up=100,
        bets=((winner, "UP", 100),),
    )

    response = await async_client.post(
        "/api/v1/transactions/execute-claim", json={"poolId": str(pool.id), "walletAddress": winner}
    )

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "CONFIG_ERROR"


async def test_create_test_pool(async_client, clock) -> None:
    response = await async_client.post("/api/v1/pools/test", json={"asset": "eth", "intervalSeconds": 300})

    assert response.status_code == 201
    body = response.json()
    assert body["asset"] == "ETH"
    assert body["status"] == "UPCOMING"
    assert body["interval_key"] == "300s"
    assert body["total_up"] == "0"
    assert body["strike_price"] is None


async def test_create_test_pool_rejects_unknown_asset(async_client) -> None:
    response = await async_client.post("/api/v1/pools/test", json={"asset": "DOGE"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


async def test_scheduler_status(async_client) -> None:
    response = await async_client.get("/api/v1/scheduler/status")

    assert response.status_code == 200
    assert response.json() == {"is_running": False, "job_count": 0, "authority": None}


async def test_health_live(async_client) -> None:
    response = await async_client.get("/api/v1/health/live")
    assert response.json() == {"status": "ok"}


async def test_health_ready_reports_components(async_client) -> None:
    response = await async_client.get("/api/v1/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "degraded", "db": True, "redis": False, "oracle": True}


async def test_missing_service_is_unavailable(async_client, seed_pool) -> None:
    pool, _ = await seed_pool()
    app.state.reconciler = None

    response = await async_client.post(
        "/api/v1/transactions/claim", json={"poolId": str(pool.id), "walletAddress": new_wallet()}
    )

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "SERVICE_UNAVAILABLE"


async def test_health_flags(async_client) -> None:
    response = await async_client.get("/api/v1/health/flags")

    body = response.json()
    assert body["price_source"] == "pacifica"
    assert body["server_claims_configured"] is False
