"""Solana JSON-RPC client."""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import time
from datetime import UTC, datetime

import httpx

from parimutuel.adapters.ledger.base import LedgerTransaction, SignatureStatus
from parimutuel.adapters.ledger.errors import LedgerUpstreamError
from parimutuel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def parse_block_time(result: dict) -> datetime | None:
    """`blockTime` is unix seconds and may be null for very recent or pruned slots."""
    value = result.get("blockTime")
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def _account_keys(transaction: dict) -> list[str]:
    message = (transaction or {}).get("message") or {}
    keys: list[str] = []
    for item in message.get("accountKeys") or []:
        if isinstance(item, dict):
            keys.append(str(item.get("pubkey", "")))
        else:
            keys.append(str(item))
    return keys


def _token_balances(entries: list | None, keys: list[str], mint: str) -> dict[str, int]:
    balances: dict[str, int] = {}
    for entry in entries or []:
        if not isinstance(entry, dict) or entry.get("mint") != mint:
            continue
        index = entry.get("accountIndex")
        if not isinstance(index, int) or index >= len(keys):
            continue
        raw_amount = (entry.get("uiTokenAmount") or {}).get("amount")
        try:
            balances[keys[index]] = int(raw_amount)
        except (TypeError, ValueError):
            continue
    return balances


def parse_token_deltas(result: dict, mint: str) -> tuple[tuple[str, int], ...]:
    """Balance change per token account for *mint*, from pre/post token balances.

    An account absent from the pre balances was created by the transaction and starts at 0.
    """
    meta = result.get("meta") or {}
    keys = _account_keys(result.get("transaction") or {})
    pre = _token_balances(meta.get("preTokenBalances"), keys, mint)
    post = _token_balances(meta.get("postTokenBalances"), keys, mint)
    deltas = []
    for account in sorted(set(pre) | set(post)):
        delta = post.get(account, 0) - pre.get(account, 0)
        if delta != 0:
            deltas.append((account, delta))
    return tuple(deltas)


class SolanaLedgerClient:
    """Speaks the subset of Solana JSON-RPC used for reconciliation and payouts.

    Configuration is read from the application Settings object:
    - ``solana_rpc_url``: JSON-RPC endpoint.
    - ``solana_commitment``: commitment used for reads and confirmation.
    - ``usdc_mint``: only balance changes of this mint are reported.
    - ``ledger_timeout_seconds``: per-request timeout.
    """

    _ids = itertools.count(1)

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._rpc_url: str = self._settings.solana_rpc_url
        self._commitment: str = self._settings.solana_commitment
        self._mint: str = self._settings.usdc_mint
        self._timeout: float = self._settings.ledger_timeout_seconds

    async def _call(self, method: str, params: list) -> object:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._rpc_url, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("Solana RPC timed out", extra={"method": method, "timeout": self._timeout})
            raise LedgerUpstreamError(method, f"Timeout after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            logger.warning("Solana RPC request failed", extra={"method": method, "error": str(exc)})
            raise LedgerUpstreamError(method, str(exc)) from exc

        if response.status_code != 200:
            raise LedgerUpstreamError(method, f"HTTP {response.status_code}: {response.text[:200]}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise LedgerUpstreamError(method, "response is not JSON") from exc
        if not isinstance(payload, dict):
            raise LedgerUpstreamError(method, "unexpected response shape")
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerUpstreamError(method, f"RPC error: {message}")
        return payload.get("result")

    async def get_transaction(self, tx_ref: str) -> LedgerTransaction:
        result = await self._call(
            "getTransaction",
            [
                tx_ref,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ],
        )
        if result is None:
            return LedgerTransaction(found=False)
        if not isinstance(result, dict):
            raise LedgerUpstreamError("getTransaction", "unexpected result shape")

        meta = result.get("meta") or {}
        if meta.get("err") is not None:
            return LedgerTransaction(
                found=True,
                succeeded=False,
                error=str(meta["err"]),
                block_time=parse_block_time(result),
            )
        return LedgerTransaction(
            found=True,
            succeeded=True,
            balance_deltas=parse_token_deltas(result, self._mint),
            block_time=parse_block_time(result),
        )

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": self._commitment}])
        try:
            return str(result["value"]["blockhash"])  # type: ignore[index]
        except (KeyError, TypeError) as exc:
            raise LedgerUpstreamError("getLatestBlockhash", "missing blockhash") from exc

    async def send_transaction(self, raw_transaction: bytes) -> str:
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self._commitment}],
        )
        if not isinstance(result, str):
            raise LedgerUpstreamError("sendTransaction", "missing signature")
        return result

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") if isinstance(result, dict) else None
        entry = values[0] if isinstance(values, list) and values else None
        if not isinstance(entry, dict):
            return SignatureStatus(found=False)
        err = entry.get("err")
        return SignatureStatus(
            found=True,
            confirmation_status=entry.get("confirmationStatus"),
            error=str(err) if err is not None else None,
        )

    def _meets_commitment(self, status: SignatureStatus) -> bool:
        target = _COMMITMENT_RANK.get(self._commitment, 1)
        return _COMMITMENT_RANK.get(status.confirmation_status or "", -1) >= target

    async def wait_for_confirmation(self, signature: str, timeout_seconds: float) -> SignatureStatus:
        """Poll until the signature reaches the configured commitment, fails, or times out.

        Returns the last observed status; callers decide what an unconfirmed result means.
        """
        deadline = time.monotonic() + max(0.0, timeout_seconds)
        poll = max(0.05, self._settings.ledger_confirm_poll_seconds)
        status = SignatureStatus(found=False)
        while True:
            status = await self.get_signature_status(signature)
            if status.failed or self._meets_commitment(status):
                return status
            if time.monotonic() >= deadline:
                logger.warning(
                    "Signature not confirmed before timeout",
                    extra={"signature": signature, "confirmation_status": status.confirmation_status},
                )
                return status
            await asyncio.sleep(poll)

    async def is_healthy(self) -> bool:
        try:
            result = await self._call("getHealth", [])
        except LedgerUpstreamError:
            return False
        return result == "ok"
