"""Protocol and shared types for ledger clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class LedgerTransaction:
    """Outcome of a transaction lookup, reduced to what reconciliation needs."""

    found: bool
    succeeded: bool = False
    balance_deltas: tuple[tuple[str, int], ...] = field(default_factory=tuple)
    error: str | None = None
    block_time: datetime | None = None

    def delta_for(self, account: str) -> int:
        return sum(delta for address, delta in self.balance_deltas if address == account)


@dataclass(frozen=True, slots=True)
class SignatureStatus:
    found: bool
    confirmation_status: str | None = None  # processed | confirmed | finalized
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.found and self.error is not None


@runtime_checkable
class LedgerVerifier(Protocol):
    """Read side used by deposit and claim reconciliation."""

    async def get_transaction(self, tx_ref: str) -> LedgerTransaction:
        ...


@runtime_checkable
class LedgerWriter(LedgerVerifier, Protocol):
    """Write side used by server-executed claims and on-chain settlement."""

    async def get_latest_blockhash(self) -> str:
        ...

    async def send_transaction(self, raw_transaction: bytes) -> str:
        ...

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        ...

    async def wait_for_confirmation(self, signature: str, timeout_seconds: float) -> SignatureStatus:
        ...
