"""Ledger clients: Solana JSON-RPC, address derivation and program instructions."""

from parimutuel.adapters.ledger.base import LedgerTransaction, LedgerVerifier, LedgerWriter, SignatureStatus
from parimutuel.adapters.ledger.errors import LedgerUpstreamError
from parimutuel.adapters.ledger.program import OnchainSettlement, SettlementAttempt
from parimutuel.adapters.ledger.solana_rpc import SolanaLedgerClient

__all__ = [
    "LedgerTransaction",
    "LedgerUpstreamError",
    "LedgerVerifier",
    "LedgerWriter",
    "OnchainSettlement",
    "SettlementAttempt",
    "SignatureStatus",
    "SolanaLedgerClient",
]
