"""Typed errors for ledger clients."""

from __future__ import annotations


class LedgerUpstreamError(Exception):
    """Raised when a ledger RPC request fails or returns an RPC-level error.

    Attributes:
        method: JSON-RPC method name (e.g. "getTransaction").
        reason: Human-readable error description.
    """

    def __init__(self, method: str, reason: str) -> None:
        self.method = method
        self.reason = reason
        super().__init__(f"[{method}] {reason}")
