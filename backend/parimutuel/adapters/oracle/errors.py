"""Typed errors for price oracle clients."""

from __future__ import annotations

PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
ASSET_NOT_SUPPORTED = "ASSET_NOT_SUPPORTED"
TIMEOUT = "TIMEOUT"
INVALID_RESPONSE = "INVALID_RESPONSE"


class PriceOracleError(Exception):
    """Raised when a spot price cannot be obtained.

    Attributes:
        code: One of PROVIDER_UNAVAILABLE, ASSET_NOT_SUPPORTED, TIMEOUT, INVALID_RESPONSE.
        asset: The asset symbol that was queried.
        reason: Human-readable error description.
    """

    def __init__(self, code: str, asset: str, reason: str) -> None:
        self.code = code
        self.asset = asset
        self.reason = reason
        super().__init__(f"[{code}] asset={asset}: {reason}")

    @property
    def retryable(self) -> bool:
        return self.code != ASSET_NOT_SUPPORTED
