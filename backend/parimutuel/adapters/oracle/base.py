"""Protocol and shared types for spot price oracles."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class PriceTick:
    """A single spot price observation in 6-decimal fixed point."""

    symbol: str
    price: int
    timestamp: datetime
    source: str
    raw_hash: str  # sha256 hex of the provider's raw entry


@runtime_checkable
class PriceOracle(Protocol):
    """Interface all price oracle clients must satisfy."""

    async def get_spot_price(self, asset: str) -> PriceTick:
        """Return the current price for *asset*.

        Raises PriceOracleError when the price cannot be obtained.
        """
        ...

    async def is_healthy(self) -> bool:
        """Return True when the provider answers. Never raises."""
        ...
