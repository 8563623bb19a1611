"""Spot price oracle clients: Pacifica."""

from parimutuel.adapters.oracle.base import PriceOracle, PriceTick
from parimutuel.adapters.oracle.errors import PriceOracleError
from parimutuel.adapters.oracle.pacifica_client import PacificaPriceClient
from parimutuel.core.config import Settings


def build_price_oracle(settings: Settings) -> PriceOracle:
    source = settings.price_source.strip().lower()
    if source == "pacifica":
        return PacificaPriceClient(settings)
    raise ValueError(f"Unsupported PRICE_SOURCE: {settings.price_source}")


__all__ = [
    "PacificaPriceClient",
    "PriceOracle",
    "PriceOracleError",
    "PriceTick",
    "build_price_oracle",
]
