"""Pacifica spot price client."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import httpx

from parimutuel.adapters.oracle.base import PriceTick
from parimutuel.adapters.oracle.errors import (
    ASSET_NOT_SUPPORTED,
    INVALID_RESPONSE,
    PROVIDER_UNAVAILABLE,
    TIMEOUT,
    PriceOracleError,
)
from parimutuel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

PRICE_DECIMALS = 6
_PRICE_SCALE = Decimal(10) ** PRICE_DECIMALS
SOURCE_NAME = "pacifica"


def to_fixed_point(raw: object) -> int:
    """Convert a decimal price string to a 6-decimal integer, rounding half up."""
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a decimal price: {raw!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"price must be positive and finite: {raw!r}")
    return int((value * _PRICE_SCALE).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def hash_entry(entry: dict) -> str:
    canonical = json.dumps(entry, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_ms_timestamp(raw: object) -> datetime | None:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    try:
        return datetime.fromtimestamp(raw / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


class PacificaPriceClient:
    """Fetches oracle prices from the Pacifica REST API.

    Configuration is read from the application Settings object:
    - ``pacifica_api_url``: base URL for the Pacifica API.
    - ``oracle_timeout_seconds``: per-request timeout.
    - ``oracle_retry_*``: bounded retry with exponential backoff.
    - ``oracle_circuit_*``: consecutive failures before the shared circuit opens.
    """

    _consecutive_failures: int = 0
    _circuit_open_until: datetime | None = None

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._base_url: str = self._settings.pacifica_api_url.rstrip("/")
        self._timeout: float = self._settings.oracle_timeout_seconds

    @property
    def prices_url(self) -> str:
        return f"{self._base_url}/api/v1/info/prices"

    @classmethod
    def _is_circuit_open(cls, now: datetime) -> bool:
        if cls._circuit_open_until is None:
            return False
        if now >= cls._circuit_open_until:
            cls._circuit_open_until = None
            cls._consecutive_failures = 0
            return False
        return True

    @classmethod
    def _record_success(cls) -> None:
        cls._consecutive_failures = 0
        cls._circuit_open_until = None

    def _record_failure(self) -> None:
        cls = type(self)
        cls._consecutive_failures += 1
        failures_to_open = max(1, self._settings.oracle_circuit_failures_to_open)
        if cls._consecutive_failures < failures_to_open:
            return
        open_seconds = max(5, self._settings.oracle_circuit_open_seconds)
        cls._circuit_open_until = datetime.now(UTC) + timedelta(seconds=open_seconds)
        logger.warning(
            "Pacifica circuit opened",
            extra={
                "circuit_open_seconds": open_seconds,
                "consecutive_failures": cls._consecutive_failures,
            },
        )

    async def _fetch_entries(self, asset: str) -> list[dict]:
        """Single attempt: GET the prices envelope and return its data list."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self.prices_url, headers={"Accept": "application/json"})
        except httpx.TimeoutException as exc:
            raise PriceOracleError(TIMEOUT, asset, f"Timeout after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise PriceOracleError(PROVIDER_UNAVAILABLE, asset, str(exc)) from exc

        if not response.is_success:
            raise PriceOracleError(
                INVALID_RESPONSE,
                asset,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PriceOracleError(INVALID_RESPONSE, asset, "response is not JSON") from exc

        if not isinstance(payload, dict) or not payload.get("success"):
            error = payload.get("error") if isinstance(payload, dict) else None
            raise PriceOracleError(INVALID_RESPONSE, asset, f"provider error: {error or 'unknown'}")
        data = payload.get("data")
        if not isinstance(data, list):
            raise PriceOracleError(INVALID_RESPONSE, asset, "envelope has no data list")
        return [entry for entry in data if isinstance(entry, dict)]

    async def get_spot_price(self, asset: str) -> PriceTick:
        symbol = asset.strip().upper()
        if self._is_circuit_open(datetime.now(UTC)):
            logger.warning(
                "Pacifica circuit is open; failing fast",
                extra={"asset": symbol, "consecutive_failures": self._consecutive_failures},
            )
            raise PriceOracleError(PROVIDER_UNAVAILABLE, symbol, "circuit open")

        attempts = max(1, self._settings.oracle_retry_attempts)
        backoff_base = max(0.1, self._settings.oracle_retry_backoff_seconds)
        backoff_cap = max(backoff_base, self._settings.oracle_retry_backoff_max_seconds)

        entries: list[dict] | None = None
        last_error: PriceOracleError | None = None
        for attempt in range(1, attempts + 1):
            try:
                entries = await self._fetch_entries(symbol)
                self._record_success()
                break
            except PriceOracleError as exc:
                last_error = exc
                self._record_failure()
                logger.warning(
                    "Pacifica price fetch attempt failed",
                    extra={
                        "asset": symbol,
                        "code": exc.code,
                        "reason": exc.reason,
                        "attempt": attempt,
                        "attempts_total": attempts,
                        "consecutive_failures": self._consecutive_failures,
                    },
                )
                if attempt >= attempts or self._is_circuit_open(datetime.now(UTC)):
                    break
                await asyncio.sleep(min(backoff_cap, backoff_base * (2 ** (attempt - 1))))

        if entries is None:
            assert last_error is not None
            raise last_error

        entry = next((item for item in entries if item.get("symbol") == symbol), None)
        if entry is None:
            raise PriceOracleError(ASSET_NOT_SUPPORTED, symbol, "symbol not listed by provider")

        try:
            price = to_fixed_point(entry.get("oracle"))
        except ValueError as exc:
            raise PriceOracleError(INVALID_RESPONSE, symbol, str(exc)) from exc

        timestamp = _parse_ms_timestamp(entry.get("timestamp")) or datetime.now(UTC)
        return PriceTick(
            symbol=symbol,
            price=price,
            timestamp=timestamp,
            source=SOURCE_NAME,
            raw_hash=hash_entry(entry),
        )

    async def is_healthy(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self.prices_url, headers={"Accept": "application/json"})
        except httpx.HTTPError:
            logger.warning("Pacifica health check failed", exc_info=True)
            return False
        return response.is_success
