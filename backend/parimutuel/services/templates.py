import json
import logging

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from parimutuel.core.config import Settings

logger = logging.getLogger(__name__)


class PoolTemplate(BaseModel):
    """Asset, cadence and timing offsets used to spawn pools."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    asset: str = Field(min_length=1, max_length=10)
    interval_key: str = Field(validation_alias=AliasChoices("interval_key", "intervalKey"), min_length=1)
    duration_seconds: int = Field(validation_alias=AliasChoices("duration_seconds", "interval"), ge=60)
    join_window_seconds: int = Field(validation_alias=AliasChoices("join_window_seconds", "joinWindowSeconds"), ge=1)
    lock_buffer_seconds: int = Field(
        default=60, validation_alias=AliasChoices("lock_buffer_seconds", "lockBufferSeconds"), ge=1
    )
    creation_period_seconds: int | None = Field(
        default=None, validation_alias=AliasChoices("creation_period_seconds", "creationPeriodSeconds"), ge=1
    )

    @field_validator("asset")
    @classmethod
    def _normalize_asset(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def period_seconds(self) -> int:
        return self.creation_period_seconds or self.duration_seconds


_TEMPLATE_LIST = TypeAdapter(list[PoolTemplate])

DEFAULT_ASSETS = ("BTC", "ETH", "SOL")
# interval_key: (duration, join window, lock buffer)
DEFAULT_CADENCES = {
    "1m": (60, 50, 10),
    "5m": (300, 240, 60),
    "15m": (900, 840, 60),
    "1h": (3600, 3000, 60),
}


def default_templates() -> list[PoolTemplate]:
    return [
        PoolTemplate(
            asset=asset,
            interval_key=interval_key,
            duration_seconds=duration,
            join_window_seconds=join_window,
            lock_buffer_seconds=lock_buffer,
        )
        for asset in DEFAULT_ASSETS
        for interval_key, (duration, join_window, lock_buffer) in DEFAULT_CADENCES.items()
    ]


def parse_templates(raw: str) -> list[PoolTemplate]:
    """Parse a POOL_TEMPLATES JSON array. Empty input yields the defaults."""
    if not (raw or "").strip():
        return default_templates()
    try:
        return _TEMPLATE_LIST.validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"POOL_TEMPLATES is invalid: {exc}") from exc


def load_templates(settings: Settings) -> list[PoolTemplate]:
    templates = parse_templates(settings.pool_templates)
    logger.info(
        "Pool templates loaded",
        extra={
            "template_count": len(templates),
            "source": "env" if settings.pool_templates.strip() else "defaults",
        },
    )
    return templates


def supported_assets(templates: list[PoolTemplate]) -> list[str]:
    return list(dict.fromkeys(template.asset for template in templates))


def is_asset_supported(asset: str, templates: list[PoolTemplate]) -> bool:
    return asset.strip().upper() in supported_assets(templates)
