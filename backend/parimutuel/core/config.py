import json
import os
from functools import lru_cache
from typing import Mapping
from urllib.parse import quote_plus

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DATABASE_URL_PLACEHOLDER = "REPLACE_WITH_STRONG_DB_PASSWORD"

# Token program constants shared by the ledger adapters.
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
RENT_SYSVAR_ID = "SysvarRent111111111111111111111111111111111"


def resolve_database_url(
    *,
    database_url: str | None,
    postgres_user: str | None,
    postgres_password: str | None,
    postgres_host: str | None = "db",
    postgres_port: int | str | None = "5432",
    postgres_db: str | None = "parimutuel",
) -> tuple[str, str]:
    raw_database_url = (database_url or "").strip()
    if raw_database_url and DATABASE_URL_PLACEHOLDER not in raw_database_url:
        return raw_database_url, "env"

    user = quote_plus((postgres_user or "parimutuel").strip())
    password = quote_plus((postgres_password or "parimutuel").strip())
    host = (postgres_host or "db").strip() or "db"
    port = str(postgres_port or "5432").strip() or "5432"
    db_name = (postgres_db or "parimutuel").strip() or "parimutuel"
    constructed = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
    return constructed, "postgres_fallback"


def resolve_database_url_from_env(
    env: Mapping[str, str] | None = None,
    *,
    default_database_url: str | None = None,
) -> tuple[str, str]:
    source_env = os.environ if env is None else env
    database_url = source_env.get("DATABASE_URL", default_database_url or "")
    return resolve_database_url(
        database_url=database_url,
        postgres_user=source_env.get("POSTGRES_USER"),
        postgres_password=source_env.get("POSTGRES_PASSWORD"),
        postgres_host=source_env.get("POSTGRES_HOST", "db"),
        postgres_port=source_env.get("POSTGRES_PORT", "5432"),
        postgres_db=source_env.get("POSTGRES_DB", "parimutuel"),
    )


def parse_secret_key(raw: str) -> bytes | None:
    """Decode a keypair stored as a JSON array of 64 byte values."""
    candidate = (raw or "").strip()
    if not candidate:
        return None
    try:
        values = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ValueError("AUTHORITY_SECRET_KEY must be a JSON array of 64 integers") from exc
    if not isinstance(values, list) or len(values) != 64:
        raise ValueError("AUTHORITY_SECRET_KEY must be a JSON array of 64 integers")
    if not all(isinstance(v, int) and 0 <= v <= 255 for v in values):
        raise ValueError("AUTHORITY_SECRET_KEY entries must be integers in 0..255")
    return bytes(values)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def _check_secrets_and_economics(self) -> "Settings":
        parse_secret_key(self.authority_secret_key)
        if not 0 <= self.platform_fee_bps < 10_000:
            raise ValueError("PLATFORM_FEE_BPS must be within 0..9999")
        if self.min_deposit_amount <= 0 or self.max_deposit_amount < self.min_deposit_amount:
            raise ValueError("Deposit bounds must satisfy 0 < MIN_DEPOSIT_AMOUNT <= MAX_DEPOSIT_AMOUNT")
        return self

    app_env: str = "development"
    app_name: str = "Parimutuel Pools API"
    app_host: str = "0.0.0.0"
    app_port: int = 3002
    log_level: str = "INFO"

    cors_origins: str = "http://localhost:3000"

    database_url: str = ""
    postgres_user: str = "parimutuel"
    postgres_password: str = "parimutuel"
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_db: str = "parimutuel"
    redis_url: str = "redis://redis:6379/0"
    notifications_channel: str = "pool_updates"

    price_source: str = "pacifica"
    pacifica_api_url: str = "https://api.pacifica.fi"
    oracle_timeout_seconds: float = 5.0
    oracle_retry_attempts: int = 3
    oracle_retry_backoff_seconds: float = 0.5
    oracle_retry_backoff_max_seconds: float = 4.0
    oracle_circuit_failures_to_open: int = 5
    oracle_circuit_open_seconds: int = 30

    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_commitment: str = "confirmed"
    ledger_timeout_seconds: float = 10.0
    program_id: str = "HnqB6ahdTEGwJ624D6kaeoSxUS2YwNoq1Cn5Kt9KQBTD"
    usdc_mint: str = "Gh9ZwEmdLJ8DscKNTkTqPbNwLNNBjuSzaG9Vp2KGtKJr"
    authority_secret_key: str = ""
    onchain_settlement_enabled: bool = False
    ledger_confirm_timeout_seconds: float = 30.0
    ledger_confirm_poll_seconds: float = 1.0
    claim_resubmit_after_seconds: int = 120

    platform_fee_bps: int = 500
    min_deposit_amount: int = 1_000_000
    max_deposit_amount: int = 100_000_000_000

    scheduler_enabled: bool = True
    scheduler_in_api: bool = True
    pool_templates: str = ""
    transition_interval_seconds: float = 5.0
    resolution_interval_seconds: float = 5.0
    cleanup_interval_seconds: float = 3600.0
    claimable_delay_seconds: int = 5
    empty_pool_retention_seconds: int = 3600

    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1

    @property
    def cors_origins_list(self) -> list[str]:
        return [v.strip() for v in self.cors_origins.split(",") if v.strip()]

    @property
    def authority_secret_key_bytes(self) -> bytes | None:
        return parse_secret_key(self.authority_secret_key)

    @property
    def resolved_database_url(self) -> str:
        url, _source = resolve_database_url(
            database_url=self.database_url,
            postgres_user=self.postgres_user,
            postgres_password=self.postgres_password,
            postgres_host=self.postgres_host,
            postgres_port=self.postgres_port,
            postgres_db=self.postgres_db,
        )
        return url

    @property
    def resolved_database_url_source(self) -> str:
        _url, source = resolve_database_url(
            database_url=self.database_url,
            postgres_user=self.postgres_user,
            postgres_password=self.postgres_password,
            postgres_host=self.postgres_host,
            postgres_port=self.postgres_port,
            postgres_db=self.postgres_db,
        )
        return source


@lru_cache
def get_settings() -> Settings:
    return Settings()
