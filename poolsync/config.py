from __future__ import annotations

import json
import os
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        enable_decoding=False,
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./poolsync.db",
        validation_alias=AliasChoices("DATABASE_PRIVATE_URL", "DATABASE_URL", "database_url"),
    )
    cors_origins: list[str] = ["http://localhost:3000"]
    api_version: str = "0.1.0"

    blockchain_network: str = "monad-testnet"
    rpc_url: str = ""
    pool_factory_address: str = ""
    alchemy_signing_key: str = ""
    backfill_api_key: str = ""

    usdc_decimals: int = 6
    batch_timeout_seconds: float = 120.0

    indexer_enabled: bool = False
    indexer_start_block: int = 0
    indexer_chunk_size: int = 2_000
    indexer_confirmations: int = 3
    indexer_interval_seconds: int = 30
    reprocess_interval_seconds: int = 600
    reprocess_batch_size: int = 200
    reprocess_max_attempts: int = 5

    checkin_interval_hours: int = 24
    checkin_streak_window_hours: int = 48

    # Optional overrides for the multiplier tier tables, e.g. "0:1.0,5000:1.1,50000:1.5"
    level_multiplier_tiers: dict[int, str] = {}
    leaderboard_multiplier_tiers: dict[int, str] = {}
    streak_multiplier_tiers: dict[int, str] = {}
    nft_multipliers: dict[str, str] = {}

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, value: str) -> str:
        if not isinstance(value, str):
            return value
        if not value.strip():
            return "sqlite+aiosqlite:///./poolsync.db"
        url = value
        if url.startswith("postgres://"):
            url = "postgresql+asyncpg://" + url[len("postgres://") :]
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        parts = urlsplit(url)
        if "asyncpg" in parts.scheme:
            query = parse_qs(parts.query, keep_blank_values=True)
            if "sslmode" in query and "ssl" not in query:
                mode = (query.pop("sslmode")[0] or "").lower()
                if mode in ("disable", "false", "0", "no"):
                    query["ssl"] = ["false"]
                else:
                    query["ssl"] = ["true"]
                url = urlunsplit(
                    (parts.scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment)
                )
        return url

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator(
        "level_multiplier_tiers",
        "leaderboard_multiplier_tiers",
        "streak_multiplier_tiers",
        mode="before",
    )
    @classmethod
    def parse_multiplier_tiers(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            # Try JSON format first: {"0": "1.0", "5000": "1.1"}
            if stripped.startswith("{") and stripped.endswith("}"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, dict):
                        return {int(k): str(v).strip() for k, v in parsed.items()}
                except json.JSONDecodeError:
                    pass
            # Fallback to comma-separated format: 0:1.0,5000:1.1
            parsed: dict[int, str] = {}
            for item in (part.strip() for part in stripped.split(",")):
                if ":" not in item:
                    continue
                threshold, multiplier = item.split(":", 1)
                parsed[int(threshold.strip())] = multiplier.strip()
            return parsed
        return value

    @field_validator("nft_multipliers", mode="before")
    @classmethod
    def parse_nft_multipliers(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("{") and stripped.endswith("}"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, dict):
                        return {k.strip().lower(): str(v).strip() for k, v in parsed.items()}
                except json.JSONDecodeError:
                    pass
            parsed: dict[str, str] = {}
            for item in (part.strip() for part in stripped.split(",")):
                if ":" not in item:
                    continue
                collection, multiplier = item.split(":", 1)
                parsed[collection.strip().lower()] = multiplier.strip()
            return parsed
        return value


settings = Settings()


def running_in_hosted_env() -> bool:
    """Detect hosted/runtime environments (Railway/containers) by common vars."""
    markers = (
        "RAILWAY_ENVIRONMENT",
        "RAILWAY_PROJECT_ID",
        "RAILWAY_SERVICE_NAME",
        "PORT",
    )
    return any(os.getenv(name) for name in markers)


def database_dsn_safe(raw_url: str | None = None) -> str:
    """Return a redacted DB URL for logs (no password)."""
    url = raw_url or settings.database_url
    if not isinstance(url, str):
        return "<invalid>"
    if url.startswith("sqlite"):
        return f"{urlsplit(url).scheme}://<local-file>"
    parts = urlsplit(url)
    host = parts.hostname or "<unknown>"
    port = parts.port or ""
    db = (parts.path or "").lstrip("/") or "<unknown>"
    port_str = f":{port}" if port else ""
    return f"{parts.scheme}://{host}{port_str}/{db}"
