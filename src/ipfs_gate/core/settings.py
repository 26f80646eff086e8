"""Application settings and configuration.

This module defines all configuration options for the upload gate. Settings are
loaded from environment variables (or a `.env` file) once at process start and
are not changed afterwards.
"""

import re
from datetime import timedelta
from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_EXPIRES_IN_PATTERN = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_expires_in(value: str) -> timedelta:
    """Parse a compact duration such as ``30m`` or ``1h`` into a timedelta.

    Raises:
        ValueError: If the value is not ``<digits><s|m|h|d>`` or is zero.
    """
    match = _EXPIRES_IN_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid duration {value!r}; expected e.g. '30m' or '1h'")
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError("Duration must be positive")
    return timedelta(seconds=seconds)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="IPFS Gate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=5050, alias="PORT")

    # Token issuance
    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expires_in: str = Field(default="1h", alias="JWT_EXPIRES_IN")

    # Challenge nonces
    nonce_ttl_seconds: int = Field(default=300, ge=1, alias="NONCE_TTL_SECONDS")
    nonce_reap_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        alias="NONCE_REAP_INTERVAL_SECONDS",
    )

    # Upload rate limiting (fixed window per identity)
    rate_limit_uploads_per_day: int = Field(
        default=10,
        ge=1,
        alias="RATE_LIMIT_UPLOADS_PER_DAY",
    )
    rate_limit_window_seconds: int = Field(
        default=86_400,
        ge=1,
        alias="RATE_LIMIT_WINDOW_SECONDS",
    )

    # Ledger / membership
    min_balance_cc: Decimal = Field(default=Decimal("0.1"), ge=0, alias="MIN_BALANCE_CC")
    chain_rpc_url: str = Field(
        default="wss://kusama.api.encointer.org",
        alias="CHAIN_RPC_URL",
    )
    chain_query_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        alias="CHAIN_QUERY_TIMEOUT_SECONDS",
    )
    signature_scheme: Literal["sr25519", "ed25519"] = Field(
        default="sr25519",
        alias="SIGNATURE_SCHEME",
    )
    ss58_format: int | None = Field(default=None, alias="SS58_FORMAT")

    # Shared state for multi-instance deployments
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Content store
    ipfs_api_url: str = Field(default="http://localhost:5001", alias="IPFS_API_URL")
    ipfs_timeout_seconds: float = Field(default=30.0, gt=0, alias="IPFS_TIMEOUT_SECONDS")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1, alias="MAX_UPLOAD_BYTES")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @field_validator("jwt_expires_in")
    @classmethod
    def _check_expires_in(cls, value: str) -> str:
        parse_expires_in(value)
        return value

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def token_ttl(self) -> timedelta:
        """Return the configured token lifetime."""
        return parse_expires_in(self.jwt_expires_in)


settings = Settings()  # type: ignore[call-arg]
