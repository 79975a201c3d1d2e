"""Client configuration models and environment overrides.

``ClientSettings`` is the single source of truth for credentials, cache
lifetimes, upload thresholds, and retry policy.  Defaults mirror the remote
service's documented behaviour; every field may be overridden through
``BLAZEKIT_*`` environment variables (read by :class:`EnvironmentOverrides`)
or explicit keyword arguments passed to :func:`load_settings`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "ClientSettings",
    "EnvironmentOverrides",
    "get_env_overrides",
    "load_settings",
]

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.backblazeb2.com"
DEFAULT_LARGE_FILE_LIMIT = 3_000_000_000


class ClientSettings(BaseModel):
    """Credentials, cache lifetimes, upload thresholds, and retry policy."""

    key_id: str = Field(default="", description="Application key id (or account id for master keys)")
    application_key: SecretStr = Field(default=SecretStr(""))
    account_id: Optional[str] = Field(
        default=None,
        description="Account id sent with bucket calls; defaults to key_id",
    )
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    api_version: int = Field(default=1, ge=1, le=4)

    authorization_ttl_sec: float = Field(default=60.0, gt=0)
    bucket_cache_ttl_sec: float = Field(default=10_080.0, gt=0)
    cache_dir: Optional[Path] = Field(
        default=None,
        description="Directory for the file-backed cache; None keeps state in memory",
    )

    large_file_limit: int = Field(default=DEFAULT_LARGE_FILE_LIMIT, gt=0)
    upload_workers: int = Field(default=1, ge=1, le=32)

    retry_limit: int = Field(default=10, ge=0, le=50)
    retry_wait_sec: float = Field(default=10.0, ge=0.0)
    retry_backoff_multiplier: float = Field(default=1.2, ge=1.0, le=10.0)
    retry_max_wait_sec: float = Field(
        default=300.0,
        gt=0.0,
        description="Upper bound for a single 503 backoff sleep",
    )

    connect_timeout_sec: float = Field(default=10.0, gt=0.0, le=300.0)
    read_timeout_sec: float = Field(default=120.0, gt=0.0, le=3600.0)
    write_timeout_sec: float = Field(default=120.0, gt=0.0, le=3600.0)

    domain_aliases: Dict[str, str] = Field(
        default_factory=dict,
        description="Host rewrites for white-label download URLs",
    )
    log_level: str = Field(
        default="INFO",
        description="Level installed by B2Client(configure_logging=True)",
    )

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, value: str) -> str:
        """Require an https origin without a trailing slash."""

        candidate = value.strip().rstrip("/")
        if not candidate.startswith("https://"):
            raise ValueError("api_base_url must start with https://")
        return candidate

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @model_validator(mode="after")
    def _wait_cap_covers_base(self) -> "ClientSettings":
        if self.retry_max_wait_sec < self.retry_wait_sec:
            raise ValueError("retry_max_wait_sec must be >= retry_wait_sec")
        return self

    @property
    def resolved_account_id(self) -> str:
        return self.account_id or self.key_id

    @property
    def version_path(self) -> str:
        return f"/b2api/v{self.api_version}"

    def require_credentials(self) -> None:
        """Raise :class:`ConfigurationError` unless both credential halves are set."""

        if not self.key_id or not self.application_key.get_secret_value():
            raise ConfigurationError('Please provide "key_id" and "application_key"')


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    key_id: Optional[str] = Field(default=None, alias="BLAZEKIT_KEY_ID")
    application_key: Optional[str] = Field(default=None, alias="BLAZEKIT_APPLICATION_KEY")
    account_id: Optional[str] = Field(default=None, alias="BLAZEKIT_ACCOUNT_ID")
    api_base_url: Optional[str] = Field(default=None, alias="BLAZEKIT_API_BASE_URL")
    authorization_ttl_sec: Optional[float] = Field(
        default=None, alias="BLAZEKIT_AUTHORIZATION_TTL_SEC"
    )
    bucket_cache_ttl_sec: Optional[float] = Field(
        default=None, alias="BLAZEKIT_BUCKET_CACHE_TTL_SEC"
    )
    cache_dir: Optional[Path] = Field(default=None, alias="BLAZEKIT_CACHE_DIR")
    upload_workers: Optional[int] = Field(default=None, alias="BLAZEKIT_UPLOAD_WORKERS")
    retry_limit: Optional[int] = Field(default=None, alias="BLAZEKIT_RETRY_LIMIT")
    retry_wait_sec: Optional[float] = Field(default=None, alias="BLAZEKIT_RETRY_WAIT_SEC")
    retry_max_wait_sec: Optional[float] = Field(
        default=None, alias="BLAZEKIT_RETRY_MAX_WAIT_SEC"
    )
    log_level: Optional[str] = Field(default=None, alias="BLAZEKIT_LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_prefix="BLAZEKIT_", case_sensitive=False, extra="ignore"
    )


def get_env_overrides() -> Dict[str, Any]:
    """Return environment-derived overrides with unset values omitted."""

    env = EnvironmentOverrides()
    return env.model_dump(by_alias=False, exclude_none=True)


def load_settings(**overrides: Any) -> ClientSettings:
    """Build :class:`ClientSettings` from defaults, environment, then ``overrides``.

    Args:
        **overrides: Explicit field values; ``None`` values are ignored.

    Returns:
        Validated settings instance.

    Raises:
        ConfigurationError: If any value fails validation.
    """

    merged: Dict[str, Any] = get_env_overrides()
    merged.update({key: value for key, value in overrides.items() if value is not None})
    if merged:
        logger.debug(
            "Applying settings overrides",
            extra={"fields": sorted(merged)},
        )
    try:
        return ClientSettings(**merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid client settings: {exc}") from exc
