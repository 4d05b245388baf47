"""ReelSync Configuration Settings."""

from __future__ import annotations

import os
from enum import StrEnum
from functools import cached_property, lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from src.utils.logging import _get_logger

__all__ = [
    "EnrichmentConfig",
    "FailedBatchPolicy",
    "LogLevel",
    "MDBListConfig",
    "MediaServerConfig",
    "MediaServerType",
    "ReelSyncConfig",
    "SyncConfig",
    "get_config",
]

_log = _get_logger(__name__)


def get_data_path() -> Path:
    """Resolve the data directory from ``RS_DATA_PATH``.

    Returns:
        Path: The absolute data directory path.
    """
    return Path(os.getenv("RS_DATA_PATH", "./data")).resolve()


def find_yaml_config_file() -> Path:
    """Find the YAML configuration file in the data path.

    Returns:
        Path: The path to an existing YAML configuration file or the default location.
    """
    data_path = get_data_path()

    for ext in ("yaml", "yml"):
        yaml_file = data_path / f"config.{ext}"
        if yaml_file.exists():
            _log.debug(f"Using YAML config file: {yaml_file.resolve()}")
            return yaml_file.resolve()
    return data_path / "config.yaml"


class BaseStrEnum(StrEnum):
    """Base class for string-based enumerations with case-insensitive lookup."""

    @classmethod
    def _missing_(cls, value: object) -> BaseStrEnum | None:
        """Handle case-insensitive lookup for enum values.

        Args:
            value: The value to look up in the enumeration

        Returns:
            BaseStrEnum | None: The matching enum member if found, None otherwise
        """
        value = value.lower() if isinstance(value, str) else value
        for member in cls:
            if member.lower() == value:
                return member
        return None

    def __repr__(self) -> str:
        """Return the string value of the enum member."""
        return self.value

    def __str__(self) -> str:
        """Return the string representation of the enum member."""
        return repr(self)


class LogLevel(BaseStrEnum):
    """Enumeration of available logging levels.

    Note: SUCCESS is a custom level used by this application.
    """

    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MediaServerType(BaseStrEnum):
    """Supported media server flavours; both speak the same Items API."""

    EMBY = "emby"
    JELLYFIN = "jellyfin"


class FailedBatchPolicy(BaseStrEnum):
    """What to do with the items of an enrichment batch that errored.

    mark_processed: stamp every item as enriched so it is never retried
    leave_pending: leave items unenriched so the next run retries them
    """

    MARK_PROCESSED = "mark_processed"
    LEAVE_PENDING = "leave_pending"


class MediaServerConfig(BaseModel):
    """Connection and paging settings for the media server."""

    type: MediaServerType = Field(
        default=MediaServerType.EMBY, description="Media server flavour"
    )
    url: str = Field(default="", description="Base URL of the media server")
    api_key: SecretStr | None = Field(
        default=None, description="API key used to authenticate requests"
    )
    series_page_size: int = Field(
        default=500, ge=1, description="Series fetched per page request"
    )
    episode_page_size: int = Field(
        default=1000, ge=1, description="Episodes fetched per page request"
    )
    movie_page_size: int = Field(
        default=500, ge=1, description="Movies fetched per page request"
    )
    parallel_fetches: int = Field(
        default=4, ge=1, description="Concurrent page requests per wave"
    )
    request_timeout: int = Field(
        default=30, ge=1, description="Request timeout in seconds"
    )

    @property
    def is_configured(self) -> bool:
        """Whether both the URL and API key are set."""
        return bool(self.url) and self.api_key is not None


class SyncConfig(BaseModel):
    """Catalog and watch-history synchronization settings."""

    db_batch_size: int = Field(
        default=100, ge=1, description="Records written per bulk statement"
    )
    full_watch_history: bool = Field(
        default=False,
        description="Always run full watch-history syncs (prunes stale entries)",
    )
    interval: int = Field(
        default=0,
        ge=0,
        description="Seconds between pipeline runs (0 runs the pipeline once)",
    )


class MDBListConfig(BaseModel):
    """MDBList API settings."""

    api_key: SecretStr | None = Field(default=None, description="MDBList API key")
    enabled: bool = Field(default=True, description="Enable MDBList enrichment")
    supporter_tier: bool | None = Field(
        default=None,
        description=(
            "Force the supporter tier on or off. When unset, the tier detected "
            "from the MDBList account is used"
        ),
    )
    base_url: str = Field(
        default="https://api.mdblist.com", description="MDBList API base URL"
    )
    free_delay_ms: int = Field(
        default=100, ge=0, description="Minimum delay between free tier requests"
    )
    supporter_delay_ms: int = Field(
        default=25, ge=0, description="Minimum delay between supporter requests"
    )
    max_retries: int = Field(
        default=3, ge=1, description="Attempts per request before giving up"
    )
    retry_delay_ms: int = Field(
        default=1000, ge=0, description="Base delay for retry backoff"
    )
    tier_check_interval: int = Field(
        default=60, ge=0, description="Seconds to cache the resolved tier"
    )
    batch_size: int = Field(
        default=100, ge=1, le=200, description="External IDs per batch request"
    )

    @property
    def is_configured(self) -> bool:
        """Whether enrichment can run with the current settings."""
        return self.enabled and self.api_key is not None


class EnrichmentConfig(BaseModel):
    """Enrichment job settings."""

    batch_size: int = Field(
        default=100, ge=1, description="Items looked up per enrichment batch"
    )
    failed_batch_policy: FailedBatchPolicy = Field(
        default=FailedBatchPolicy.MARK_PROCESSED,
        description="How items of an errored enrichment batch are handled",
    )


class ReelSyncConfig(BaseSettings):
    """Configuration for the ReelSync application.

    Configuration is sourced from a YAML file in the data path, optionally
    combined with parameters passed directly to the model.
    """

    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="Logging level for the application"
    )
    media_server: MediaServerConfig = Field(
        default_factory=MediaServerConfig, description="Media server connection"
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig, description="Synchronization settings"
    )
    mdblist: MDBListConfig = Field(
        default_factory=MDBListConfig, description="MDBList enrichment provider"
    )
    enrichment: EnrichmentConfig = Field(
        default_factory=EnrichmentConfig, description="Enrichment job settings"
    )

    @cached_property
    def data_path(self) -> Path:
        """Get the data path for ReelSync.

        Returns:
            Path: The data path resolved from the environment or default location.
        """
        return get_data_path()

    @model_validator(mode="after")
    def validate_config(self) -> ReelSyncConfig:
        """Normalize and sanity check the loaded settings.

        Returns:
            ReelSyncConfig: Self with validated settings.
        """
        self.media_server.url = self.media_server.url.rstrip("/")
        self.mdblist.base_url = self.mdblist.base_url.rstrip("/")

        if not self.media_server.is_configured:
            _log.warning(
                "Media server url or api_key is not set; catalog and watch history "
                "syncs will fail until both are configured"
            )
        if self.mdblist.enabled and self.mdblist.api_key is None:
            _log.info("No MDBList api_key configured; enrichment is disabled")

        return self

    def __str__(self) -> str:
        """Creates a human-readable representation of the configuration.

        Returns:
            str: Configuration summary.
        """
        return (
            f"ReelSync Config: media_server={self.media_server.type} "
            f"({self.media_server.url or 'unset'}), "
            f"mdblist={'on' if self.mdblist.is_configured else 'off'}, "
            f"DATA_PATH: {self.data_path}, LOG_LEVEL: {self.log_level}"
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of configuration sources."""
        return (
            init_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=find_yaml_config_file()),
        )

    model_config = SettingsConfigDict(extra="ignore")


@lru_cache(maxsize=1)
def get_config() -> ReelSyncConfig:
    """Get the singleton instance of ReelSyncConfig.

    Returns:
        ReelSyncConfig: The singleton configuration instance.
    """
    return ReelSyncConfig()
