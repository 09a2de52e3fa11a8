"""Settings models and configuration loading for the vitals monitor."""

from functools import cached_property, lru_cache
from typing import Annotated, Any, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_bool(v: Any) -> bool:
    """Parse boolean from string '1'/'0' or actual bool."""
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        return v == "1"
    return bool(v)


_BoolFromStr = Annotated[bool, BeforeValidator(_parse_bool)]


class AlertSettings(BaseModel):
    """Alert lifecycle behaviour."""

    model_config = ConfigDict(frozen=True)

    deduplicate: bool = False


class IngestSettings(BaseModel):
    """Reading ingestion settings."""

    model_config = ConfigDict(frozen=True)

    topic_pattern: str = "patient/*/data"
    queue_size: int = 100
    topic_refresh_sec: float = 30.0

    @property
    def topic_template(self) -> str:
        """Default topic of a device, with a ``{device_id}`` placeholder."""
        return self.topic_pattern.replace("*", "{device_id}", 1)


class EventBusSettings(BaseModel):
    """Redis event bus settings."""

    model_config = ConfigDict(frozen=True)

    redis_url: str = "redis://localhost:6379/0"


class ServerSettings(BaseModel):
    """Web server settings."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 5000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: str = "vitals.sqlite3"
    db_timeout_sec: float = Field(default=30.0, gt=0)

    # Use the in-memory store instead of SQLite (development only)
    mock_store: _BoolFromStr = False

    # Alerts
    alert_deduplicate: _BoolFromStr = False

    # Ingestion
    reading_topic_pattern: str = "patient/*/data"
    ingest_queue_size: int = 100
    ingest_topic_refresh_sec: float = Field(default=30.0, gt=0)

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Web server
    server_host: str = "0.0.0.0"
    server_port: int = Field(default=5000, gt=0, le=65535)

    @cached_property
    def alerts(self) -> AlertSettings:
        """Get alert behaviour settings."""
        return AlertSettings(deduplicate=self.alert_deduplicate)

    @cached_property
    def ingest(self) -> IngestSettings:
        """Get ingestion settings."""
        return IngestSettings(
            topic_pattern=self.reading_topic_pattern,
            queue_size=self.ingest_queue_size,
            topic_refresh_sec=self.ingest_topic_refresh_sec,
        )

    @cached_property
    def eventbus(self) -> EventBusSettings:
        """Get event bus settings."""
        return EventBusSettings(redis_url=self.redis_url)

    @cached_property
    def server(self) -> ServerSettings:
        """Get web server settings."""
        return ServerSettings(host=self.server_host, port=self.server_port)

    @model_validator(mode="after")
    def validate_settings(self) -> Self:
        """Validate cross-field configuration constraints."""
        errors: list[str] = []

        if self.ingest_queue_size < 1:
            errors.append(
                f"INGEST_QUEUE_SIZE ({self.ingest_queue_size}) must be at least 1"
            )

        if "*" not in self.reading_topic_pattern:
            errors.append(
                f"READING_TOPIC_PATTERN ({self.reading_topic_pattern}) must "
                "contain a '*' wildcard for the device id"
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n  - "
                + "\n  - ".join(errors)
            )

        return self


# Settings override for testing - allows injecting custom Settings without
# modifying environment variables or clearing the lru_cache.
_settings_override: Settings | None = None


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    """Load settings from environment (cached)."""
    return Settings()


def get_settings() -> Settings:
    """Get the global settings instance.

    Returns the test override if set, otherwise loads from environment
    variables (cached after first load). For testing, use set_settings()
    from vitals.lib.config.testing to override.
    """
    if _settings_override is not None:
        return _settings_override
    return _load_settings()
