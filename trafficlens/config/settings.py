import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from trafficlens.services.logparser.constants import ALLOWED_GEOIP_LOCALES


def _split_csv(value: Any) -> Any:
    """Accept either a JSON list or a comma-separated string."""
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("["):
            return json.loads(value)
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class GeoIPSettings(BaseSettings):
    """GeoIP database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="GEOIP_", env_file=".env", extra="ignore")

    account_id: str | None = Field(default=None, description="MaxMind account id")
    license_key: str | None = Field(default=None, description="MaxMind license key")
    edition_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Database editions to keep locally, e.g. GeoLite2-City,GeoLite2-ASN",
    )
    db_dir: Path = Field(
        default=Path("data/ipdb"),
        description="Directory holding one <edition>.mmdb file per edition",
    )
    city_edition: str = Field(
        default="GeoLite2-City",
        description="Edition opened by the location resolver",
    )
    download_url: str = Field(
        default=(
            "https://download.maxmind.com/app/geoip_download"
            "?edition_id={edition_id}&license_key={license_key}&suffix=tar.gz"
        ),
        description="Download URL template with {edition_id} and {license_key} placeholders",
    )
    download_timeout: float = Field(default=30.0, description="Download timeout in seconds")
    download_attempts: int = Field(default=3, ge=1, description="Download attempts per edition")
    locales: list[str] = Field(
        default=["zh-CN", "en"],
        description="Preferred name locales, most preferred first",
    )
    cache_ttl: int = Field(default=86400, description="GeoIP cache TTL in seconds (24 hours)")
    validate_locales: bool = Field(
        default=True,
        description="Validate that the specified GeoIP locales are supported"
    )

    @field_validator("edition_ids", mode="before")
    @classmethod
    def split_edition_ids(cls, value: Any) -> Any:
        return _split_csv(value)

    @model_validator(mode="after")
    def validate_geoip_locales(self) -> "GeoIPSettings":
        """Ensure GeoIP locales are valid if validation is enabled."""
        if self.validate_locales:
            invalid_locales = [loc for loc in self.locales if loc not in ALLOWED_GEOIP_LOCALES]
            if invalid_locales:
                raise ValueError(f"Invalid GeoIP locales: {invalid_locales}. Allowed locales are: {ALLOWED_GEOIP_LOCALES}")
        return self

    def missing_fields(self) -> list[str]:
        """Return the env var names of required settings that are not set."""
        missing = []
        if not self.account_id:
            missing.append("GEOIP_ACCOUNT_ID")
        if not self.license_key:
            missing.append("GEOIP_LICENSE_KEY")
        if not self.edition_ids:
            missing.append("GEOIP_EDITION_IDS")
        return missing

    def edition_path(self, edition_id: str) -> Path:
        return self.db_dir / f"{edition_id}.mmdb"


class APISettings(BaseSettings):
    """API server configuration settings."""

    model_config = SettingsConfigDict(env_prefix="API_", env_file=".env", extra="ignore")

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=3000, description="API server port")
    workers: int = Field(default=1, description="Number of worker processes")
    reload: bool = Field(default=False, description="Enable auto-reload on code changes")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class LogParserSettings(BaseSettings):
    """Log parser configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOGPARSER_", env_file=".env", extra="ignore")

    log_paths: Annotated[list[Path], NoDecode] = Field(
        default=[Path("./logs/access.log"), Path("./logs/access.log.1")],
        description="Access log files read on every request",
    )

    @field_validator("log_paths", mode="before")
    @classmethod
    def split_log_paths(cls, value: Any) -> Any:
        return _split_csv(value)


class AnalyticsSettings(BaseSettings):
    """Analytics and aggregation configuration settings."""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_", env_file=".env", extra="ignore")

    recent_window_hours: int = Field(
        default=24,
        description="Width of the recent-traffic window in hours",
    )
    top_n: int = Field(
        default=10,
        description="Number of entries shown for popular paths, status codes and user agents",
    )
    include_fallback_timestamps_in_window: bool = Field(
        default=False,
        description="Count records whose timestamp could not be parsed in the recent window.",
    )


class SchedulerSettings(BaseSettings):
    """APScheduler configuration for periodic background tasks."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", env_file=".env", extra="ignore")

    enabled: bool = Field(
        default=True,
        description="Enable scheduled background tasks",
    )
    geoip_refresh_day_of_week: str = Field(
        default="tue",
        description="Day of week (UTC) to check for GeoIP database updates",
    )
    geoip_refresh_hour: int = Field(
        default=3,
        description="Hour (UTC, 0-23) to check for GeoIP database updates",
    )
    geoip_refresh_minute: int = Field(
        default=0,
        description="Minute (0-59) to check for GeoIP database updates",
    )


class Settings(BaseSettings):
    """Main application settings.

    This class aggregates all configuration sections and provides
    a single point of access for application configuration.

    Configuration precedence (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values

    Example .env file:
        APP_NAME=TrafficLens
        LOGPARSER_LOG_PATHS=/var/log/nginx/access.log,/var/log/nginx/access.log.1
        GEOIP_ACCOUNT_ID=123456
        GEOIP_LICENSE_KEY=xxxxxxxx
        GEOIP_EDITION_IDS=GeoLite2-City,GeoLite2-Country
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    name: str = Field(default="TrafficLens API", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")
    description: str = Field(
        default="Access log traffic metrics with GeoIP enrichment",
        description="Application description",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )

    # Sub-configurations
    api: APISettings = Field(default_factory=APISettings)
    geoip: GeoIPSettings = Field(default_factory=GeoIPSettings)
    logparser: LogParserSettings = Field(default_factory=LogParserSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    This function is cached to ensure we only parse configuration once.
    Use this function throughout the application to access settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
