"""
Configuration management for the telemetry endpoint.

This module provides centralized configuration loading and validation using
Pydantic settings. Every value can be supplied through environment variables
or .env files; defaults are suitable for a local MySQL + Redis setup.
"""

import os
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _detect_environment() -> Environment:
    """
    Detect the current environment from the ENVIRONMENT variable.

    Returns:
        Environment: The detected environment, defaults to DEVELOPMENT if not set.
    """
    env_value = os.environ.get("ENVIRONMENT", "development").lower().strip()
    try:
        return Environment(env_value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """
    Get the list of .env files to load for the given environment.

    Files are loaded in order, with later files overriding earlier ones.

    Args:
        environment: The target environment.

    Returns:
        Tuple of .env file paths to load.
    """
    env_file_map = {
        Environment.DEVELOPMENT: ".env.development",
        Environment.STAGING: ".env.staging",
        Environment.PRODUCTION: ".env.production",
    }

    env_specific_file = env_file_map.get(environment, ".env.development")

    return (".env", env_specific_file)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment-specific configuration is supported through:
    - .env.development - Development environment settings
    - .env.staging - Staging environment settings
    - .env.production - Production environment settings

    The ENVIRONMENT variable determines which file to load.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )

    # HTTP Server Configuration
    server_host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to"
    )
    server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port the HTTP server listens on"
    )

    # Relational Store Configuration
    database_url: str = Field(
        default="mysql+aiomysql://root:@localhost:3306/telemetria",
        description="SQLAlchemy async database URL"
    )
    database_pool_size: int = Field(
        default=25,
        ge=1,
        le=500,
        description="Number of pooled database connections"
    )
    database_max_overflow: int = Field(
        default=5,
        ge=0,
        le=500,
        description="Connections allowed above the pool size"
    )
    database_pool_recycle_seconds: int = Field(
        default=300,
        ge=1,
        description="Maximum lifetime of a pooled connection"
    )

    # Cache Configuration
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the device cache"
    )
    redis_pool_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum Redis connections"
    )
    cache_ttl_hours: int = Field(
        default=24,
        ge=1,
        le=168,  # Max 1 week
        description="Time-to-live of cached device entries in hours"
    )

    # Deadline applied to every storage and cache call
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Deadline in seconds for each storage or cache operation"
    )

    # MQTT Configuration
    mqtt_enabled: bool = Field(
        default=False,
        description="Subscribe to the MQTT broker on startup"
    )
    mqtt_broker_url: str = Field(
        default="tcp://localhost:1883",
        description="Broker URL (tcp://, ssl://, tls:// or mqtts://)"
    )
    mqtt_client_id: str = Field(
        default="telemetry-endpoint",
        description="MQTT client identifier"
    )
    mqtt_username: Optional[str] = Field(default=None)
    mqtt_password: Optional[str] = Field(default=None)
    mqtt_topic: str = Field(
        default="telemetry/data",
        description="Topic carrying telemetry reports"
    )
    mqtt_qos: int = Field(
        default=1,
        ge=0,
        le=2,
        description="Subscription quality of service"
    )
    mqtt_clean_session: bool = Field(default=True)
    mqtt_message_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Deadline for processing a single MQTT message"
    )

    # Rate Limiting Configuration
    rate_limit_rps: float = Field(
        default=100.0,
        gt=0,
        description="Token refill rate per client, in requests per second"
    )
    rate_limit_burst: int = Field(
        default=200,
        ge=1,
        description="Token bucket capacity per client"
    )
    request_delay_ms: int = Field(
        default=10,
        ge=0,
        le=10000,
        description="Delay inserted after each admitted request (0 disables)"
    )
    rate_limit_sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Interval between idle client sweeps"
    )
    rate_limit_idle_multiplier: int = Field(
        default=3,
        ge=1,
        description="Sweep intervals a client may stay idle before eviction"
    )

    # Observability Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_dir: str = Field(default="./logs")
    app_log_file: str = Field(default="app.log")
    invalid_log_file: str = Field(default="invalid_requests.log")
    device_log_dir: str = Field(default="./logs/devices")
    otel_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry collector endpoint URL"
    )
    otel_service_name: str = Field(
        default="telemetry-endpoint",
        description="Service name for OpenTelemetry traces"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate that database_url is a SQLAlchemy URL with a driver."""
        if not v or not v.strip():
            raise ValueError("database_url cannot be empty")
        v = v.strip()
        if "://" not in v:
            raise ValueError("database_url must be a SQLAlchemy URL such as mysql+aiomysql://...")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate that redis_url uses a redis scheme."""
        v = v.strip()
        if not (v.startswith("redis://") or v.startswith("rediss://") or v.startswith("unix://")):
            raise ValueError("redis_url must start with redis://, rediss:// or unix://")
        return v

    @field_validator("mqtt_broker_url")
    @classmethod
    def validate_mqtt_broker_url(cls, v: str) -> str:
        """Validate the broker URL scheme."""
        v = v.strip()
        if v and v.split("://", 1)[0] not in {"tcp", "mqtt", "ssl", "tls", "mqtts", "ws", "wss"}:
            raise ValueError("mqtt_broker_url must use tcp, mqtt, ssl, tls, mqtts, ws or wss")
        return v

    @field_validator("mqtt_topic")
    @classmethod
    def validate_mqtt_topic(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("mqtt_topic cannot be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @model_validator(mode="after")
    def validate_mqtt_config(self) -> "Settings":
        """Require a broker URL when MQTT is enabled outside development."""
        if self.mqtt_enabled and not self.mqtt_broker_url:
            if self.environment != Environment.DEVELOPMENT:
                raise ValueError(
                    "mqtt_broker_url is required when mqtt_enabled is true "
                    "in non-development environments"
                )
        return self

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(hours=self.cache_ttl_hours)

    @property
    def request_delay(self) -> float:
        """Post-admission delay in seconds."""
        return self.request_delay_ms / 1000.0


class ConfigurationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())

    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        parts = [self.message]

        if self.missing_fields:
            parts.append(f"\nMissing required fields: {', '.join(self.missing_fields)}")

        if self.invalid_fields:
            invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
            parts.append("\nInvalid field values:\n" + "\n".join(invalid_parts))

        return "".join(parts)


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Factory function to create Settings for a specific environment.

    Args:
        environment: Optional environment override. If not provided, detected from
                    ENVIRONMENT variable.

    Returns:
        Settings: Validated settings for the specified environment.

    Raises:
        ConfigurationError: If settings are missing or invalid.
    """
    if environment is None:
        environment = _detect_environment()

    env_files = _get_env_files(environment)

    existing_env_files = [env_file for env_file in env_files if Path(env_file).exists()]
    if not existing_env_files:
        existing_env_files = list(env_files)

    try:
        class EnvironmentSettings(Settings):
            model_config = SettingsConfigDict(
                env_file=tuple(existing_env_files),
                env_file_encoding="utf-8",
                case_sensitive=False,
                extra="ignore"
            )

        return EnvironmentSettings()
    except Exception as e:
        missing_fields = []
        invalid_fields = {}

        if hasattr(e, 'errors'):
            for error in e.errors():
                field_name = '.'.join(str(loc) for loc in error.get('loc', []))
                error_type = error.get('type', '')
                error_msg = error.get('msg', str(error))

                if error_type == 'missing':
                    missing_fields.append(field_name)
                else:
                    invalid_fields[field_name] = error_msg

        raise ConfigurationError(
            f"Failed to load configuration for environment '{environment.value}'",
            missing_fields=missing_fields,
            invalid_fields=invalid_fields
        ) from e


# Global settings cache
_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Settings are loaded once and cached for subsequent calls.

    Returns:
        Settings: The validated application settings.

    Raises:
        ConfigurationError: If settings are missing or invalid.
    """
    global _settings_cache

    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()

    return _settings_cache


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    This is primarily useful for testing to allow reloading settings
    with different environment variables.
    """
    global _settings_cache
    _settings_cache = None


def validate_startup() -> None:
    """
    Validate settings at application startup.

    Checks that the log directories can be created and that the rate
    limiter is configured consistently.

    Raises:
        ConfigurationError: If any settings are invalid.
    """
    settings = get_settings()

    validation_errors = {}

    for field_name in ("log_dir", "device_log_dir"):
        path = Path(getattr(settings, field_name))
        if path.exists() and not path.is_dir():
            validation_errors[field_name] = f"Not a directory: {path}"

    if settings.rate_limit_burst < settings.rate_limit_rps and settings.rate_limit_rps >= 1:
        validation_errors["rate_limit_burst"] = (
            f"Burst size {settings.rate_limit_burst} is smaller than the refill rate "
            f"{settings.rate_limit_rps}; clients could never use a full second of tokens"
        )

    if settings.environment == Environment.PRODUCTION and settings.database_url.startswith("sqlite"):
        validation_errors["database_url"] = "SQLite is not supported in production"

    if validation_errors:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=validation_errors
        )

