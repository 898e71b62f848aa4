"""
Unit tests for the configuration settings module.

Tests cover:
- Default configuration loading
- Invalid field format validation
- Startup validation
- Environment-specific configuration
"""

import os
import pytest
from datetime import timedelta
from unittest.mock import patch

from config.settings import (
    Settings,
    Environment,
    ConfigurationError,
    _detect_environment,
    _get_env_files,
    get_settings,
    validate_startup,
    clear_settings_cache,
)


class TestSettings:
    """Tests for the Settings class."""

    @pytest.fixture
    def valid_env_vars(self):
        """Provide valid environment variables for testing."""
        return {
            "DATABASE_URL": "mysql+aiomysql://telemetry:secret@db:3306/telemetria",
            "REDIS_URL": "redis://cache:6379/1",
            "ENVIRONMENT": "development",
        }

    def test_valid_configuration_loads_successfully(self, valid_env_vars):
        with patch.dict(os.environ, valid_env_vars, clear=True):
            settings = Settings()

            assert settings.database_url == "mysql+aiomysql://telemetry:secret@db:3306/telemetria"
            assert settings.redis_url == "redis://cache:6379/1"
            assert settings.environment == Environment.DEVELOPMENT

    def test_default_values_are_applied(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

            assert settings.server_port == 8080
            assert settings.database_pool_size == 25
            assert settings.database_max_overflow == 5
            assert settings.rate_limit_rps == 100.0
            assert settings.rate_limit_burst == 200
            assert settings.rate_limit_sweep_interval_seconds == 60.0
            assert settings.rate_limit_idle_multiplier == 3
            assert settings.mqtt_enabled is False
            assert settings.mqtt_topic == "telemetry/data"
            assert settings.mqtt_qos == 1
            assert settings.log_level == "INFO"
            assert settings.otel_service_name == "telemetry-endpoint"

    def test_derived_durations(self):
        with patch.dict(os.environ, {"CACHE_TTL_HOURS": "6", "REQUEST_DELAY_MS": "250"}, clear=True):
            settings = Settings()

            assert settings.cache_ttl == timedelta(hours=6)
            assert settings.request_delay == 0.25

    def test_invalid_database_url_raises_error(self):
        with patch.dict(os.environ, {"DATABASE_URL": "localhost:3306"}, clear=True):
            with pytest.raises(Exception) as exc_info:
                Settings()

            assert "database_url" in str(exc_info.value).lower()

    def test_invalid_redis_url_raises_error(self):
        with patch.dict(os.environ, {"REDIS_URL": "http://cache:6379"}, clear=True):
            with pytest.raises(Exception) as exc_info:
                Settings()

            assert "redis_url" in str(exc_info.value).lower()

    @pytest.mark.parametrize("url", ["tcp://broker:1883", "ssl://broker:8883", "wss://broker/mqtt"])
    def test_supported_broker_schemes(self, url):
        with patch.dict(os.environ, {"MQTT_BROKER_URL": url}, clear=True):
            assert Settings().mqtt_broker_url == url

    def test_unsupported_broker_scheme_raises_error(self):
        with patch.dict(os.environ, {"MQTT_BROKER_URL": "amqp://broker"}, clear=True):
            with pytest.raises(Exception) as exc_info:
                Settings()

            assert "mqtt_broker_url" in str(exc_info.value).lower()

    def test_invalid_qos_raises_error(self):
        with patch.dict(os.environ, {"MQTT_QOS": "3"}, clear=True):
            with pytest.raises(Exception):
                Settings()

    def test_non_positive_rate_raises_error(self):
        with patch.dict(os.environ, {"RATE_LIMIT_RPS": "0"}, clear=True):
            with pytest.raises(Exception):
                Settings()

    def test_invalid_log_level_raises_error(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "VERBOSE"}, clear=True):
            with pytest.raises(Exception) as exc_info:
                Settings()

            assert "log_level" in str(exc_info.value).lower()

    def test_log_level_is_normalized(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}, clear=True):
            assert Settings().log_level == "DEBUG"


class TestConfigurationError:
    """Tests for the ConfigurationError exception."""

    def test_error_message_with_missing_fields(self):
        error = ConfigurationError("Configuration failed", missing_fields=["database_url"])

        assert "Missing required fields: database_url" in str(error)

    def test_error_message_with_invalid_fields(self):
        error = ConfigurationError(
            "Configuration failed",
            invalid_fields={"redis_url": "must start with redis://"}
        )

        assert "Invalid field values" in str(error)
        assert "redis_url: must start with redis://" in str(error)


class TestGetSettings:
    """Tests for the get_settings function."""

    @pytest.fixture(autouse=True)
    def clear_cache(self):
        clear_settings_cache()
        yield
        clear_settings_cache()

    def test_get_settings_returns_cached_instance(self):
        with patch.dict(os.environ, {}, clear=True):
            first = get_settings()
            second = get_settings()

            assert isinstance(first, Settings)
            assert first is second

    def test_get_settings_raises_configuration_error_on_invalid_config(self):
        with patch.dict(os.environ, {"RATE_LIMIT_BURST": "0"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                get_settings()

            assert "rate_limit_burst" in exc_info.value.invalid_fields


class TestValidateStartup:
    """Tests for the validate_startup function."""

    @pytest.fixture(autouse=True)
    def clear_cache(self):
        clear_settings_cache()
        yield
        clear_settings_cache()

    def test_validate_startup_succeeds_with_valid_config(self, tmp_path):
        env = {"LOG_DIR": str(tmp_path), "DEVICE_LOG_DIR": str(tmp_path / "devices")}
        with patch.dict(os.environ, env, clear=True):
            validate_startup()

    def test_validate_startup_rejects_file_as_log_dir(self, tmp_path):
        log_file = tmp_path / "logs"
        log_file.write_text("")

        with patch.dict(os.environ, {"LOG_DIR": str(log_file)}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_startup()

            assert "log_dir" in exc_info.value.invalid_fields

    def test_validate_startup_rejects_burst_below_rate(self, tmp_path):
        env = {"LOG_DIR": str(tmp_path), "RATE_LIMIT_RPS": "50", "RATE_LIMIT_BURST": "10"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_startup()

            assert "rate_limit_burst" in exc_info.value.invalid_fields

    def test_validate_startup_rejects_sqlite_in_production(self, tmp_path):
        env = {
            "ENVIRONMENT": "production",
            "LOG_DIR": str(tmp_path),
            "DATABASE_URL": "sqlite+aiosqlite:///telemetry.db",
        }
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_startup()

            assert "database_url" in exc_info.value.invalid_fields


class TestEnvironmentSpecificConfiguration:
    """Tests for environment detection and .env file selection."""

    @pytest.mark.parametrize("value,expected", [
        ("production", Environment.PRODUCTION),
        ("STAGING", Environment.STAGING),
        (" development ", Environment.DEVELOPMENT),
    ])
    def test_detect_environment_from_env_var(self, value, expected):
        with patch.dict(os.environ, {"ENVIRONMENT": value}, clear=True):
            assert _detect_environment() == expected

    def test_detect_environment_defaults_to_development(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _detect_environment() == Environment.DEVELOPMENT

    def test_detect_environment_handles_invalid_value(self):
        with patch.dict(os.environ, {"ENVIRONMENT": "qa"}, clear=True):
            assert _detect_environment() == Environment.DEVELOPMENT

    def test_env_files_layer_base_and_environment(self):
        assert _get_env_files(Environment.STAGING) == (".env", ".env.staging")
