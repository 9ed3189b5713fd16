"""Tests for configuration loading and validation."""

import pytest

from servicekit.config import Environment, Settings, parse_address
from servicekit.exceptions import ConfigurationError


class TestParseAddress:
    """Tests for host:port parsing."""

    def test_empty_host_listens_on_all_interfaces(self):
        assert parse_address(":8080") == ("0.0.0.0", 8080)

    def test_explicit_host(self):
        assert parse_address("127.0.0.1:9090") == ("127.0.0.1", 9090)

    def test_ipv6_brackets_are_stripped(self):
        assert parse_address("[::1]:8080") == ("::1", 8080)

    @pytest.mark.parametrize("address", ["8080", "localhost:http", "localhost:70000", ""])
    def test_invalid_addresses_raise(self, address: str):
        with pytest.raises(ValueError):
            parse_address(address)


class TestSettingsLoad:
    """Tests for the Environment -> Settings layer."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        """Test defaults match the documented listener configuration."""
        for var in ("ADDR", "METRICS_ADDR", "SHUTDOWN_TIMEOUT", "LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)

        settings = Settings.load(Environment(_env_file=None))

        assert settings.addr == ":8080"
        assert settings.metrics_addr == ":9090"
        assert settings.read_timeout == 10.0
        assert settings.write_timeout == 10.0
        assert settings.idle_timeout == 120.0
        assert settings.shutdown_timeout == 30.0
        assert settings.metrics_path == "/metrics"
        assert settings.health_path == "/health"
        assert settings.readiness_path == "/ready"
        assert settings.liveness_path == "/live"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ADDR", "127.0.0.1:8000")
        monkeypatch.setenv("SHUTDOWN_TIMEOUT", "12.5")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.load()

        assert settings.primary_host == "127.0.0.1"
        assert settings.primary_port == 8000
        assert settings.shutdown_timeout == 12.5
        assert settings.log_level == "DEBUG"

    def test_unparseable_number_raises_configuration_error(
        self, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("READ_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError) as exc_info:
            Settings.load()

        assert exc_info.value.error_code == "CONFIGURATION_INVALID"

    def test_channel_timeout_is_largest_timeout(self):
        settings = Settings(read_timeout=3, write_timeout=7, idle_timeout=5)

        assert settings.channel_timeout == 7


class TestSettingsValidation:
    """Tests for validate_config."""

    def test_valid_settings_pass(self, test_settings: Settings):
        test_settings.validate_config()

    def test_collects_all_errors(self):
        settings = Settings(
            addr="nope",
            metrics_path="metrics",
            shutdown_timeout=0,
            waitress_threads=0,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate_config()

        message = str(exc_info.value)
        assert message.startswith("Configuration validation failed:")
        assert "ADDR is invalid" in message
        assert "METRICS_PATH must start with '/'" in message
        assert "SHUTDOWN_TIMEOUT must be positive" in message
        assert "WAITRESS_THREADS must be at least 1" in message

    def test_paths_must_be_distinct(self):
        settings = Settings(health_path="/status", readiness_path="/status")

        with pytest.raises(ConfigurationError, match="distinct"):
            settings.validate_config()
