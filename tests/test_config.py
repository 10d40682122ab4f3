"""Tests for configuration validation."""

import pytest

from cftunnel.config import (
    DEFAULT_API_BASE,
    DEFAULT_SERVICE_URL,
    ConfigurationError,
    Settings,
    validate_config_on_startup,
)
from cftunnel.schemas.cloudflare import TunnelPolicy


class TestSettingsDefaults:

    def test_defaults(self, settings):
        assert settings.api_base == DEFAULT_API_BASE
        assert settings.default_service_url == DEFAULT_SERVICE_URL
        assert settings.http_timeout is None
        assert settings.tunnel_policy == TunnelPolicy.REUSE
        assert settings.rollback_on_failure is False

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("CFTUNNEL_TUNNEL_POLICY", "recreate")
        monkeypatch.setenv("CFTUNNEL_ROLLBACK_ON_FAILURE", "true")
        monkeypatch.setenv("CFTUNNEL_HTTP_TIMEOUT", "12.5")
        settings = Settings(_env_file=None)
        assert settings.tunnel_policy == TunnelPolicy.RECREATE
        assert settings.rollback_on_failure is True
        assert settings.http_timeout == 12.5


class TestSettingsValidation:
    """Test Settings.validate_required() method."""

    def test_default_settings_are_valid(self, settings):
        assert settings.validate_required() == []

    def test_invalid_api_base(self):
        settings = Settings(_env_file=None, api_base="api.cloudflare.com")
        errors = settings.validate_required()
        assert any("CFTUNNEL_API_BASE" in e for e in errors)

    def test_plain_http_api_base_only_warns(self):
        settings = Settings(_env_file=None, api_base="http://localhost:8787/client/v4")
        assert settings.validate_required() == []

    def test_non_positive_timeout(self):
        settings = Settings(_env_file=None, http_timeout=0)
        errors = settings.validate_required()
        assert any("CFTUNNEL_HTTP_TIMEOUT" in e for e in errors)

    def test_invalid_default_service_url(self):
        settings = Settings(_env_file=None, default_service_url="localhost:3010")
        errors = settings.validate_required()
        assert any("CFTUNNEL_DEFAULT_SERVICE_URL" in e for e in errors)

    def test_invalid_log_level(self):
        settings = Settings(_env_file=None, log_level="chatty")
        errors = settings.validate_required()
        assert any("CFTUNNEL_LOG_LEVEL" in e for e in errors)


class TestValidateConfigOnStartup:

    def test_valid_config_does_not_raise(self, settings):
        validate_config_on_startup(settings)

    def test_invalid_config_raises_configuration_error(self, capsys):
        settings = Settings(_env_file=None, api_base="nope", http_timeout=-1)
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config_on_startup(settings)
        assert "CFTUNNEL_API_BASE" in str(exc_info.value)
        assert "CFTUNNEL_HTTP_TIMEOUT" in capsys.readouterr().err

    def test_configuration_error_is_runtime_error(self):
        assert isinstance(ConfigurationError("x"), RuntimeError)
