"""
Tests for settings and per-session configuration.
Run with: pytest tests/test_config.py -v
"""
import pytest


class TestSessionConfig:
    def test_defaults_are_valid(self):
        from smartproctor.config import SessionConfig
        config = SessionConfig().validate()
        assert config.tick_interval_seconds == 1.0
        assert config.alert_capacity == 20
        assert config.repeat_alerts is True

    @pytest.mark.parametrize("overrides", [
        {"tick_interval_ms": 0},
        {"tick_interval_ms": -5},
        {"tick_interval_ms": "fast"},
        {"alert_capacity": 0},
        {"alert_capacity": 2.5},
        {"profile": "level9"},
        {"identity_threshold": 150},
    ])
    def test_invalid_options(self, overrides):
        from smartproctor.config import SessionConfig
        from smartproctor.errors import ConfigurationError
        with pytest.raises(ConfigurationError):
            SessionConfig(**overrides).validate()

    def test_configuration_error_is_value_error(self):
        from smartproctor.errors import ConfigurationError, ProctorError
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(ConfigurationError, ProctorError)

    def test_controller_rejects_invalid_config(self, scripted_sampler):
        from smartproctor.config import SessionConfig
        from smartproctor.errors import ConfigurationError
        from smartproctor.session.controller import SessionController
        with pytest.raises(ConfigurationError):
            SessionController(scripted_sampler(), SessionConfig(alert_capacity=0))


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        from smartproctor.config import SessionConfig, Settings
        monkeypatch.setenv("TICK_INTERVAL_MS", "250")
        monkeypatch.setenv("SCORING_PROFILE", "wired")
        monkeypatch.setenv("REPEAT_ALERTS", "false")

        config = SessionConfig.from_settings(Settings())
        assert config.tick_interval_ms == 250
        assert config.profile == "wired"
        assert config.repeat_alerts is False
        config.validate()

    def test_broker_defaults(self):
        from smartproctor.config import Settings
        settings = Settings()
        assert settings.exchange_name == "proctoring.exchange"
        assert settings.publish_results is False
