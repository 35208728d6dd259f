"""
Tests for breaker configuration and configuration utilities.
"""

import pytest

from fusebox import BreakerConfig, ConfigurationError
from fusebox.errors import ErrorCode
from fusebox.util.config import (
    get_config_value,
    load_config_file,
    normalize_config_key,
    parse_duration_ms,
    validate_config,
)


class TimeoutLike(Exception):
    pass


class SpecificTimeout(TimeoutLike):
    pass


class TestBreakerConfig:
    """Test configuration validation and helpers."""

    def test_defaults_are_valid(self):
        config = BreakerConfig()

        assert config.validate() is True
        assert config.success_quorum == 5
        assert not config.slow_call_detection

    @pytest.mark.parametrize("options, field", [
        ({"window_size": 0}, "window_size"),
        ({"window_size": 5, "minimum_calls": 6}, "minimum_calls"),
        ({"minimum_calls": 0}, "minimum_calls"),
        ({"failure_rate_threshold": 101}, "failure_rate_threshold"),
        ({"failure_rate_threshold": -1}, "failure_rate_threshold"),
        ({"wait_duration_open_ms": -5}, "wait_duration_open_ms"),
        ({"permitted_calls_half_open": 0}, "permitted_calls_half_open"),
        ({"permitted_calls_half_open": 2, "half_open_success_quorum": 3}, "half_open_success_quorum"),
        ({"slow_call_rate_threshold": 50}, "slow_call_rate_threshold"),
        ({"window_size": 10.5}, "window_size"),
        ({"ignored_exceptions": {42}}, "ignored_exceptions"),
    ])
    def test_invalid_configuration(self, options, field):
        """Malformed configuration fails fast with a ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            BreakerConfig(**options)

        assert field in str(exc_info.value)
        assert exc_info.value.code is ErrorCode.INVALID_CONFIGURATION
        assert not exc_info.value.is_retryable()
        assert exc_info.value.to_dict()["error"] == "invalid_configuration"

    def test_immutable(self):
        config = BreakerConfig()

        with pytest.raises(AttributeError):
            config.window_size = 5

    def test_replace(self):
        config = BreakerConfig(window_size=10, minimum_calls=5)

        changed = config.replace(minimum_calls=10)

        assert changed.minimum_calls == 10
        assert config.minimum_calls == 5

    def test_success_quorum(self):
        """The default quorum is a ceil-half of the probe budget."""
        assert BreakerConfig(permitted_calls_half_open=1).success_quorum == 1
        assert BreakerConfig(permitted_calls_half_open=2).success_quorum == 1
        assert BreakerConfig(permitted_calls_half_open=4).success_quorum == 2
        assert BreakerConfig(permitted_calls_half_open=5).success_quorum == 3
        assert BreakerConfig(permitted_calls_half_open=4,
                             half_open_success_quorum=4).success_quorum == 4

    def test_slow_call_modes(self):
        """Slow calls feed the failure rate unless they have their own threshold."""
        combined = BreakerConfig(slow_call_duration_threshold_ms=200)
        separate = BreakerConfig(slow_call_duration_threshold_ms=200, slow_call_rate_threshold=80)

        assert combined.slow_calls_as_failures
        assert not separate.slow_calls_as_failures
        assert combined.is_slow(200)
        assert not combined.is_slow(199)
        assert not BreakerConfig().is_slow(10 ** 6)

    def test_is_ignored(self):
        """Ignored kinds match by class, subclass and name."""
        config = BreakerConfig(ignored_exceptions={TimeoutLike, "LookupError"})

        assert config.is_ignored(TimeoutLike())
        assert config.is_ignored(SpecificTimeout())
        assert config.is_ignored(KeyError("k"))
        assert config.is_ignored("TimeoutLike")
        assert config.is_ignored("LookupError")
        assert not config.is_ignored(ValueError())
        assert not config.is_ignored("ValueError")

    def test_from_dict(self):
        """Mappings accept camelCase keys and duration strings."""
        config = BreakerConfig.from_dict({
            "windowSize": 20,
            "minimumCalls": 10,
            "failureRateThreshold": 40,
            "slowCallDurationThreshold": "1.5s",
            "waitDurationOpenMs": 30000,
            "permittedCallsHalfOpen": 3,
            "ignoredExceptionKinds": ["NotFound"],
        })

        assert config.window_size == 20
        assert config.minimum_calls == 10
        assert config.failure_rate_threshold == 40
        assert config.slow_call_duration_threshold_ms == 1500
        assert config.wait_duration_open_ms == 30000
        assert config.permitted_calls_half_open == 3
        assert config.ignored_exceptions == frozenset({"NotFound"})

    def test_from_dict_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            BreakerConfig.from_dict({"windw_size": 3})

        assert exc_info.value.field == "windw_size"

    def test_from_dict_bad_duration(self):
        with pytest.raises(ConfigurationError):
            BreakerConfig.from_dict({"wait_duration_open": "soon"})

    def test_from_env(self, monkeypatch):
        """Environment variables override the base configuration."""
        monkeypatch.setenv("FUSEBOX_WINDOW_SIZE", "8")
        monkeypatch.setenv("FUSEBOX_MINIMUM_CALLS", "4")
        monkeypatch.setenv("FUSEBOX_FAILURE_RATE_THRESHOLD", "62.5")
        monkeypatch.setenv("FUSEBOX_WAIT_DURATION_OPEN_MS", "10s")
        monkeypatch.setenv("FUSEBOX_IGNORED_EXCEPTIONS", "NotFound, Conflict")

        config = BreakerConfig.from_env()

        assert config.window_size == 8
        assert config.minimum_calls == 4
        assert config.failure_rate_threshold == 62.5
        assert config.wait_duration_open_ms == 10000
        assert config.permitted_calls_half_open == 10
        assert config.ignored_exceptions == frozenset({"NotFound", "Conflict"})

    @pytest.mark.parametrize("variable, value, field", [
        ("FUSEBOX_WINDOW_SIZE", "abc", "window_size"),
        ("FUSEBOX_FAILURE_RATE_THRESHOLD", "half", "failure_rate_threshold"),
        ("FUSEBOX_WAIT_DURATION_OPEN_MS", "soon", "wait_duration_open_ms"),
    ])
    def test_from_env_malformed_value(self, monkeypatch, variable, value, field):
        """Unparseable environment values fail fast instead of using defaults."""
        monkeypatch.setenv(variable, value)

        with pytest.raises(ConfigurationError) as exc_info:
            BreakerConfig.from_env()

        assert exc_info.value.field == field
        assert value in str(exc_info.value)

    def test_to_dict(self):
        config = BreakerConfig(window_size=3, minimum_calls=3, ignored_exceptions={KeyError, "Gone"})

        data = config.to_dict()

        assert data["window_size"] == 3
        assert data["ignored_exceptions"] == ["Gone", "builtins.KeyError"]


class TestConfigUtilities:
    """Test configuration helper functions."""

    @pytest.mark.parametrize("value, expected", [
        (250, 250),
        ("250", 250),
        ("250ms", 250),
        ("2s", 2000),
        ("1.5m", 90000),
        ("1h", 3600000),
    ])
    def test_parse_duration_ms(self, value, expected):
        assert parse_duration_ms(value) == expected

    def test_parse_duration_invalid(self):
        with pytest.raises(ValueError):
            parse_duration_ms("two seconds")

    def test_normalize_config_key(self):
        assert normalize_config_key("waitDurationOpenMs") == "wait_duration_open_ms"
        assert normalize_config_key("window-size") == "window_size"
        assert normalize_config_key("window_size") == "window_size"

    def test_get_config_value(self, monkeypatch):
        monkeypatch.setenv("FUSEBOX_ENABLED", "yes")
        monkeypatch.setenv("FUSEBOX_RETRIES", "not-a-number")

        assert get_config_value("enabled", cast_type=bool) is True
        assert get_config_value("retries", 3, int) == 3
        assert get_config_value("missing", "fallback") == "fallback"

    def test_validate_config(self):
        schema = {'size': {'required': True, 'type': int, 'min': 1}}

        assert validate_config({'size': 3}, schema) == []
        assert validate_config({}, schema) == ["Missing required field: size"]
        assert validate_config({'size': 0}, schema) == ["Field size must be >= 1"]

    def test_load_config_file_rejects_unknown_format(self, tmp_path):
        path = tmp_path / "breakers.ini"
        path.write_text("[default]\n")

        with pytest.raises(ValueError):
            load_config_file(str(path))

    def test_load_config_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_file(str(tmp_path / "absent.yaml"))
