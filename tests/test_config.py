"""Tests for EngineConfig defaults, validation and environment overrides."""

from datetime import timedelta

import pytest

from hunt_analytics.config import EngineConfig
from hunt_analytics.exceptions import ConfigurationError


class TestDefaults:
    """Values every component starts from."""

    def test_defaults_are_valid(self, config):
        assert config.validate() is config
        assert config.detection.threshold == 3.0
        assert config.correlation.lag_range == range(-7, 8)
        assert config.followup.offsets["yearly"] == 365

    def test_window_for_unknown_granularity(self, config):
        with pytest.raises(ConfigurationError):
            config.detection.window_for("hour")


class TestValidate:
    """Out-of-range values are rejected."""

    def test_non_positive_threshold(self, config):
        config.detection.threshold = 0
        with pytest.raises(ConfigurationError, match="threshold"):
            config.validate()

    def test_bands_must_increase(self, config):
        config.detection.severity_bands = (4.0, 3.0)
        with pytest.raises(ConfigurationError, match="severity_bands"):
            config.validate()

    def test_window_smaller_than_min_samples(self, config):
        config.detection.window["week"] = 3
        with pytest.raises(ConfigurationError, match=r"window\[week\]"):
            config.validate()

    def test_inverted_lag_range(self, config):
        config.correlation.lag_min, config.correlation.lag_max = 3, -3
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_zero_max_turns(self, config):
        config.dialogue.max_turns = 0
        with pytest.raises(ConfigurationError, match="max_turns"):
            config.validate()

    def test_empty_history_window(self, config):
        config.dialogue.history_days = 0
        with pytest.raises(ConfigurationError, match="history_days"):
            config.validate()


class TestFromEnv:
    """HUNT_* variables override defaults."""

    def test_empty_environment_keeps_defaults(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_overrides(self):
        config = EngineConfig.from_env({
            "HUNT_Z_THRESHOLD": "2.5",
            "HUNT_TOP_K": "5",
            "HUNT_MAX_LAG_DAYS": "3",
            "HUNT_IDLE_TIMEOUT_HOURS": "12",
            "HUNT_FOLLOWUP_DB": "/tmp/followups.db",
            "HUNT_LLM_PROVIDER": "ollama",
            "HUNT_HISTORY_LIMIT": "0",
            "HUNT_TEMPLATE_VERSION": "2024.1",
        })
        assert config.detection.threshold == 2.5
        assert config.correlation.top_k == 5
        assert config.correlation.lag_range == range(-3, 4)
        assert config.dialogue.idle_timeout == timedelta(hours=12)
        assert config.followup.db_path == "/tmp/followups.db"
        assert config.llm_provider == "ollama"
        assert config.dialogue.history_limit == 0
        assert config.hypothesis.template_version == "2024.1"

    def test_blank_values_ignored(self):
        config = EngineConfig.from_env({"HUNT_TOP_K": ""})
        assert config.correlation.top_k == 3

    def test_unparseable_value(self):
        with pytest.raises(ConfigurationError, match="HUNT_MIN_SAMPLES"):
            EngineConfig.from_env({"HUNT_MIN_SAMPLES": "five"})

    def test_result_is_validated(self):
        with pytest.raises(ConfigurationError, match="significance"):
            EngineConfig.from_env({"HUNT_SIGNIFICANCE": "1.5"})
