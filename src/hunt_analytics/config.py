"""
Engine configuration.

One ``EngineConfig`` is built at process start (usually via
``EngineConfig.from_env()``) and handed to every component by reference.
Components never read the environment themselves.

Usage:
    config = EngineConfig.from_env()
    detector = AnomalyDetector(config.detection)
    ranker = CorrelationRanker(config.correlation)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional

from hunt_analytics.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _default_windows() -> dict[str, int]:
    return {"day": 90, "week": 12, "month": 12}


def _default_offsets() -> dict[str, int]:
    return {"short_term": 7, "medium_term": 30, "long_term": 90, "yearly": 365}


@dataclass
class DetectionConfig:
    """Rolling-baseline z-score detection settings."""

    threshold: float = 3.0
    min_samples: int = 5
    # Trailing window length, in buckets, per granularity
    window: dict[str, int] = field(default_factory=_default_windows)
    # |z| below bands[0] is mild, below bands[1] moderate, anything else severe
    severity_bands: tuple[float, float] = (3.0, 4.0)

    def window_for(self, granularity: str) -> int:
        try:
            return self.window[granularity]
        except KeyError:
            raise ConfigurationError(
                f"No detection window configured for granularity '{granularity}'"
            )


@dataclass
class CorrelationConfig:
    """Lagged cross-correlation search settings."""

    lag_min: int = -7
    lag_max: int = 7
    top_k: int = 3
    significance: float = 0.05
    min_overlap: int = 10
    window_before_days: int = 30
    window_after_days: int = 7

    @property
    def lag_range(self) -> range:
        return range(self.lag_min, self.lag_max + 1)


@dataclass
class HypothesisConfig:
    fallback_confidence: float = 0.1
    min_abs_coefficient: float = 0.3
    # Pins the template table; hypothesis ids are keyed on its version
    template_version: Optional[str] = None


@dataclass
class DialogueConfig:
    max_turns: int = 2
    idle_timeout: Optional[timedelta] = None
    # Earlier resolutions of the same product shown as context when a session starts
    history_days: int = 365
    history_limit: int = 3


@dataclass
class FollowUpConfig:
    offsets: dict[str, int] = field(default_factory=_default_offsets)
    poll_interval_seconds: int = 300
    claim_lease_seconds: int = 900
    db_path: str = ":memory:"


@dataclass
class RetryConfig:
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0


@dataclass
class EngineConfig:
    """Top-level configuration tree."""

    detection: DetectionConfig = field(default_factory=DetectionConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    hypothesis: HypothesisConfig = field(default_factory=HypothesisConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    followup: FollowUpConfig = field(default_factory=FollowUpConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    retrieval_db_path: str = ":memory:"
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None

    def validate(self) -> "EngineConfig":
        """Check value ranges. Returns self so calls can be chained."""
        d = self.detection
        if d.threshold <= 0:
            raise ConfigurationError("detection.threshold must be positive")
        if d.min_samples < 2:
            raise ConfigurationError("detection.min_samples must be at least 2")
        low, high = d.severity_bands
        if not 0 < low < high:
            raise ConfigurationError("detection.severity_bands must be increasing and positive")
        for name, size in d.window.items():
            if size < d.min_samples:
                raise ConfigurationError(
                    f"detection.window[{name}]={size} is smaller than min_samples={d.min_samples}"
                )

        c = self.correlation
        if c.lag_min > c.lag_max:
            raise ConfigurationError("correlation.lag_min must not exceed lag_max")
        if c.top_k < 1:
            raise ConfigurationError("correlation.top_k must be at least 1")
        if not 0 < c.significance < 1:
            raise ConfigurationError("correlation.significance must be in (0, 1)")
        if c.min_overlap < 3:
            raise ConfigurationError("correlation.min_overlap must be at least 3")

        if not 0 <= self.hypothesis.fallback_confidence <= 1:
            raise ConfigurationError("hypothesis.fallback_confidence must be in [0, 1]")
        if self.dialogue.max_turns < 1:
            raise ConfigurationError("dialogue.max_turns must be at least 1")
        if self.dialogue.history_days < 1 or self.dialogue.history_limit < 0:
            raise ConfigurationError("dialogue.history_days must be positive and history_limit not negative")
        if any(days <= 0 for days in self.followup.offsets.values()):
            raise ConfigurationError("followup.offsets must be positive day counts")
        if self.retry.attempts < 1:
            raise ConfigurationError("retry.attempts must be at least 1")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from ``HUNT_*`` environment variables.

        Unset or empty variables keep the dataclass defaults. The result is
        validated before it is returned.
        """
        env = os.environ if environ is None else environ
        config = cls()

        def set_lag(c: "EngineConfig", v: int) -> None:
            c.correlation.lag_min, c.correlation.lag_max = -v, v

        def set_idle(c: "EngineConfig", v: float) -> None:
            c.dialogue.idle_timeout = timedelta(hours=v)

        overrides = [
            ("HUNT_Z_THRESHOLD", float, lambda c, v: setattr(c.detection, "threshold", v)),
            ("HUNT_MIN_SAMPLES", int, lambda c, v: setattr(c.detection, "min_samples", v)),
            ("HUNT_TOP_K", int, lambda c, v: setattr(c.correlation, "top_k", v)),
            ("HUNT_SIGNIFICANCE", float, lambda c, v: setattr(c.correlation, "significance", v)),
            ("HUNT_MAX_LAG_DAYS", int, set_lag),
            ("HUNT_MIN_OVERLAP", int, lambda c, v: setattr(c.correlation, "min_overlap", v)),
            ("HUNT_TEMPLATE_VERSION", str, lambda c, v: setattr(c.hypothesis, "template_version", v)),
            ("HUNT_MAX_TURNS", int, lambda c, v: setattr(c.dialogue, "max_turns", v)),
            ("HUNT_IDLE_TIMEOUT_HOURS", float, set_idle),
            ("HUNT_HISTORY_DAYS", int, lambda c, v: setattr(c.dialogue, "history_days", v)),
            ("HUNT_HISTORY_LIMIT", int, lambda c, v: setattr(c.dialogue, "history_limit", v)),
            ("HUNT_POLL_INTERVAL_SECONDS", int, lambda c, v: setattr(c.followup, "poll_interval_seconds", v)),
            ("HUNT_FOLLOWUP_DB", str, lambda c, v: setattr(c.followup, "db_path", v)),
            ("HUNT_RETRIEVAL_DB", str, lambda c, v: setattr(c, "retrieval_db_path", v)),
            ("HUNT_RETRY_ATTEMPTS", int, lambda c, v: setattr(c.retry, "attempts", v)),
            ("HUNT_LLM_PROVIDER", str, lambda c, v: setattr(c, "llm_provider", v)),
            ("HUNT_LLM_MODEL", str, lambda c, v: setattr(c, "llm_model", v)),
        ]

        for name, cast, apply in overrides:
            raw = env.get(name)
            if raw is None or raw == "":
                continue
            try:
                value = cast(raw)
            except ValueError:
                raise ConfigurationError(f"{name}={raw!r} is not a valid {cast.__name__}")
            apply(config, value)

        logger.debug(f"Loaded engine config: {config}")
        return config.validate()
