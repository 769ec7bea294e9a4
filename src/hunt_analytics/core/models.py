"""
Core data model for sales anomaly analysis.

Everything in this module is immutable once built. An anomaly and everything
derived from it (correlation results, hypotheses, dialogue sessions, answers,
follow-up tasks) hangs off the anomaly's composite key ``(date, product_id)``;
components hand these records to each other by value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

import pandas as pd


AnomalyKey = tuple[date, str]


def _as_date(value: Any) -> date:
    """Normalize ISO strings, datetimes and pandas timestamps to ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date")


class Granularity(str, Enum):
    """Bucket width used for aggregation and detection."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def period_freq(self) -> str:
        """pandas Period frequency; weeks run Monday to Sunday."""
        return {"day": "D", "week": "W-SUN", "month": "M"}[self.value]


class Severity(str, Enum):
    """How far outside the baseline a point sits."""

    MILD = "mild"
    """Just past the detection threshold."""

    MODERATE = "moderate"
    """Clearly abnormal."""

    SEVERE = "severe"
    """Extreme deviation, or any deviation from a perfectly flat baseline."""


class ExogenousKind(str, Enum):
    """Family of an external signal; drives which hypothesis template applies."""

    WEATHER = "weather"
    ECONOMIC = "economic"
    EVENT = "event"
    PROMOTION = "promotion"
    OTHER = "other"


# series_id prefixes used to guess a kind when the source did not supply one
_KIND_PREFIXES: dict[ExogenousKind, tuple[str, ...]] = {
    ExogenousKind.WEATHER: (
        "temp", "temperature", "humidity", "precip", "rain", "snow", "wind", "weather", "sunshine",
    ),
    ExogenousKind.ECONOMIC: (
        "nikkei", "usdjpy", "wti", "cpi", "fx", "econ", "index", "rate", "stock", "gas_price",
    ),
    ExogenousKind.EVENT: ("event", "holiday", "festival", "sports", "concert"),
    ExogenousKind.PROMOTION: ("promo", "campaign", "discount", "ad_spend"),
}


def infer_kind(series_id: str) -> ExogenousKind:
    lowered = series_id.lower()
    for kind, prefixes in _KIND_PREFIXES.items():
        if lowered.startswith(prefixes):
            return kind
    return ExogenousKind.OTHER


@dataclass(frozen=True)
class SalesPoint:
    """One ingested sales record."""

    date: date
    product_id: str
    quantity: float

    def __post_init__(self):
        object.__setattr__(self, "date", _as_date(self.date))
        object.__setattr__(self, "quantity", float(self.quantity))


@dataclass(frozen=True)
class AggregatedBucket:
    """Sum of sales over one period.

    Attributes:
        period_start: First day covered (inclusive).
        period_end: Last day covered (inclusive).
        granularity: Width of the period.
        aggregate_value: Summed quantity.
        product_id: Product the bucket belongs to.
    """

    period_start: date
    period_end: date
    granularity: Granularity
    aggregate_value: float
    product_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, "period_start", _as_date(self.period_start))
        object.__setattr__(self, "period_end", _as_date(self.period_end))
        object.__setattr__(self, "granularity", Granularity(self.granularity))
        object.__setattr__(self, "aggregate_value", float(self.aggregate_value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "granularity": self.granularity.value,
            "aggregate_value": self.aggregate_value,
            "product_id": self.product_id,
        }


@dataclass(frozen=True)
class Anomaly:
    """A bucket whose value deviates from its trailing baseline.

    Attributes:
        date: Start of the anomalous bucket.
        product_id: Product the anomaly belongs to.
        actual_value: Observed aggregate.
        expected_value: Baseline mean the point was compared against.
        z_score: Signed deviation in baseline standard deviations. Infinite
            when the baseline had zero variance.
        severity: Derived from |z_score|.
        granularity: Bucket width the anomaly was detected at.
    """

    date: date
    product_id: str
    actual_value: float
    expected_value: float
    z_score: float
    severity: Severity
    granularity: Granularity = Granularity.DAY

    def __post_init__(self):
        object.__setattr__(self, "date", _as_date(self.date))
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "granularity", Granularity(self.granularity))

    @property
    def key(self) -> AnomalyKey:
        return (self.date, self.product_id)

    @property
    def ref(self) -> str:
        """String form of the key, used in ids and store payloads."""
        return f"{self.date.isoformat()}|{self.product_id}"

    @property
    def deviation(self) -> float:
        return self.actual_value - self.expected_value

    @property
    def direction(self) -> str:
        return "spike" if self.deviation > 0 else "drop"

    def summary(self) -> str:
        z = "inf" if math.isinf(self.z_score) else f"{self.z_score:+.1f}"
        return (
            f"{self.product_id} on {self.date.isoformat()} ({self.granularity.value}): "
            f"{self.direction} to {self.actual_value:,.0f} vs expected {self.expected_value:,.0f} "
            f"(z={z}, {self.severity.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "product_id": self.product_id,
            "actual_value": self.actual_value,
            "expected_value": self.expected_value,
            "z_score": self.z_score,
            "severity": self.severity.value,
            "granularity": self.granularity.value,
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Anomaly":
        return cls(
            date=date.fromisoformat(data["date"]),
            product_id=data["product_id"],
            actual_value=float(data["actual_value"]),
            expected_value=float(data["expected_value"]),
            z_score=float(data["z_score"]),
            severity=Severity(data["severity"]),
            granularity=Granularity(data.get("granularity", "day")),
        )


def parse_anomaly_ref(ref: str) -> AnomalyKey:
    day, _, product_id = ref.partition("|")
    return (date.fromisoformat(day), product_id)


@dataclass(frozen=True)
class ExogenousSeries:
    """A read-only external daily signal (weather, market index, events...).

    ``points`` is kept sorted by date. Gaps are allowed; they only reduce the
    overlap available for correlation.
    """

    series_id: str
    points: tuple[tuple[date, float], ...]
    kind: Optional[ExogenousKind] = None

    def __post_init__(self):
        normalized = tuple(sorted((_as_date(d), float(v)) for d, v in self.points))
        object.__setattr__(self, "points", normalized)
        kind = infer_kind(self.series_id) if self.kind is None else ExogenousKind(self.kind)
        object.__setattr__(self, "kind", kind)

    @classmethod
    def from_mapping(cls, series_id: str, values: dict, kind: Optional[str] = None) -> "ExogenousSeries":
        return cls(series_id=series_id, points=tuple(values.items()), kind=kind)

    def as_series(self) -> pd.Series:
        if not self.points:
            return pd.Series(dtype=float)
        index = pd.DatetimeIndex([pd.Timestamp(d) for d, _ in self.points])
        return pd.Series([v for _, v in self.points], index=index, name=self.series_id)


@dataclass(frozen=True)
class CorrelationResult:
    """Best lagged correlation between an anomaly's sales deltas and one series.

    Attributes:
        factor_id: ``series_id`` of the exogenous signal.
        lag_days: Exogenous value at ``d + lag_days`` was paired with the
            sales delta at ``d``.
        correlation_coefficient: Pearson r in [-1, 1].
        p_value: Two-tailed p-value of r.
        sample_size: Number of overlapping pairs.
        rank: 1-based position after sorting by |r|.
        significant: ``p_value`` at or under the significance cutoff.
        interpretation: Human-readable strength / direction / significance.
        kind: Family of the exogenous signal.
    """

    factor_id: str
    lag_days: int
    correlation_coefficient: float
    p_value: float
    sample_size: int
    rank: int = 0
    significant: bool = False
    interpretation: str = ""
    kind: ExogenousKind = ExogenousKind.OTHER

    @property
    def strength(self) -> float:
        return abs(self.correlation_coefficient)

    def to_dict(self) -> dict[str, Any]:
        return {
            "factor_id": self.factor_id,
            "lag_days": self.lag_days,
            "correlation_coefficient": self.correlation_coefficient,
            "p_value": self.p_value,
            "sample_size": self.sample_size,
            "rank": self.rank,
            "significant": self.significant,
            "interpretation": self.interpretation,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class AnomalyAnalysis:
    """Everything the pipeline derived for one anomaly."""

    anomaly: Anomaly
    correlations: tuple[CorrelationResult, ...] = ()
    hypotheses: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomaly": self.anomaly.to_dict(),
            "correlations": [c.to_dict() for c in self.correlations],
            "hypotheses": [h.to_dict() for h in self.hypotheses],
        }
