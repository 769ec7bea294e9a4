"""
Core analytics modules.

Pure, stateless computations that can run for many anomalies in parallel:
- models: immutable records shared by every layer
- aggregation: raw sales -> day / week / month buckets
- detector: rolling-baseline z-score anomaly detection
- correlation: lagged correlation ranking against exogenous series
"""

from .aggregation import TimeSeriesAggregator, to_daily_series, validate_points
from .correlation import CorrelationRanker, RankingReport, interpret_correlation
from .detector import AnomalyDetector, validate_buckets
from .models import (
    AggregatedBucket,
    Anomaly,
    AnomalyAnalysis,
    CorrelationResult,
    ExogenousKind,
    ExogenousSeries,
    Granularity,
    SalesPoint,
    Severity,
    infer_kind,
    parse_anomaly_ref,
)

__all__ = [
    # Models
    "AggregatedBucket",
    "Anomaly",
    "AnomalyAnalysis",
    "CorrelationResult",
    "ExogenousKind",
    "ExogenousSeries",
    "Granularity",
    "SalesPoint",
    "Severity",
    "infer_kind",
    "parse_anomaly_ref",
    # Aggregation
    "TimeSeriesAggregator",
    "to_daily_series",
    "validate_points",
    # Detection
    "AnomalyDetector",
    "validate_buckets",
    # Correlation
    "CorrelationRanker",
    "RankingReport",
    "interpret_correlation",
]
