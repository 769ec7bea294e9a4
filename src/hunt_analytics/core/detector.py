"""
Rolling-baseline anomaly detection.

For every bucket the detector looks back over a trailing window (the point under
test excluded), computes the window mean and population standard deviation, and
flags the bucket when ``|value - mean| > threshold * std``.

Rules:
- Fewer than ``min_samples`` prior buckets: no baseline, nothing can be flagged.
- Flat window (std == 0): flagged only when the value differs from the flat
  level at all, and then always SEVERE with an infinite z-score.
- Input is validated before any scoring, so a bad series yields an error and
  never a partial result.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Union

import numpy as np

from hunt_analytics.config import DetectionConfig
from hunt_analytics.core.aggregation import TimeSeriesAggregator
from hunt_analytics.core.models import AggregatedBucket, Anomaly, Granularity, SalesPoint, Severity
from hunt_analytics.exceptions import InsufficientDataError, ValidationError

logger = logging.getLogger(__name__)

# z-scores at a band edge come out an ulp or two either side of it
EDGE_TOLERANCE = 1e-9


def _reaches(value: float, edge: float) -> bool:
    return value >= edge or math.isclose(value, edge, rel_tol=EDGE_TOLERANCE)


def _exceeds(value: float, edge: float) -> bool:
    return value > edge and not math.isclose(value, edge, rel_tol=EDGE_TOLERANCE)


def validate_buckets(buckets: Sequence[AggregatedBucket], granularity: Granularity) -> None:
    """Check a bucket series is single-product, single-granularity, finite and strictly increasing."""
    previous = None
    products = set()
    for i, b in enumerate(buckets):
        if b.granularity != granularity:
            raise ValidationError(
                f"Bucket {i} has granularity '{b.granularity.value}', expected '{granularity.value}'",
                detail={"index": i},
            )
        if not math.isfinite(b.aggregate_value):
            raise ValidationError(
                f"Bucket {i} ({b.period_start}) has a non-finite value",
                detail={"index": i, "period_start": b.period_start.isoformat()},
            )
        if previous is not None and b.period_start <= previous:
            raise ValidationError(
                f"Bucket dates must be strictly increasing: {b.period_start} follows {previous}",
                detail={"index": i, "period_start": b.period_start.isoformat()},
            )
        previous = b.period_start
        products.add(b.product_id)

    if len(products) > 1:
        raise ValidationError(
            "Bucket series mixes several products",
            detail={"product_ids": sorted(products)},
        )


class AnomalyDetector:
    """Flags buckets that sit too far from their trailing baseline."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def severity_for(self, z_score: float) -> Severity:
        low, high = self.config.severity_bands
        magnitude = abs(z_score)
        if _reaches(magnitude, high):
            return Severity.SEVERE
        if _reaches(magnitude, low):
            return Severity.MODERATE
        return Severity.MILD

    def _baseline(self, window: np.ndarray) -> tuple[float, float]:
        """Mean and population std of a trailing window."""
        if len(window) < self.config.min_samples:
            raise InsufficientDataError(
                f"{len(window)} samples in window, need {self.config.min_samples}"
            )
        # np.mean of a flat window can drift by an ulp, so report the level itself
        if np.ptp(window) == 0:
            return float(window[0]), 0.0
        return float(np.mean(window)), float(np.std(window))

    def detect(
        self,
        buckets: Sequence[AggregatedBucket],
        granularity: Union[Granularity, str] = Granularity.DAY,
    ) -> list[Anomaly]:
        """Scan a bucket series and return its anomalies, ascending by date.

        Raises:
            ValidationError: on unsorted, duplicated, mixed or non-finite input.
        """
        granularity = Granularity(granularity)
        buckets = list(buckets)
        validate_buckets(buckets, granularity)
        if not buckets:
            return []

        window_size = self.config.window_for(granularity.value)
        values = np.array([b.aggregate_value for b in buckets], dtype=float)
        anomalies: list[Anomaly] = []
        skipped = 0

        for i, bucket in enumerate(buckets):
            window = values[max(0, i - window_size):i]
            try:
                mean, std = self._baseline(window)
            except InsufficientDataError:
                skipped += 1
                continue

            value = values[i]
            deviation = value - mean

            if std == 0.0:
                if value == mean:
                    continue
                z_score = math.copysign(math.inf, deviation)
                severity = Severity.SEVERE
            else:
                z_score = deviation / std
                if not _exceeds(abs(deviation), self.config.threshold * std):
                    continue
                severity = self.severity_for(z_score)

            anomalies.append(Anomaly(
                date=bucket.period_start,
                product_id=bucket.product_id,
                actual_value=float(value),
                expected_value=mean,
                z_score=float(z_score),
                severity=severity,
                granularity=granularity,
            ))

        if skipped:
            logger.debug(
                f"Skipped {skipped}/{len(buckets)} {granularity.value} buckets "
                f"with fewer than {self.config.min_samples} baseline samples"
            )
        if anomalies:
            logger.info(
                f"Detected {len(anomalies)} anomalies in {len(buckets)} "
                f"{granularity.value} buckets for {buckets[0].product_id}"
            )
        return anomalies

    def detect_points(
        self,
        points: Sequence[SalesPoint],
        granularity: Union[Granularity, str] = Granularity.DAY,
        aggregator: Optional[TimeSeriesAggregator] = None,
    ) -> list[Anomaly]:
        """Aggregate raw sales points, then detect."""
        aggregator = aggregator or TimeSeriesAggregator()
        return self.detect(aggregator.aggregate(points, granularity), granularity)
