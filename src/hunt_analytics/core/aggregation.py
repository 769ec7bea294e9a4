"""
Time series aggregation.

Turns a product's raw ``SalesPoint`` stream into contiguous day, ISO-week
(Monday to Sunday) or calendar-month buckets. Periods with no sales inside the
covered range become zero-valued buckets, so a detector's trailing window
always spans real calendar time rather than "the last N records".

Recomputation never mutates a previous result: each call builds a fresh list
of frozen ``AggregatedBucket`` records.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Sequence, Union

import pandas as pd

from hunt_analytics.core.models import AggregatedBucket, Granularity, SalesPoint
from hunt_analytics.exceptions import ValidationError

logger = logging.getLogger(__name__)


def validate_points(points: Sequence[SalesPoint]) -> None:
    """Reject mixed products, unsorted or duplicated dates and non-finite quantities."""
    if not points:
        return

    product_ids = {p.product_id for p in points}
    if len(product_ids) > 1:
        raise ValidationError(
            "Sales points span several products; aggregate them separately",
            detail={"product_ids": sorted(product_ids)},
        )

    previous = None
    for i, p in enumerate(points):
        if pd.isna(p.quantity) or p.quantity in (float("inf"), float("-inf")):
            raise ValidationError(
                f"Non-finite quantity at index {i} ({p.date})",
                detail={"index": i, "date": p.date.isoformat()},
            )
        if previous is not None and p.date <= previous:
            raise ValidationError(
                f"Sales dates must be strictly increasing: {p.date} follows {previous}",
                detail={"index": i, "date": p.date.isoformat(), "previous": previous.isoformat()},
            )
        previous = p.date


class TimeSeriesAggregator:
    """Resamples sales records into day / week / month buckets."""

    def aggregate(
        self,
        points: Sequence[SalesPoint],
        granularity: Union[Granularity, str] = Granularity.DAY,
    ) -> list[AggregatedBucket]:
        """Aggregate one product's points.

        Args:
            points: Sales points for a single product, strictly increasing by date.
            granularity: Bucket width.

        Returns:
            Buckets ordered by ``period_start``, with empty periods filled by 0.

        Raises:
            ValidationError: if the points are unsorted, duplicated or mixed.
        """
        granularity = Granularity(granularity)
        points = list(points)
        validate_points(points)
        if not points:
            return []

        product_id = points[0].product_id
        frame = pd.DataFrame(
            {"quantity": [p.quantity for p in points]},
            index=pd.DatetimeIndex([pd.Timestamp(p.date) for p in points]),
        )

        periods = frame.index.to_period(granularity.period_freq)
        totals = frame.groupby(periods)["quantity"].sum()
        full_range = pd.period_range(
            start=periods.min(), end=periods.max(), freq=granularity.period_freq
        )
        totals = totals.reindex(full_range, fill_value=0.0)

        buckets = [
            AggregatedBucket(
                period_start=period.start_time.date(),
                period_end=period.end_time.date(),
                granularity=granularity,
                aggregate_value=float(value),
                product_id=product_id,
            )
            for period, value in totals.items()
        ]

        logger.debug(
            f"Aggregated {len(points)} points for {product_id} into "
            f"{len(buckets)} {granularity.value} buckets"
        )
        return buckets

    def aggregate_many(
        self,
        points: Iterable[SalesPoint],
        granularity: Union[Granularity, str] = Granularity.DAY,
    ) -> dict[str, list[AggregatedBucket]]:
        """Group points by product (keeping input order) and aggregate each."""
        by_product: dict[str, list[SalesPoint]] = defaultdict(list)
        for p in points:
            by_product[p.product_id].append(p)
        return {
            product_id: self.aggregate(product_points, granularity)
            for product_id, product_points in by_product.items()
        }


def to_daily_series(
    data: Union[Sequence[SalesPoint], Sequence[AggregatedBucket], pd.Series],
) -> pd.Series:
    """Normalize sales input to a float ``pd.Series`` on a ``DatetimeIndex``.

    Daily buckets are taken as-is; raw points are aggregated to days first so
    missing days become zeros.
    """
    if isinstance(data, pd.Series):
        series = data.astype(float)
        series.index = pd.DatetimeIndex(series.index)
        return series.sort_index()

    items = list(data)
    if not items:
        return pd.Series(dtype=float)

    if isinstance(items[0], SalesPoint):
        items = TimeSeriesAggregator().aggregate(items, Granularity.DAY)

    if any(b.granularity != Granularity.DAY for b in items):
        raise ValidationError("Correlation needs daily buckets")

    return pd.Series(
        [b.aggregate_value for b in items],
        index=pd.DatetimeIndex([pd.Timestamp(b.period_start) for b in items]),
        dtype=float,
    )
