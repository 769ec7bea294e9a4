"""
Lagged correlation ranking.

Given an anomaly, the product's daily sales and a set of exogenous daily series
(weather, market indices, event calendars...), find which external signals
moved together with the sales changes around the anomaly.

For each series and each lag L in the lag range, the day-over-day sales delta
at date d is paired with the exogenous value at d + L, and Pearson r and its
two-tailed p-value are computed with scipy. Each series keeps only its
strongest lag; series are then ranked by |r| and cut to the top K.

Non-significant results are kept and labelled rather than dropped, so a
reader can see what the ranking was based on. Anything cut by the top-K limit
is available through ``rank_with_audit``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from hunt_analytics.config import CorrelationConfig
from hunt_analytics.core.aggregation import to_daily_series
from hunt_analytics.core.models import (
    AggregatedBucket,
    Anomaly,
    CorrelationResult,
    ExogenousSeries,
    SalesPoint,
)
from hunt_analytics.exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

SalesInput = Union[Sequence[SalesPoint], Sequence[AggregatedBucket], pd.Series]


def interpret_correlation(r: float, p_value: float, cutoff: float = 0.05) -> str:
    """Describe a coefficient as ``"<strength> <direction> correlation (<significance>)"``."""
    magnitude = abs(r)
    if magnitude >= 0.7:
        strength = "strong"
    elif magnitude >= 0.4:
        strength = "moderate"
    elif magnitude >= 0.2:
        strength = "weak"
    else:
        strength = "negligible"

    direction = "negative" if r < 0 else "positive"
    significance = "significant" if p_value <= cutoff else "not significant"
    return f"{strength} {direction} correlation ({significance})"


@dataclass(frozen=True)
class RankingReport:
    """Outcome of one ranking run.

    Attributes:
        results: Top-K results, ranked 1..K.
        discarded: Best-lag results that fell below the top-K cut, ranked K+1...
        excluded: series_ids with no usable lag (too little overlap or flat input).
    """

    results: tuple[CorrelationResult, ...] = ()
    discarded: tuple[CorrelationResult, ...] = ()
    excluded: tuple[str, ...] = ()


class CorrelationRanker:
    """Ranks exogenous series by how strongly they track an anomaly's sales deltas."""

    def __init__(self, config: Optional[CorrelationConfig] = None):
        self.config = config or CorrelationConfig()

    # =========================================================================
    # Alignment
    # =========================================================================

    def sales_deltas(self, anomaly: Anomaly, sales: SalesInput) -> pd.Series:
        """Day-over-day sales changes inside the anomaly's window."""
        series = to_daily_series(sales)
        if series.empty:
            return series

        start = pd.Timestamp(anomaly.date - timedelta(days=self.config.window_before_days))
        end = pd.Timestamp(anomaly.date + timedelta(days=self.config.window_after_days))
        deltas = series.diff().loc[start:end].dropna()
        return deltas

    @staticmethod
    def _lagged(exogenous: pd.Series, lag_days: int) -> pd.Series:
        """Re-index so the value stored at date d is the original value at d + lag."""
        shifted = exogenous.copy()
        shifted.index = shifted.index - pd.Timedelta(days=lag_days)
        return shifted

    def _correlate_at_lag(
        self,
        deltas: pd.Series,
        exogenous: pd.Series,
        lag_days: int,
    ) -> Optional[tuple[float, float, int]]:
        aligned = pd.concat(
            [deltas.rename("delta"), self._lagged(exogenous, lag_days).rename("exo")],
            axis=1,
            join="inner",
        ).dropna()

        n = len(aligned)
        if n < self.config.min_overlap:
            raise InsufficientDataError(
                f"{n} overlapping samples at lag {lag_days}, need {self.config.min_overlap}"
            )

        x = aligned["delta"].to_numpy(dtype=float)
        y = aligned["exo"].to_numpy(dtype=float)
        # Pearson is undefined when either side is flat
        if np.ptp(x) == 0 or np.ptp(y) == 0:
            return None

        r, p_value = stats.pearsonr(x, y)
        r, p_value = float(r), float(p_value)
        if np.isnan(r) or np.isnan(p_value):
            return None
        return max(-1.0, min(1.0, r)), p_value, n

    def _best_lag(
        self,
        deltas: pd.Series,
        series: ExogenousSeries,
        lag_range: Iterable[int],
    ) -> Optional[CorrelationResult]:
        """Strongest |r| over the lag range; ties go to the smaller |lag|, then smaller p."""
        exogenous = series.as_series()
        if exogenous.empty:
            return None
        exogenous = exogenous[~exogenous.index.duplicated(keep="last")]

        best = None
        best_key = None
        for lag in lag_range:
            try:
                outcome = self._correlate_at_lag(deltas, exogenous, lag)
            except InsufficientDataError as e:
                logger.debug(f"{series.series_id}: {e}")
                continue
            if outcome is None:
                continue

            r, p_value, n = outcome
            key = (-abs(r), abs(lag), p_value)
            if best_key is None or key < best_key:
                best_key = key
                best = CorrelationResult(
                    factor_id=series.series_id,
                    lag_days=lag,
                    correlation_coefficient=r,
                    p_value=p_value,
                    sample_size=n,
                    kind=series.kind,
                )
        return best

    # =========================================================================
    # Ranking
    # =========================================================================

    def rank_with_audit(
        self,
        anomaly: Anomaly,
        sales: SalesInput,
        exogenous_series: Iterable[ExogenousSeries],
        lag_range: Optional[Iterable[int]] = None,
    ) -> RankingReport:
        """Rank every series and keep what the top-K cut removed."""
        lags = list(self.config.lag_range if lag_range is None else lag_range)
        deltas = self.sales_deltas(anomaly, sales)
        exogenous_series = list(exogenous_series)

        if len(deltas) < self.config.min_overlap:
            logger.debug(
                f"{anomaly.ref}: only {len(deltas)} sales deltas in window, "
                f"need {self.config.min_overlap}; nothing to rank"
            )
            return RankingReport(excluded=tuple(s.series_id for s in exogenous_series))

        candidates: list[CorrelationResult] = []
        excluded: list[str] = []
        for series in exogenous_series:
            best = self._best_lag(deltas, series, lags)
            if best is None:
                excluded.append(series.series_id)
            else:
                candidates.append(best)

        candidates.sort(key=lambda c: (-abs(c.correlation_coefficient), c.p_value, c.factor_id))

        cutoff = self.config.significance
        ranked = [
            replace(
                c,
                rank=i,
                significant=c.p_value <= cutoff,
                interpretation=interpret_correlation(c.correlation_coefficient, c.p_value, cutoff),
            )
            for i, c in enumerate(candidates, start=1)
        ]

        top_k = self.config.top_k
        report = RankingReport(
            results=tuple(ranked[:top_k]),
            discarded=tuple(ranked[top_k:]),
            excluded=tuple(excluded),
        )

        if report.discarded:
            logger.debug(
                f"{anomaly.ref}: dropped {len(report.discarded)} results below top {top_k}: "
                + ", ".join(f"{c.factor_id} (r={c.correlation_coefficient:.2f})" for c in report.discarded)
            )
        if report.results:
            top = report.results[0]
            logger.info(
                f"{anomaly.ref}: top factor {top.factor_id} at lag {top.lag_days:+d}d, "
                f"r={top.correlation_coefficient:.2f}, p={top.p_value:.3f}"
            )
        return report

    def rank(
        self,
        anomaly: Anomaly,
        sales: SalesInput,
        exogenous_series: Iterable[ExogenousSeries],
        lag_range: Optional[Iterable[int]] = None,
    ) -> list[CorrelationResult]:
        """Top-K best-lag correlations, sorted by |r| descending."""
        return list(self.rank_with_audit(anomaly, sales, exogenous_series, lag_range).results)
