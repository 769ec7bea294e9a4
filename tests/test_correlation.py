"""Tests for lagged correlation ranking."""

from datetime import timedelta

import numpy as np
import pytest

from conftest import START, make_series
from hunt_analytics.config import CorrelationConfig
from hunt_analytics.core.correlation import CorrelationRanker, interpret_correlation
from hunt_analytics.core.models import Anomaly, ExogenousKind, Severity


def anomaly_on(day_index: int) -> Anomaly:
    return Anomaly(
        date=START + timedelta(days=day_index),
        product_id="umbrella",
        actual_value=500.0,
        expected_value=100.0,
        z_score=5.0,
        severity=Severity.SEVERE,
    )


@pytest.fixture()
def ranker():
    return CorrelationRanker(CorrelationConfig())


class TestInterpretation:
    """Strength / direction / significance wording."""

    @pytest.mark.parametrize("r, p, expected", [
        (0.75, 0.01, "strong positive correlation (significant)"),
        (-0.5, 0.2, "moderate negative correlation (not significant)"),
        (0.25, 0.05, "weak positive correlation (significant)"),
        (0.1, 0.5, "negligible positive correlation (not significant)"),
    ])
    def test_wording(self, r, p, expected):
        assert interpret_correlation(r, p) == expected


class TestBestLag:
    """Lag search per exogenous series."""

    def test_finds_the_lag_that_drives_sales(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        results = ranker.rank(anomaly_on(anomaly_day), sales, [make_series("precip_mm", exo)])

        assert len(results) == 1
        best = results[0]
        assert best.lag_days == 2
        assert best.correlation_coefficient == pytest.approx(1.0)
        assert best.significant
        assert best.rank == 1
        assert best.kind == ExogenousKind.WEATHER
        assert best.sample_size == 38
        assert best.interpretation.startswith("strong positive")

    def test_negative_relationship_keeps_sign(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        results = ranker.rank(anomaly_on(anomaly_day), sales, [make_series("usdjpy", -exo)])

        assert results[0].lag_days == 2
        assert results[0].correlation_coefficient == pytest.approx(-1.0)
        assert "negative" in results[0].interpretation

    def test_restricted_lag_range(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        results = ranker.rank(
            anomaly_on(anomaly_day), sales, [make_series("precip_mm", exo)], lag_range=range(-1, 2),
        )
        assert results[0].lag_days in (-1, 0, 1)
        assert abs(results[0].correlation_coefficient) < 0.99


class TestRanking:
    """Sorting, top-K and exclusions."""

    def test_sorted_by_strength_and_cut_to_top_k(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        rng = np.random.default_rng(11)
        series = [make_series("precip_mm", exo)]
        # Partly related signals of decreasing strength, plus pure noise
        for i, weight in enumerate([0.8, 0.5, 0.2]):
            mixed = weight * exo + (1 - weight) * rng.normal(20.0, 5.0, size=len(exo))
            series.append(make_series(f"signal_{i}", mixed))
        series.append(make_series("noise", rng.normal(0.0, 1.0, size=len(exo))))

        report = ranker.rank_with_audit(anomaly_on(anomaly_day), sales, series)

        assert len(report.results) == 3
        assert len(report.discarded) == 2
        ranked = list(report.results) + list(report.discarded)
        assert [r.rank for r in ranked] == [1, 2, 3, 4, 5]
        strengths = [abs(r.correlation_coefficient) for r in ranked]
        assert strengths == sorted(strengths, reverse=True)
        assert report.results[0].factor_id == "precip_mm"

    def test_input_order_does_not_matter(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        noise = np.random.default_rng(3).normal(0.0, 1.0, size=len(exo))
        series = [make_series("noise", noise), make_series("precip_mm", exo)]

        forward = ranker.rank(anomaly_on(anomaly_day), sales, series)
        backward = ranker.rank(anomaly_on(anomaly_day), sales, series[::-1])

        assert [r.factor_id for r in forward] == [r.factor_id for r in backward]
        assert forward[0].factor_id == "precip_mm"

    def test_rank_returns_only_top_k(self, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        ranker = CorrelationRanker(CorrelationConfig(top_k=1))
        series = [make_series("precip_mm", exo), make_series("event_count", exo[::-1])]
        assert len(ranker.rank(anomaly_on(anomaly_day), sales, series)) == 1

    def test_short_series_excluded(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        short = make_series("temp_c", exo[:5], start=START + timedelta(days=35))
        report = ranker.rank_with_audit(anomaly_on(anomaly_day), sales, [short])

        assert report.results == ()
        assert report.excluded == ("temp_c",)

    def test_flat_series_excluded(self, ranker, lagged_pair):
        sales, exo, anomaly_day = lagged_pair
        flat = make_series("holiday_flag", np.zeros(len(exo)))
        report = ranker.rank_with_audit(anomaly_on(anomaly_day), sales, [flat])
        assert report.excluded == ("holiday_flag",)

    def test_not_enough_sales_history(self, ranker, lagged_pair):
        sales, exo, _ = lagged_pair
        report = ranker.rank_with_audit(anomaly_on(3), sales[:8], [make_series("precip_mm", exo)])
        assert report.results == ()
        assert report.excluded == ("precip_mm",)

    def test_non_significant_results_kept_and_labelled(self, lagged_pair):
        sales, _, anomaly_day = lagged_pair
        ranker = CorrelationRanker(CorrelationConfig(significance=1e-12))
        rng = np.random.default_rng(3)
        noise = make_series("noise", rng.normal(size=90))
        results = ranker.rank(anomaly_on(anomaly_day), sales, [noise])

        assert len(results) == 1
        assert not results[0].significant
        assert results[0].interpretation.endswith("(not significant)")
