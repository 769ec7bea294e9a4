"""
Shared test fixtures for the Hunt Analytics test suite.

Provides:
- Synthetic sales and exogenous series builders
- An anomaly with a ready-made hypothesis list
- In-memory retrieval and follow-up stores
- A session manager with a controllable clock and no retry delays

Usage:
    def test_example(manager, anomaly, hypotheses):
        view = manager.open_session(anomaly, hypotheses)
        assert view.state == SessionState.AWAITING_START
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

import numpy as np
import pytest

from hunt_analytics.brain.dialogue import DialogueSessionManager
from hunt_analytics.brain.followup import FollowUpScheduler, FollowUpTaskStore
from hunt_analytics.brain.hypothesis import HypothesisGenerator
from hunt_analytics.config import DialogueConfig, EngineConfig, FollowUpConfig, RetryConfig
from hunt_analytics.core.models import (
    Anomaly,
    CorrelationResult,
    ExogenousKind,
    ExogenousSeries,
    SalesPoint,
    Severity,
)
from hunt_analytics.store.retrieval import SQLiteRetrievalStore

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("hunt_analytics").setLevel(logging.WARNING)

START = date(2024, 1, 1)
RESOLVED_AT = datetime(2024, 3, 16, 9, 0)


# ========================== Series Builders ================================


def make_points(values, product_id: str = "umbrella", start: date = START) -> list[SalesPoint]:
    """One SalesPoint per consecutive day."""
    return [
        SalesPoint(date=start + timedelta(days=i), product_id=product_id, quantity=v)
        for i, v in enumerate(values)
    ]


def alternating(n: int, low: float = 10.0, high: float = 12.0) -> list[float]:
    """low, high, low, ... : mean (low + high) / 2, population std (high - low) / 2."""
    return [low if i % 2 == 0 else high for i in range(n)]


def make_series(series_id: str, values, start: date = START, kind=None) -> ExogenousSeries:
    return ExogenousSeries(
        series_id=series_id,
        points=tuple((start + timedelta(days=i), float(v)) for i, v in enumerate(values)),
        kind=kind,
    )


def lagged_sales(exo, lag: int = 2, days: int = 60) -> list[SalesPoint]:
    """Sales whose day-over-day delta at d equals exo[d + lag]."""
    quantities = [100.0]
    for d in range(1, days):
        quantities.append(quantities[-1] + exo[d + lag])
    return make_points(quantities)


@pytest.fixture()
def lagged_pair():
    """Returns (sales points, exogenous values by day index, anomaly day index)."""
    exo = np.random.default_rng(7).normal(20.0, 5.0, size=90)
    return lagged_sales(exo), exo, 40


# ========================== Domain Fixtures ================================


@pytest.fixture()
def anomaly():
    return Anomaly(
        date=date(2024, 3, 15),
        product_id="umbrella",
        actual_value=45.0,
        expected_value=11.0,
        z_score=8.5,
        severity=Severity.SEVERE,
    )


@pytest.fixture()
def correlation_results():
    return [
        CorrelationResult(
            factor_id="precip_mm", lag_days=-1, correlation_coefficient=0.82, p_value=0.001,
            sample_size=37, rank=1, significant=True,
            interpretation="strong positive correlation (significant)", kind=ExogenousKind.WEATHER,
        ),
        CorrelationResult(
            factor_id="usdjpy", lag_days=0, correlation_coefficient=-0.45, p_value=0.02,
            sample_size=37, rank=2, significant=True,
            interpretation="moderate negative correlation (significant)", kind=ExogenousKind.ECONOMIC,
        ),
    ]


@pytest.fixture()
def hypotheses(anomaly, correlation_results):
    """weather (0.82), economic (0.44), fallback (0.1)."""
    return HypothesisGenerator().generate(anomaly, correlation_results)


@pytest.fixture()
def config():
    return EngineConfig()


# ========================== Store Fixtures =================================


@pytest.fixture()
def retrieval_store():
    store = SQLiteRetrievalStore(":memory:")
    yield store
    store.close()


@pytest.fixture()
def scheduler():
    scheduler = FollowUpScheduler(
        FollowUpConfig(),
        store=FollowUpTaskStore(":memory:"),
        retry=RetryConfig(attempts=1),
    )
    yield scheduler
    scheduler.store.close()


class Clock:
    """Settable stand-in for ``datetime.now``."""

    def __init__(self, now: datetime = RESOLVED_AT):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def manager(scheduler, retrieval_store, clock):
    return DialogueSessionManager(
        DialogueConfig(max_turns=2),
        scheduler=scheduler,
        store=retrieval_store,
        retry=RetryConfig(attempts=1),
        clock=clock,
    )
