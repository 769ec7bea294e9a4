"""Tests for bounded exponential backoff."""

import sqlite3

import pytest

from hunt_analytics.config import RetryConfig
from hunt_analytics.exceptions import ExternalServiceError
from hunt_analytics.retry import call_with_retry


class Flaky:
    """Raises ``error`` for the first ``failures`` calls, then returns "ok"."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestCallWithRetry:
    """Transport failures are retried, everything else is not."""

    def test_recovers_after_failures(self):
        fn = Flaky(2, ExternalServiceError("timeout"))
        sleeps = []
        result = call_with_retry(fn, RetryConfig(attempts=3, base_delay=0.5), sleep=sleeps.append)

        assert result == "ok"
        assert fn.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_delay_capped(self):
        fn = Flaky(4, sqlite3.OperationalError("database is locked"))
        sleeps = []
        call_with_retry(fn, RetryConfig(attempts=5, base_delay=1.0, max_delay=3.0), sleep=sleeps.append)
        assert sleeps == [1.0, 2.0, 3.0, 3.0]

    def test_non_retryable_propagates(self):
        fn = Flaky(1, ValueError("bad input"))
        sleeps = []
        with pytest.raises(ValueError):
            call_with_retry(fn, RetryConfig(attempts=3), sleep=sleeps.append)
        assert fn.calls == 1
        assert sleeps == []

    def test_exhausted(self):
        fn = Flaky(10, ExternalServiceError("down"))
        with pytest.raises(ExternalServiceError) as exc_info:
            call_with_retry(fn, RetryConfig(attempts=2), operation="embed", sleep=lambda _: None)

        assert fn.calls == 2
        assert exc_info.value.detail == {"operation": "embed", "attempts": 2}
        assert isinstance(exc_info.value.__cause__, ExternalServiceError)
