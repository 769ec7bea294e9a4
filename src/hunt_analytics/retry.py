"""Bounded exponential backoff for calls to external collaborators."""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable, Optional, TypeVar

import httpx

from hunt_analytics.config import RetryConfig
from hunt_analytics.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (ExternalServiceError, httpx.HTTPError, sqlite3.OperationalError)


def call_with_retry(
    fn: Callable[[], T],
    config: Optional[RetryConfig] = None,
    *,
    operation: str = "external call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the attempt budget is spent.

    Delays grow as ``base_delay * 2**n`` capped at ``max_delay``. Only
    transport-level failures are retried; anything else propagates at once.

    Raises:
        ExternalServiceError: when every attempt failed.
    """
    config = config or RetryConfig()
    last_error: Optional[Exception] = None

    for attempt in range(1, config.attempts + 1):
        try:
            return fn()
        except RETRYABLE as e:
            last_error = e
            if attempt == config.attempts:
                break
            delay = min(config.base_delay * (2 ** (attempt - 1)), config.max_delay)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{config.attempts}): {e}; "
                f"retrying in {delay:.1f}s"
            )
            sleep(delay)

    logger.error(f"{operation} failed after {config.attempts} attempts: {last_error}")
    raise ExternalServiceError(
        f"{operation} failed after {config.attempts} attempts: {last_error}",
        detail={"operation": operation, "attempts": config.attempts},
    ) from last_error
