"""Exception hierarchy for Hunt Analytics.

Every error raised by the engine inherits from :class:`HuntAnalyticsError`
so callers can catch one base class, while still matching on the specific
subclasses where narrower handling is needed.

Hierarchy
---------
::

    HuntAnalyticsError
    ├── ValidationError        (malformed / non-monotonic input)
    ├── InsufficientDataError  (window or overlap thresholds not met)
    ├── ExternalServiceError   (language model / retrieval store failure)
    ├── SessionStateError      (operation illegal in the session's state)
    │   └── SessionNotFoundError
    └── ConfigurationError     (invalid configuration values)
"""

from __future__ import annotations


class HuntAnalyticsError(Exception):
    """Base exception for all engine errors.

    Args:
        message: Human-readable description.
        detail: Optional machine-readable context for structured logging.
    """

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(HuntAnalyticsError):
    """Input rejected before any state was touched."""


class InsufficientDataError(HuntAnalyticsError):
    """Not enough samples to compute a baseline or a correlation."""


class ExternalServiceError(HuntAnalyticsError):
    """A collaborator (LLM, embedder, retrieval store) failed after retries."""


class SessionStateError(HuntAnalyticsError):
    """Operation is not legal in the session's current state."""


class SessionNotFoundError(SessionStateError):
    """No session is registered under the given id."""


class ConfigurationError(HuntAnalyticsError):
    """A configuration value is missing or out of range."""
