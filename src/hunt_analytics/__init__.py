"""
Hunt Analytics - finding out why sales moved.

Detects unusual sales days, ranks the external signals (weather, markets,
events, promotions) that moved with them, and asks the people who were there
which explanation is right. Answers are remembered and re-checked later.

Usage:
    from hunt_analytics import AnomalyPipeline, DialogueSessionManager, EngineConfig

    config = EngineConfig.from_env()
    report = AnomalyPipeline(config).analyze(points, exogenous)

    manager = DialogueSessionManager(config.dialogue)
    analysis = report.analyses[0]
    view = manager.open_session(analysis.anomaly, analysis.hypotheses)
    question = manager.start(view.session_id)
"""

__version__ = "0.3.0"

from .config import EngineConfig
from .exceptions import (
    ConfigurationError,
    ExternalServiceError,
    HuntAnalyticsError,
    InsufficientDataError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)

# Core analytics
from .core import (
    AggregatedBucket,
    Anomaly,
    AnomalyAnalysis,
    AnomalyDetector,
    CorrelationRanker,
    CorrelationResult,
    ExogenousSeries,
    Granularity,
    SalesPoint,
    Severity,
    TimeSeriesAggregator,
)

# Hypotheses and dialogue
from .brain import (
    DialogueSessionManager,
    FollowUpScheduler,
    Hypothesis,
    HypothesisGenerator,
    SessionState,
    summarize_learning,
)

from .pipeline import AnomalyPipeline, PipelineReport

__all__ = [
    # Version
    "__version__",
    # Config & errors
    "EngineConfig",
    "ConfigurationError",
    "ExternalServiceError",
    "HuntAnalyticsError",
    "InsufficientDataError",
    "SessionNotFoundError",
    "SessionStateError",
    "ValidationError",
    # Core
    "AggregatedBucket",
    "Anomaly",
    "AnomalyAnalysis",
    "AnomalyDetector",
    "CorrelationRanker",
    "CorrelationResult",
    "ExogenousSeries",
    "Granularity",
    "SalesPoint",
    "Severity",
    "TimeSeriesAggregator",
    # Brain
    "DialogueSessionManager",
    "FollowUpScheduler",
    "Hypothesis",
    "HypothesisGenerator",
    "SessionState",
    "summarize_learning",
    # Pipeline
    "AnomalyPipeline",
    "PipelineReport",
]
