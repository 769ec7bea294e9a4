"""
Hunt Brain - asking people why sales moved.

Turns ranked correlation evidence into hypotheses, walks a human through
them one question at a time, and keeps coming back to resolved anomalies:
- templates: hypothesis / follow-up question tables
- hypothesis: evidence -> candidate causes with fixed confidence
- matching: choice and keyword answer evaluation with negation handling
- dialogue: per-anomaly session state machine
- followup: durable re-check tasks (week, month, quarter, year)
- learning: recurring explanations across answered sessions

Question phrasing through a language model is optional; without one the
template wording is used.
"""

from .dialogue import (
    AnomalyResponse,
    AnswerType,
    DialogueSessionManager,
    Question,
    SessionPurpose,
    SessionState,
    SessionView,
    TurnOutcome,
)
from .followup import FollowUpKind, FollowUpScheduler, FollowUpTask, FollowUpTaskStore
from .hypothesis import Hypothesis, HypothesisGenerator, evidence_confidence
from .learning import LearningInsight, summarize_learning
from .matching import AnswerEvaluation, AnswerMatcher
from .templates import DEFAULT_TEMPLATES, HypothesisCategory, TemplateTable

__all__ = [
    # Hypotheses
    "DEFAULT_TEMPLATES",
    "Hypothesis",
    "HypothesisCategory",
    "HypothesisGenerator",
    "TemplateTable",
    "evidence_confidence",
    # Dialogue
    "AnomalyResponse",
    "AnswerEvaluation",
    "AnswerMatcher",
    "AnswerType",
    "DialogueSessionManager",
    "Question",
    "SessionPurpose",
    "SessionState",
    "SessionView",
    "TurnOutcome",
    # Follow-ups
    "FollowUpKind",
    "FollowUpScheduler",
    "FollowUpTask",
    "FollowUpTaskStore",
    # Learning
    "LearningInsight",
    "summarize_learning",
]
