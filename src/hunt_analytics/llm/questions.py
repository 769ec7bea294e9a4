"""
Question phrasing.

The dialogue engine can ask its questions straight from the template table,
but the wording reads better when a language model rewrites it with the
anomaly's full context. ``QuestionWriter`` sends the model a structured
prompt (anomaly summary, ranked hypotheses, their evidence, and how earlier anomalies of the
same product were explained) and accepts back
only three JSON fields:

- ``primary_question``
- ``hypotheses[].verification_question``
- ``choices[]``

Anything else in the reply is ignored. When the model is unreachable after
retries, or its reply does not validate, the template wording is used and a
warning is logged; phrasing never blocks a session.
"""

import logging
from typing import TYPE_CHECKING, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from hunt_analytics.config import RetryConfig
from hunt_analytics.core.models import Anomaly
from hunt_analytics.exceptions import ExternalServiceError
from hunt_analytics.llm.client import LLMClient
from hunt_analytics.retry import call_with_retry
from hunt_analytics.store.retrieval import PastPattern

if TYPE_CHECKING:
    from hunt_analytics.brain.hypothesis import Hypothesis

logger = logging.getLogger(__name__)


QUESTION_SYSTEM_PROMPT = """You help a small retail business understand unusual sales days.
You will be given one sales anomaly and a ranked list of candidate explanations, each with
the statistical evidence behind it.

Rewrite each candidate's verification question so a shop manager can answer it in a few words.
Rules:
1. Keep one question per candidate, in the same order, with the same hypothesis_id.
2. Mention the product and the date; do not invent numbers that are not in the context.
3. Offer 2-5 short answer choices for the first question.
4. Be neutral: do not suggest which answer is correct.
5. Past patterns are how earlier anomalies of this product were explained. You may refer
   to them, but do not assume the same cause applies."""


class HypothesisQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hypothesis_id: str
    verification_question: str = Field(..., min_length=1)


class QuestionReply(BaseModel):
    """The only fields read from a model reply."""

    model_config = ConfigDict(extra="ignore")

    primary_question: str = Field(..., min_length=1)
    hypotheses: list[HypothesisQuestion] = Field(default_factory=list)
    choices: list[str] = Field(default_factory=list, max_length=8)


class QuestionPlan(BaseModel):
    """Final wording for one session."""

    primary_question: str
    questions: dict[str, str] = Field(default_factory=dict)
    choices: list[str] = Field(default_factory=list)
    past_patterns: list[str] = Field(default_factory=list)
    source: Literal["llm", "template"] = "template"

    def question_for(self, hypothesis: "Hypothesis") -> str:
        return self.questions.get(hypothesis.hypothesis_id) or hypothesis.primary_question


def template_plan(
    hypotheses: Sequence["Hypothesis"],
    past_patterns: Sequence[PastPattern] = (),
) -> QuestionPlan:
    """Wording taken straight from the templates."""
    first = hypotheses[0]
    return QuestionPlan(
        primary_question=first.primary_question,
        questions={h.hypothesis_id: h.primary_question for h in hypotheses},
        choices=list(first.choices),
        past_patterns=[p.describe() for p in past_patterns],
        source="template",
    )


def build_prompt(
    anomaly: Anomaly,
    hypotheses: Sequence["Hypothesis"],
    past_patterns: Sequence[PastPattern] = (),
) -> str:
    lines = [
        "## Anomaly",
        f"- {anomaly.summary()}",
        "",
        "## Candidate explanations (most likely first)",
    ]
    for i, h in enumerate(hypotheses, start=1):
        lines.append(f"{i}. [{h.hypothesis_id}] {h.title} (category: {h.category.value}, confidence: {h.confidence:.2f})")
        lines.append(f"   Draft question: {h.primary_question}")
        for e in h.evidence:
            lines.append(
                f"   Evidence: {e.factor_id} lag {e.lag_days:+d}d, r={e.correlation_coefficient:.2f}, "
                f"p={e.p_value:.3f} ({e.interpretation})"
            )
        if not h.evidence:
            lines.append("   Evidence: none (catch-all)")
    if past_patterns:
        lines.append("")
        lines.append("## Past patterns for this product")
        for p in past_patterns:
            lines.append(f"- {p.describe()}")
    lines.append("")
    lines.append("Rewrite the draft questions.")
    return "\n".join(lines)


class QuestionWriter:
    """Phrases verification questions with an LLM, falling back to templates."""

    def __init__(self, client: Optional[LLMClient] = None, retry: Optional[RetryConfig] = None):
        self.client = client
        self.retry = retry or RetryConfig()

    def write(
        self,
        anomaly: Anomaly,
        hypotheses: Sequence["Hypothesis"],
        past_patterns: Sequence[PastPattern] = (),
    ) -> QuestionPlan:
        if not hypotheses:
            raise ValueError("At least one hypothesis is needed to phrase questions")

        fallback = template_plan(hypotheses, past_patterns)
        if self.client is None:
            return fallback

        prompt = build_prompt(anomaly, hypotheses, past_patterns)
        try:
            raw = call_with_retry(
                lambda: self.client.extract_structured(
                    prompt=prompt,
                    schema=QuestionReply.model_json_schema(),
                    system=QUESTION_SYSTEM_PROMPT,
                ),
                self.retry,
                operation=f"question phrasing for {anomaly.ref}",
            )
            reply = QuestionReply.model_validate(raw)
        except ExternalServiceError as e:
            logger.warning(f"Question phrasing unavailable for {anomaly.ref}, using templates: {e}")
            return fallback
        except (PydanticValidationError, ValueError) as e:
            logger.warning(f"Unusable question phrasing for {anomaly.ref}, using templates: {e}")
            return fallback

        known = {h.hypothesis_id for h in hypotheses}
        questions = dict(fallback.questions)
        for item in reply.hypotheses:
            if item.hypothesis_id in known:
                questions[item.hypothesis_id] = item.verification_question.strip()
        primary = reply.primary_question.strip()
        questions[hypotheses[0].hypothesis_id] = primary

        return QuestionPlan(
            primary_question=primary,
            questions=questions,
            choices=[c.strip() for c in reply.choices if c.strip()] or fallback.choices,
            past_patterns=fallback.past_patterns,
            source="llm",
        )
