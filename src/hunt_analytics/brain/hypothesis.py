"""
Hypothesis generation.

Turns ranked correlation results into candidate explanations that the
dialogue layer can ask a human about. Confidence comes only from the evidence
(|r| scaled by 1 - p) and is fixed at construction.

Every generated list ends with a catch-all "unknown cause / internal action"
hypothesis, so a session always has something to ask even when no external
signal lined up with the anomaly.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from hunt_analytics.config import HypothesisConfig
from hunt_analytics.exceptions import ConfigurationError
from hunt_analytics.core.models import Anomaly, CorrelationResult, ExogenousKind, parse_anomaly_ref
from hunt_analytics.brain.templates import (
    DEFAULT_TEMPLATES,
    AnswerPattern,
    FollowUpTemplate,
    HypothesisCategory,
    HypothesisTemplate,
    TemplateTable,
    lag_phrase,
    render,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hypothesis:
    """A candidate cause for one anomaly.

    Attributes:
        hypothesis_id: Deterministic id (``hyp_`` + digest).
        anomaly_ref: ``Anomaly.ref`` of the anomaly it explains.
        category: internal / external / environmental / behavioral.
        confidence: In [0, 1], derived from the evidence.
        evidence: Correlation results backing it (empty for the fallback).
        verification_questions: Questions to ask, most direct first.
        title: One-line statement of the hypothesis.
        template_key: Template the wording came from.
        expected_pattern: Answers that count as confirmation.
        choices: Suggested answer choices for the first question.
        impact_tag: Tag stored with a confirming answer.
    """

    hypothesis_id: str
    anomaly_ref: str
    category: HypothesisCategory
    confidence: float
    evidence: tuple[CorrelationResult, ...] = ()
    verification_questions: tuple[str, ...] = ()
    title: str = ""
    template_key: str = ""
    expected_pattern: AnswerPattern = field(default_factory=AnswerPattern)
    choices: tuple[str, ...] = ()
    impact_tag: str = ""

    @property
    def primary_question(self) -> str:
        return self.verification_questions[0] if self.verification_questions else self.title

    def to_dict(self) -> dict[str, Any]:
        return {
            "hypothesis_id": self.hypothesis_id,
            "anomaly_ref": self.anomaly_ref,
            "category": self.category.value,
            "confidence": round(self.confidence, 4),
            "evidence": [e.to_dict() for e in self.evidence],
            "verification_questions": list(self.verification_questions),
            "title": self.title,
            "template_key": self.template_key,
            "choices": list(self.choices),
            "impact_tag": self.impact_tag,
        }


def evidence_confidence(result: CorrelationResult) -> float:
    """|r| * (1 - p), clipped to [0, 1]."""
    value = abs(result.correlation_coefficient) * (1.0 - result.p_value)
    return max(0.0, min(1.0, value))


def make_hypothesis_id(anomaly_ref: str, template_key: str, version: str, factors: Iterable[str]) -> str:
    raw = "|".join([anomaly_ref, template_key, version, *sorted(factors)])
    return "hyp_" + hashlib.md5(raw.encode()).hexdigest()[:12]


def question_context(anomaly_ref: str, anomaly: Optional[Anomaly] = None) -> dict[str, str]:
    """Placeholder values shared by every question about one anomaly."""
    if anomaly is not None:
        return {
            "product": anomaly.product_id,
            "date": anomaly.date.isoformat(),
            "direction": anomaly.direction,
        }
    day, product_id = parse_anomaly_ref(anomaly_ref)
    return {"product": product_id, "date": day.isoformat(), "direction": "change"}


class HypothesisGenerator:
    """Maps correlation evidence to templated hypotheses."""

    def __init__(
        self,
        config: Optional[HypothesisConfig] = None,
        templates: TemplateTable = DEFAULT_TEMPLATES,
    ):
        self.config = config or HypothesisConfig()
        self.templates = templates
        pinned = self.config.template_version
        if pinned is not None and pinned != templates.version:
            raise ConfigurationError(
                f"Template table is version {templates.version}, config expects {pinned}",
                detail={"template_version": pinned},
            )

    def qualifies(self, result: CorrelationResult) -> bool:
        return result.significant or abs(result.correlation_coefficient) >= self.config.min_abs_coefficient

    def _build(
        self,
        anomaly: Anomaly,
        template: HypothesisTemplate,
        evidence: tuple[CorrelationResult, ...],
        confidence: float,
        compound: bool = False,
    ) -> Hypothesis:
        context = question_context(anomaly.ref, anomaly)
        context["factor"] = ", ".join(e.factor_id for e in evidence) or "no external signal"
        context["lag_phrase"] = lag_phrase(evidence[0].lag_days) if evidence else ""

        if compound:
            title = template.compound_title
            questions = (template.compound_question,) + template.questions[1:]
            key = f"{template.key}_compound"
        else:
            title = template.title
            questions = template.questions
            key = template.key

        return Hypothesis(
            hypothesis_id=make_hypothesis_id(
                anomaly.ref, key, self.templates.version, (e.factor_id for e in evidence)
            ),
            anomaly_ref=anomaly.ref,
            category=template.category,
            confidence=max(0.0, min(1.0, confidence)),
            evidence=evidence,
            verification_questions=tuple(render(q, **context) for q in questions),
            title=render(title, **context),
            template_key=key,
            expected_pattern=template.pattern,
            choices=template.choices,
            impact_tag=template.impact_tag,
        )

    def fallback(self, anomaly: Anomaly) -> Hypothesis:
        return self._build(
            anomaly,
            self.templates.fallback,
            evidence=(),
            confidence=self.config.fallback_confidence,
        )

    def generate(self, anomaly: Anomaly, correlation_results: Iterable[CorrelationResult]) -> list[Hypothesis]:
        """Build hypotheses for one anomaly, highest confidence first.

        One hypothesis per qualifying result, one compound hypothesis for each
        kind with two or more qualifying results, and always the fallback.
        """
        qualifying = [r for r in correlation_results if self.qualifies(r)]
        hypotheses: list[Hypothesis] = []
        by_kind: dict[ExogenousKind, list[CorrelationResult]] = defaultdict(list)

        for result in qualifying:
            template = self.templates.for_kind(result.kind)
            hypotheses.append(self._build(anomaly, template, (result,), evidence_confidence(result)))
            by_kind[result.kind].append(result)

        for kind, members in by_kind.items():
            if len(members) < 2:
                continue
            # Noisy-or: the chance that at least one member is a real driver
            miss = 1.0
            for m in members:
                miss *= 1.0 - evidence_confidence(m)
            hypotheses.append(self._build(
                anomaly, self.templates.for_kind(kind), tuple(members), 1.0 - miss, compound=True,
            ))

        hypotheses.append(self.fallback(anomaly))
        hypotheses.sort(key=lambda h: -h.confidence)

        logger.debug(
            f"{anomaly.ref}: {len(hypotheses)} hypotheses from {len(qualifying)} qualifying results"
        )
        return hypotheses


def follow_up_hypothesis(
    anomaly_ref: str,
    template: FollowUpTemplate,
    explanation: str,
    task_id: str,
    version: str,
    category: HypothesisCategory = HypothesisCategory.INTERNAL,
    anomaly: Optional[Anomaly] = None,
) -> Hypothesis:
    """The single "does the explanation still hold?" hypothesis of a reopened session."""
    context = question_context(anomaly_ref, anomaly)
    context["explanation"] = explanation or "cause not identified"
    return Hypothesis(
        hypothesis_id=make_hypothesis_id(anomaly_ref, f"followup_{template.kind}", version, [task_id]),
        anomaly_ref=anomaly_ref,
        category=category,
        confidence=1.0,
        evidence=(),
        verification_questions=(render(template.question, **context),),
        title=f"{template.purpose.replace('_', ' ')} check ({template.kind.replace('_', ' ')})",
        template_key=f"followup_{template.kind}",
        expected_pattern=template.pattern,
        choices=template.choices,
        impact_tag=template.impact_tag,
    )
