"""
Learning insights from answered questions.

Groups stored answers by impact tag ("campaign", "weather", ...) so the
system can tell which explanations keep coming back. A tag needs at least
``min_count`` answers to count as an insight; confidence grows with the
number of answers and saturates at ten.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LearningInsight:
    impact_tag: str
    count: int
    confirmed_count: int
    confidence: float
    products: tuple[str, ...]
    examples: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "impact_tag": self.impact_tag,
            "count": self.count,
            "confirmed_count": self.confirmed_count,
            "confidence": self.confidence,
            "products": list(self.products),
            "examples": list(self.examples),
        }


def _as_payload(response: Union[dict, Any]) -> dict:
    if isinstance(response, dict):
        return response
    return response.to_payload()


def summarize_learning(
    responses: Iterable[Union[dict, Any]],
    min_count: int = 2,
    max_examples: int = 3,
) -> list[LearningInsight]:
    """Group responses (``AnomalyResponse`` objects or stored payloads) by impact tag.

    Returns:
        Insights sorted by confidence, then count, then tag.
    """
    groups: dict[str, list[dict]] = defaultdict(list)
    for response in responses:
        payload = _as_payload(response)
        tag = payload.get("impact_tag")
        if tag:
            groups[tag].append(payload)

    insights = []
    for tag, items in groups.items():
        if len(items) < min_count:
            continue
        products = sorted({p.get("product_id", "") for p in items if p.get("product_id")})
        examples = [p.get("answer_text", "") for p in items if p.get("answer_text")][:max_examples]
        insights.append(LearningInsight(
            impact_tag=tag,
            count=len(items),
            confirmed_count=sum(1 for p in items if p.get("confirmed_hypothesis_id")),
            confidence=min(len(items) / 10.0, 1.0),
            products=tuple(products),
            examples=tuple(examples),
        ))

    insights.sort(key=lambda i: (-i.confidence, -i.count, i.impact_tag))
    logger.debug(f"{len(insights)} learning insights from {sum(len(v) for v in groups.values())} tagged answers")
    return insights
