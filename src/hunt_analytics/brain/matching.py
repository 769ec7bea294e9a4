"""
Answer evaluation.

Decides whether a human answer confirms the hypothesis it was asked about.
Choice answers are compared against the template's confirm / reject labels.
Free text is scanned clause by clause for the template's keywords:

- A negation anywhere earlier in the same clause ("I do not think it was the
  weather") cancels the keyword; the next comma or "but" ends its reach.
- Hedged answers ("not sure", "maybe") confirm nothing.
- A bare "yes" confirms only when the answer does not name some other cause
  ("yes, we ran a promotion" is about a promotion, not the weather).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from hunt_analytics.brain.templates import AFFIRMATIONS, AnswerPattern, HypothesisTemplate

NEGATIONS = frozenset({
    "not", "no", "never", "none", "nothing", "neither", "nor", "without",
    "isn't", "wasn't", "weren't", "didn't", "don't", "doesn't", "hardly",
    "nope", "nah", "unlikely",
})

# Words that negate the keyword right before them ("weather unrelated")
TRAILING_NEGATIONS = frozenset({"unrelated", "irrelevant"})

HEDGES = (
    "not sure", "unsure", "maybe", "perhaps", "possibly", "might", "don't know",
    "no idea", "not certain", "hard to say", "i guess",
)

_TOKEN = re.compile(r"[a-z0-9']+")
_CLAUSE_BREAK = re.compile(r"[.,;:!?]+|\bbut\b")


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall(text.lower().replace("’", "'"))


def clauses(text: str) -> list[list[str]]:
    """Token lists per clause, split at punctuation and "but"."""
    parts = _CLAUSE_BREAK.split(text.lower().replace("’", "'"))
    return [tokens for tokens in (tokenize(p) for p in parts) if tokens]


def topical(keywords: Iterable[str]) -> list[str]:
    """Keywords that name a cause, as opposed to a bare yes."""
    return [k for k in keywords if k not in AFFIRMATIONS]


@dataclass(frozen=True)
class AnswerEvaluation:
    """Result of matching one answer against one pattern.

    Attributes:
        confirmed: The answer supports the hypothesis.
        method: ``choice``, ``keyword``, ``hedge``, ``competing`` or ``none``.
        matched: Choice label, keyword or hedge that decided it.
        negated: Keywords that were found but negated.
    """

    confirmed: bool
    method: str = "none"
    matched: Optional[str] = None
    negated: tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return self.method in ("hedge", "competing")


class AnswerMatcher:
    """Keyword / choice matcher with negation and hedge detection."""

    @staticmethod
    def _normalize(label: str) -> str:
        return " ".join(tokenize(label))

    @staticmethod
    def _find(tokens: list[str], keyword: str) -> list[int]:
        """Start positions of a (possibly multi-word) keyword."""
        parts = tokenize(keyword)
        if not parts:
            return []
        size = len(parts)
        return [i for i in range(len(tokens) - size + 1) if tokens[i:i + size] == parts]

    @staticmethod
    def _is_negated(tokens: list[str], start: int, size: int) -> bool:
        before = tokens[:start]
        after = tokens[start + size:start + size + 2]
        return any(t in NEGATIONS for t in before) or any(t in TRAILING_NEGATIONS for t in after)

    def keyword_hits(self, text: str, keywords: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split keyword occurrences into (affirmed, negated)."""
        keywords = list(keywords)
        affirmed, negated = [], []
        for tokens in clauses(text):
            for keyword in keywords:
                size = len(tokenize(keyword))
                for start in self._find(tokens, keyword):
                    if self._is_negated(tokens, start, size):
                        negated.append(keyword)
                    else:
                        affirmed.append(keyword)
        return affirmed, negated

    def hedge(self, text: str) -> Optional[str]:
        """First hedge phrase in the answer, if any."""
        tokens = tokenize(text)
        for phrase in HEDGES:
            if self._find(tokens, phrase):
                return phrase
        return None

    def evaluate(
        self,
        answer_text: str,
        answer_type: str,
        pattern: AnswerPattern,
        competing: Iterable[AnswerPattern] = (),
    ) -> AnswerEvaluation:
        """Decide whether an answer confirms ``pattern``.

        Choice labels decide first. In free text a topical keyword confirms;
        a bare affirmation confirms only when no keyword of a ``competing``
        pattern (one that ``pattern`` does not share) is affirmed.
        """
        if answer_type == "choice":
            label = self._normalize(answer_text)
            for choice in pattern.confirm_choices:
                if label == self._normalize(choice):
                    return AnswerEvaluation(confirmed=True, method="choice", matched=choice)
            for choice in pattern.reject_choices:
                if label == self._normalize(choice):
                    return AnswerEvaluation(confirmed=False, method="choice", matched=choice)

        hedge = self.hedge(answer_text)
        if hedge is not None:
            return AnswerEvaluation(confirmed=False, method="hedge", matched=hedge)

        own = set(pattern.keywords)
        affirmed, negated = self.keyword_hits(answer_text, pattern.keywords)
        on_topic = topical(affirmed)
        if on_topic:
            return AnswerEvaluation(
                confirmed=True, method="keyword", matched=on_topic[0], negated=tuple(negated)
            )
        if not affirmed:
            return AnswerEvaluation(confirmed=False, method="none", negated=tuple(negated))

        others = {k for p in competing for k in topical(p.keywords) if k not in own}
        rivals, _ = self.keyword_hits(answer_text, sorted(others))
        if rivals:
            return AnswerEvaluation(
                confirmed=False, method="competing", matched=rivals[0], negated=tuple(negated)
            )
        return AnswerEvaluation(
            confirmed=True, method="keyword", matched=affirmed[0], negated=tuple(negated)
        )

    def infer_tag(self, answer_text: str, templates: Iterable[HypothesisTemplate]) -> Optional[str]:
        """Impact tag of the first template whose topic words appear un-negated.

        Bare affirmations ("yes", "right") say nothing about the topic and are ignored.
        """
        for template in templates:
            affirmed, _ = self.keyword_hits(answer_text, topical(template.pattern.keywords))
            if affirmed:
                return template.impact_tag
        return None
