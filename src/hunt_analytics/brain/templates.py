"""
Hypothesis and question templates.

Every piece of wording the engine can put in front of a user lives here as
data: which hypothesis category an exogenous kind maps to, the verification
questions for it, the answers that count as confirmation, the escalation
question, and the follow-up question asked when a resolved anomaly comes due
for a re-check.

The table is versioned. The version goes into hypothesis ids, so a reworded
table never collides with answers recorded against an older wording.

Placeholders available to every question string:
    {product} {date} {direction} {factor} {lag_phrase} {explanation}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from hunt_analytics.core.models import ExogenousKind


class HypothesisCategory(str, Enum):
    """Where a candidate cause comes from."""

    INTERNAL = "internal"
    """Something the business did itself (promotion, pricing, stock)."""

    EXTERNAL = "external"
    """Market or economic movement outside the business."""

    ENVIRONMENTAL = "environmental"
    """Weather and other physical conditions."""

    BEHAVIORAL = "behavioral"
    """Customers reacting to events, holidays, trends."""


@dataclass(frozen=True)
class AnswerPattern:
    """What a confirming answer looks like.

    Attributes:
        keywords: Free-text terms that confirm when not negated.
        confirm_choices: Choice labels that confirm outright.
        reject_choices: Choice labels that reject outright.
    """

    keywords: tuple[str, ...] = ()
    confirm_choices: tuple[str, ...] = ()
    reject_choices: tuple[str, ...] = ()


@dataclass(frozen=True)
class HypothesisTemplate:
    key: str
    category: HypothesisCategory
    title: str
    questions: tuple[str, ...]
    pattern: AnswerPattern
    choices: tuple[str, ...]
    impact_tag: str
    compound_title: str = ""
    compound_question: str = ""


@dataclass(frozen=True)
class FollowUpTemplate:
    """Question asked when a follow-up task reopens a resolved anomaly."""

    kind: str
    purpose: str
    question: str
    choices: tuple[str, ...]
    pattern: AnswerPattern
    impact_tag: str


# Generic yes / no labels reused across templates
AFFIRMATIONS = ("yes", "correct", "right", "exactly", "definitely", "indeed")
_NO = "No, something else"
_UNSURE = "Not sure"


@dataclass(frozen=True)
class TemplateTable:
    version: str
    by_kind: dict = field(default_factory=dict)
    fallback: Optional[HypothesisTemplate] = None
    escalation_question: str = ""
    escalation_choices: tuple[str, ...] = ()
    follow_ups: dict = field(default_factory=dict)

    def for_kind(self, kind: ExogenousKind) -> HypothesisTemplate:
        return self.by_kind.get(ExogenousKind(kind), self.by_kind[ExogenousKind.OTHER])

    def follow_up(self, kind: str) -> FollowUpTemplate:
        return self.follow_ups[kind]

    def hypothesis_templates(self) -> list[HypothesisTemplate]:
        templates = list(self.by_kind.values())
        if self.fallback is not None:
            templates.append(self.fallback)
        return templates

    def topic_patterns(self) -> list[AnswerPattern]:
        """Answer patterns of the templates that name a specific cause.

        The catch-all template for unclassified series is left out: its words
        ("related", "because") fit any explanation.
        """
        generic = self.by_kind.get(ExogenousKind.OTHER)
        return [t.pattern for t in self.hypothesis_templates() if t is not generic]


# =============================================================================
# Default table
# =============================================================================

WEATHER_TEMPLATE = HypothesisTemplate(
    key="weather",
    category=HypothesisCategory.ENVIRONMENTAL,
    title="Weather drove the {direction} ({factor})",
    questions=(
        "{product} sales saw a {direction} on {date}, and {factor} moved with them "
        "{lag_phrase}. Was the weather behind it?",
        "Did customers mention the weather, or did weather-sensitive items move the same way?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + (
            "weather", "temperature", "hot", "heat", "warm", "cold", "rain", "rainy",
            "snow", "sunny", "humid", "storm",
        ),
        confirm_choices=("Yes, the weather", "Partly the weather"),
        reject_choices=(_NO,),
    ),
    choices=("Yes, the weather", "Partly the weather", _NO, _UNSURE),
    impact_tag="weather",
    compound_title="Several weather conditions together drove the {direction}",
    compound_question=(
        "Several weather signals ({factor}) lined up with the {direction} in {product} "
        "on {date}. Was it the weather overall?"
    ),
)

ECONOMIC_TEMPLATE = HypothesisTemplate(
    key="economic",
    category=HypothesisCategory.EXTERNAL,
    title="Market conditions drove the {direction} ({factor})",
    questions=(
        "{product} sales saw a {direction} on {date} while {factor} moved {lag_phrase}. "
        "Did prices, exchange rates or the wider market affect demand?",
        "Did suppliers or competitors change prices around that time?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + (
            "market", "economy", "economic", "price", "prices", "inflation", "exchange",
            "yen", "dollar", "stock", "cost", "competitor",
        ),
        confirm_choices=("Yes, market conditions", "Competitor pricing"),
        reject_choices=(_NO,),
    ),
    choices=("Yes, market conditions", "Competitor pricing", _NO, _UNSURE),
    impact_tag="market",
    compound_title="Broad market movement drove the {direction}",
    compound_question=(
        "Several market indicators ({factor}) moved with {product} sales around {date}. "
        "Was this a wider market shift?"
    ),
)

EVENT_TEMPLATE = HypothesisTemplate(
    key="event",
    category=HypothesisCategory.BEHAVIORAL,
    title="A local event changed customer behaviour ({factor})",
    questions=(
        "{product} sales saw a {direction} on {date}, lining up with {factor} "
        "{lag_phrase}. Was there an event, holiday or game nearby?",
        "Did foot traffic or the customer mix look different that day?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + (
            "event", "festival", "holiday", "game", "match", "concert", "parade",
            "crowd", "tourists", "fair",
        ),
        confirm_choices=("Yes, an event", "A holiday"),
        reject_choices=(_NO,),
    ),
    choices=("Yes, an event", "A holiday", _NO, _UNSURE),
    impact_tag="event",
    compound_title="Overlapping events changed customer behaviour",
    compound_question=(
        "Several event signals ({factor}) coincided with the {direction} in {product} "
        "on {date}. Was it the events around then?"
    ),
)

PROMOTION_TEMPLATE = HypothesisTemplate(
    key="promotion",
    category=HypothesisCategory.INTERNAL,
    title="A promotion or campaign drove the {direction} ({factor})",
    questions=(
        "{product} sales saw a {direction} on {date}, tracking {factor} {lag_phrase}. "
        "Was a promotion or campaign running?",
        "Which channel carried the campaign (in store, online, flyers)?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + (
            "promotion", "promo", "campaign", "sale", "discount", "coupon", "ad",
            "advert", "advertising", "flyer", "bundle",
        ),
        confirm_choices=("Yes, a promotion", "An ad campaign"),
        reject_choices=(_NO,),
    ),
    choices=("Yes, a promotion", "An ad campaign", _NO, _UNSURE),
    impact_tag="campaign",
    compound_title="Stacked promotions drove the {direction}",
    compound_question=(
        "Several promotional signals ({factor}) lined up with the {direction} in {product} "
        "on {date}. Were campaigns stacked that week?"
    ),
)

OTHER_TEMPLATE = HypothesisTemplate(
    key="external_signal",
    category=HypothesisCategory.EXTERNAL,
    title="{factor} is linked to the {direction}",
    questions=(
        "{product} sales saw a {direction} on {date}, and {factor} moved with them "
        "{lag_phrase}. Is that connected?",
        "How would {factor} reach your customers?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + ("connected", "related", "linked", "because"),
        confirm_choices=("Yes, connected",),
        reject_choices=(_NO,),
    ),
    choices=("Yes, connected", _NO, _UNSURE),
    impact_tag="external",
    compound_title="Several external signals together explain the {direction}",
    compound_question=(
        "Several signals ({factor}) moved with {product} sales around {date}. "
        "Are they connected to the {direction}?"
    ),
)

FALLBACK_TEMPLATE = HypothesisTemplate(
    key="unknown_internal",
    category=HypothesisCategory.INTERNAL,
    title="Unknown cause or an internal action",
    questions=(
        "We found no outside signal that explains the {direction} in {product} on {date}. "
        "Did anything change in the business: a campaign, a price change, a stock issue?",
    ),
    pattern=AnswerPattern(
        keywords=AFFIRMATIONS + (
            "campaign", "promotion", "promo", "sale", "discount", "price", "stock",
            "inventory", "staff", "display", "shelf", "order", "shortage", "competitor",
        ),
        confirm_choices=("Campaign or promotion", "Price change", "Stock issue", "Competitor"),
        reject_choices=("Nothing changed",),
    ),
    choices=(
        "Campaign or promotion",
        "Price change",
        "Stock issue",
        "Competitor",
        "Nothing changed",
        "Other (describe)",
    ),
    impact_tag="internal",
)

DEFAULT_FOLLOW_UPS = {
    "short_term": FollowUpTemplate(
        kind="short_term",
        purpose="effect_persistence",
        question=(
            "A week ago {product} saw a {direction} on {date} ({explanation}). "
            "Is the effect still showing in sales?"
        ),
        choices=("Still strong", "Fading", "Gone", _UNSURE),
        pattern=AnswerPattern(
            keywords=("yes", "still", "continues", "continuing", "persists", "strong", "ongoing"),
            confirm_choices=("Still strong", "Fading"),
            reject_choices=("Gone",),
        ),
        impact_tag="short_term_effect",
    ),
    "medium_term": FollowUpTemplate(
        kind="medium_term",
        purpose="effect_persistence",
        question=(
            "A month has passed since the {direction} in {product} on {date} "
            "({explanation}). Are sales still away from their usual level?"
        ),
        choices=("Still elevated", "Back to normal", "Reversed", _UNSURE),
        pattern=AnswerPattern(
            keywords=("yes", "still", "elevated", "higher", "lower", "persists", "remains"),
            confirm_choices=("Still elevated", "Reversed"),
            reject_choices=("Back to normal",),
        ),
        impact_tag="medium_term_effect",
    ),
    "long_term": FollowUpTemplate(
        kind="long_term",
        purpose="pattern_confirmation",
        question=(
            "Three months on from the {direction} in {product} on {date} ({explanation}): "
            "has the same cause produced similar movements since?"
        ),
        choices=("Yes, repeatedly", "Once more", "No", _UNSURE),
        pattern=AnswerPattern(
            keywords=("yes", "again", "repeatedly", "recurring", "pattern", "every", "same"),
            confirm_choices=("Yes, repeatedly", "Once more"),
            reject_choices=("No",),
        ),
        impact_tag="long_term_pattern",
    ),
    "yearly": FollowUpTemplate(
        kind="yearly",
        purpose="yearly_strategy",
        question=(
            "It has been a year since the {direction} in {product} on {date} ({explanation}). "
            "Should this season's plan account for it again?"
        ),
        choices=("Yes, plan for it", "Adjust the plan", "No", _UNSURE),
        pattern=AnswerPattern(
            keywords=("yes", "plan", "prepare", "again", "stock up", "repeat"),
            confirm_choices=("Yes, plan for it", "Adjust the plan"),
            reject_choices=("No",),
        ),
        impact_tag="yearly_review",
    ),
}

DEFAULT_TEMPLATES = TemplateTable(
    version="2024.1",
    by_kind={
        ExogenousKind.WEATHER: WEATHER_TEMPLATE,
        ExogenousKind.ECONOMIC: ECONOMIC_TEMPLATE,
        ExogenousKind.EVENT: EVENT_TEMPLATE,
        ExogenousKind.PROMOTION: PROMOTION_TEMPLATE,
        ExogenousKind.OTHER: OTHER_TEMPLATE,
    },
    fallback=FALLBACK_TEMPLATE,
    escalation_question=(
        "None of our explanations fit the {direction} in {product} on {date}. "
        "In your own words, what do you think happened?"
    ),
    escalation_choices=(),
    follow_ups=DEFAULT_FOLLOW_UPS,
)


def lag_phrase(lag_days: int) -> str:
    """Readable form of a lag, from the exogenous series' point of view."""
    if lag_days == 0:
        return "on the same day"
    days = abs(lag_days)
    unit = "day" if days == 1 else "days"
    # Negative lag: the exogenous value came first
    if lag_days < 0:
        return f"{days} {unit} earlier"
    return f"{days} {unit} later"


def render(text: str, **context) -> str:
    """Fill template placeholders, leaving unknown ones visible instead of failing."""

    class _Missing(dict):
        def __missing__(self, key):
            return "{" + key + "}"

    return text.format_map(_Missing(context))
