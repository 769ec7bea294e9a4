"""Tests for answer evaluation."""

import pytest

from hunt_analytics.brain.matching import AnswerMatcher, tokenize
from hunt_analytics.brain.templates import DEFAULT_TEMPLATES, FALLBACK_TEMPLATE, WEATHER_TEMPLATE


@pytest.fixture()
def matcher():
    return AnswerMatcher()


class TestFreeText:
    """Keyword matching with negation."""

    def test_negated_keyword_does_not_confirm(self, matcher):
        evaluation = matcher.evaluate(
            "not weather related, we ran a promotion", "free_text", WEATHER_TEMPLATE.pattern,
        )
        assert not evaluation.confirmed
        assert "weather" in evaluation.negated

    def test_keyword_confirms(self, matcher):
        evaluation = matcher.evaluate("It was the heat wave", "free_text", WEATHER_TEMPLATE.pattern)
        assert evaluation.confirmed
        assert evaluation.method == "keyword"
        assert evaluation.matched == "heat"

    def test_affirmation_confirms(self, matcher):
        assert matcher.evaluate("Yes.", "free_text", WEATHER_TEMPLATE.pattern).confirmed

    def test_negation_reaches_across_the_clause(self, matcher):
        evaluation = matcher.evaluate(
            "I really do not think it was the weather", "free_text", WEATHER_TEMPLATE.pattern,
        )
        assert not evaluation.confirmed
        assert evaluation.negated == ("weather",)

    def test_negation_stops_at_clause_boundary(self, matcher):
        answer = "No promotion that week, but the rain kept people home"
        evaluation = matcher.evaluate(answer, "free_text", WEATHER_TEMPLATE.pattern)
        assert evaluation.confirmed
        assert evaluation.matched == "rain"

    def test_trailing_negation(self, matcher):
        assert not matcher.evaluate("weather unrelated", "free_text", WEATHER_TEMPLATE.pattern).confirmed

    def test_contraction_negates(self, matcher):
        evaluation = matcher.evaluate("it wasn't the rain", "free_text", WEATHER_TEMPLATE.pattern)
        assert not evaluation.confirmed

    def test_tokenize_normalizes_quotes(self):
        assert tokenize("Didn’t RAIN") == ["didn't", "rain"]


class TestAmbiguousAnswers:
    """Hedged or off-topic answers confirm nothing."""

    @pytest.mark.parametrize("answer", [
        "not sure it was the weather",
        "maybe the rain?",
        "I don't know, could be the heat",
        "Not sure",
    ])
    def test_hedges(self, matcher, answer):
        evaluation = matcher.evaluate(answer, "free_text", WEATHER_TEMPLATE.pattern)
        assert not evaluation.confirmed
        assert evaluation.method == "hedge"
        assert evaluation.ambiguous

    def test_unsure_choice_is_a_hedge(self, matcher):
        evaluation = matcher.evaluate("Not sure", "choice", WEATHER_TEMPLATE.pattern)
        assert not evaluation.confirmed and evaluation.method == "hedge"

    def test_yes_naming_another_cause(self, matcher):
        evaluation = matcher.evaluate(
            "yes we ran a promotion", "free_text", WEATHER_TEMPLATE.pattern,
            DEFAULT_TEMPLATES.topic_patterns(),
        )
        assert not evaluation.confirmed
        assert evaluation.method == "competing"
        assert evaluation.matched == "promotion"

    def test_bare_yes_still_confirms(self, matcher):
        evaluation = matcher.evaluate(
            "Yes, definitely", "free_text", WEATHER_TEMPLATE.pattern, DEFAULT_TEMPLATES.topic_patterns(),
        )
        assert evaluation.confirmed

    def test_shared_keyword_is_not_a_rival(self, matcher):
        # "promotion" belongs to the catch-all internal template as well
        evaluation = matcher.evaluate(
            "yes, a promotion", "free_text", FALLBACK_TEMPLATE.pattern, DEFAULT_TEMPLATES.topic_patterns(),
        )
        assert evaluation.confirmed
        assert evaluation.matched == "promotion"

    def test_generic_words_do_not_compete(self, matcher):
        evaluation = matcher.evaluate(
            "yes, that is related", "free_text", WEATHER_TEMPLATE.pattern,
            DEFAULT_TEMPLATES.topic_patterns(),
        )
        assert evaluation.confirmed


class TestChoices:
    """Choice answers compared against template labels."""

    def test_confirm_choice(self, matcher):
        evaluation = matcher.evaluate("yes, the WEATHER", "choice", WEATHER_TEMPLATE.pattern)
        assert evaluation.confirmed
        assert evaluation.method == "choice"

    def test_reject_choice(self, matcher):
        evaluation = matcher.evaluate("No, something else", "choice", WEATHER_TEMPLATE.pattern)
        assert not evaluation.confirmed
        assert evaluation.method == "choice"

    def test_unknown_choice_falls_back_to_keywords(self, matcher):
        evaluation = matcher.evaluate("Stock issue", "choice", FALLBACK_TEMPLATE.pattern)
        assert evaluation.confirmed and evaluation.method == "choice"
        evaluation = matcher.evaluate("heavy rain", "choice", WEATHER_TEMPLATE.pattern)
        assert evaluation.confirmed and evaluation.method == "keyword"


class TestInferTag:
    """Impact tags from free text."""

    def test_promotion_mentioned(self, matcher):
        tag = matcher.infer_tag("not weather related, we ran a promotion", DEFAULT_TEMPLATES.hypothesis_templates())
        assert tag == "campaign"

    def test_bare_affirmation_has_no_topic(self, matcher):
        assert matcher.infer_tag("yes", DEFAULT_TEMPLATES.hypothesis_templates()) is None

    def test_multi_word_keyword(self, matcher):
        pattern = DEFAULT_TEMPLATES.follow_up("yearly").pattern
        affirmed, negated = matcher.keyword_hits("we will stock up early", pattern.keywords)
        assert "stock up" in affirmed
        assert negated == []
