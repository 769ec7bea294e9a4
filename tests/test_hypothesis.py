"""Tests for hypothesis generation."""

from dataclasses import replace

import pytest

from hunt_analytics.brain.hypothesis import (
    HypothesisGenerator,
    evidence_confidence,
    follow_up_hypothesis,
)
from hunt_analytics.brain.templates import DEFAULT_TEMPLATES, HypothesisCategory, lag_phrase, render
from hunt_analytics.config import HypothesisConfig
from hunt_analytics.core.models import CorrelationResult, ExogenousKind
from hunt_analytics.exceptions import ConfigurationError


def result(factor_id, r, p, kind, significant=None, lag=0):
    return CorrelationResult(
        factor_id=factor_id,
        lag_days=lag,
        correlation_coefficient=r,
        p_value=p,
        sample_size=30,
        significant=p <= 0.05 if significant is None else significant,
        kind=kind,
    )


@pytest.fixture()
def generator():
    return HypothesisGenerator()


class TestConfidence:
    """Confidence is derived from the evidence only."""

    def test_scaled_by_p_value(self):
        assert evidence_confidence(result("temp_c", 0.8, 0.05, ExogenousKind.WEATHER)) == pytest.approx(0.76)

    def test_sign_ignored(self):
        assert evidence_confidence(result("usdjpy", -0.5, 0.0, ExogenousKind.ECONOMIC)) == pytest.approx(0.5)


class TestGenerate:
    """Mapping results to templated hypotheses."""

    def test_one_hypothesis_per_result_plus_fallback(self, generator, anomaly, correlation_results):
        hypotheses = generator.generate(anomaly, correlation_results)

        assert [h.category for h in hypotheses] == [
            HypothesisCategory.ENVIRONMENTAL,
            HypothesisCategory.EXTERNAL,
            HypothesisCategory.INTERNAL,
        ]
        assert hypotheses[-1].template_key == "unknown_internal"
        assert hypotheses[-1].confidence == pytest.approx(0.1)
        assert hypotheses[-1].evidence == ()

    def test_sorted_by_confidence(self, generator, anomaly, correlation_results):
        confidences = [h.confidence for h in generator.generate(anomaly, correlation_results)]
        assert confidences == sorted(confidences, reverse=True)
        assert all(0.0 <= c <= 1.0 for c in confidences)

    def test_no_evidence_yields_only_fallback(self, generator, anomaly):
        hypotheses = generator.generate(anomaly, [])
        assert len(hypotheses) == 1
        assert hypotheses[0].category == HypothesisCategory.INTERNAL

    def test_weak_results_skipped(self, generator, anomaly):
        weak = result("wind_kph", 0.1, 0.6, ExogenousKind.WEATHER)
        hypotheses = generator.generate(anomaly, [weak])
        assert [h.template_key for h in hypotheses] == ["unknown_internal"]

    def test_strong_but_not_significant_qualifies(self, generator, anomaly):
        strong = result("wind_kph", 0.45, 0.2, ExogenousKind.WEATHER)
        keys = [h.template_key for h in generator.generate(anomaly, [strong])]
        assert keys == ["weather", "unknown_internal"]

    def test_compound_hypothesis_uses_noisy_or(self, generator, anomaly):
        members = [
            result("temp_c", 0.6, 0.0, ExogenousKind.WEATHER),
            result("humidity", 0.5, 0.0, ExogenousKind.WEATHER),
        ]
        hypotheses = generator.generate(anomaly, members)
        compound = hypotheses[0]

        assert compound.template_key == "weather_compound"
        assert compound.confidence == pytest.approx(1 - 0.4 * 0.5)
        assert {e.factor_id for e in compound.evidence} == {"temp_c", "humidity"}
        assert len(hypotheses) == 4

    def test_ids_are_deterministic(self, generator, anomaly, correlation_results):
        first = [h.hypothesis_id for h in generator.generate(anomaly, correlation_results)]
        second = [h.hypothesis_id for h in generator.generate(anomaly, correlation_results)]
        assert first == second
        assert len(set(first)) == len(first)
        assert all(i.startswith("hyp_") for i in first)

    def test_questions_mention_product_and_date(self, generator, anomaly, correlation_results):
        top = generator.generate(anomaly, correlation_results)[0]
        assert "umbrella" in top.primary_question
        assert "2024-03-15" in top.primary_question
        assert "precip_mm" in top.primary_question
        assert "1 day earlier" in top.primary_question
        assert top.impact_tag == "weather"

    def test_to_dict(self, hypotheses):
        data = hypotheses[0].to_dict()
        assert data["category"] == "environmental"
        assert data["evidence"][0]["factor_id"] == "precip_mm"


class TestTemplateVersion:
    """Hypothesis ids follow the template table version."""

    def test_pinned_version_matches_default_table(self, anomaly, correlation_results):
        pinned = HypothesisGenerator(HypothesisConfig(template_version=DEFAULT_TEMPLATES.version))
        assert [h.hypothesis_id for h in pinned.generate(anomaly, correlation_results)] == [
            h.hypothesis_id for h in HypothesisGenerator().generate(anomaly, correlation_results)
        ]

    def test_mismatched_table_rejected(self):
        with pytest.raises(ConfigurationError):
            HypothesisGenerator(HypothesisConfig(template_version="1999.1"))

    def test_new_table_version_changes_ids(self, anomaly, correlation_results):
        table = replace(DEFAULT_TEMPLATES, version="2025.1")
        old = HypothesisGenerator().generate(anomaly, correlation_results)
        new = HypothesisGenerator(HypothesisConfig(template_version="2025.1"), templates=table).generate(
            anomaly, correlation_results
        )
        assert {h.hypothesis_id for h in old}.isdisjoint(h.hypothesis_id for h in new)


class TestFollowUpHypothesis:
    """Single-question hypotheses for reopened sessions."""

    def test_renders_explanation(self, anomaly):
        template = DEFAULT_TEMPLATES.follow_up("short_term")
        h = follow_up_hypothesis(
            anomaly.ref, template, "Rain drove the spike", "fu_1", DEFAULT_TEMPLATES.version,
            category=HypothesisCategory.ENVIRONMENTAL,
        )
        assert "Rain drove the spike" in h.primary_question
        assert "umbrella" in h.primary_question
        assert h.confidence == 1.0
        assert h.template_key == "followup_short_term"
        assert h.category == HypothesisCategory.ENVIRONMENTAL


class TestTemplateHelpers:
    """Lag wording and placeholder rendering."""

    @pytest.mark.parametrize("lag, expected", [
        (0, "on the same day"),
        (-1, "1 day earlier"),
        (3, "3 days later"),
    ])
    def test_lag_phrase(self, lag, expected):
        assert lag_phrase(lag) == expected

    def test_render_keeps_unknown_placeholders(self):
        assert render("{product} on {date}", product="soap") == "soap on {date}"

    def test_unknown_kind_uses_generic_template(self):
        template = DEFAULT_TEMPLATES.for_kind(ExogenousKind.OTHER)
        assert template.key == "external_signal"
