"""Tests for the SQLite retrieval store."""

from datetime import date

import pytest

from hunt_analytics.core.models import Anomaly, Severity
from hunt_analytics.llm.embeddings import HashingEmbedder
from hunt_analytics.store.retrieval import (
    DEFAULT_COLLECTION,
    RESOLUTION_TYPE,
    RESPONSE_TYPE,
    PastPattern,
    RetrievalStore,
    SQLiteRetrievalStore,
    recall_past_patterns,
)


@pytest.fixture()
def embedder():
    return HashingEmbedder(dimensions=64)


def payload(ref, type=RESPONSE_TYPE, **extra):
    day, _, product_id = ref.partition("|")
    return {"type": type, "anomaly_ref": ref, "anomaly_date": day, "product_id": product_id, **extra}


class TestContract:
    """store / search / delete_by_type / fetch."""

    def test_satisfies_protocol(self, retrieval_store):
        assert isinstance(retrieval_store, RetrievalStore)

    def test_store_and_fetch(self, retrieval_store, embedder):
        data = payload("2024-03-15|umbrella", answer_text="rain")
        retrieval_store.store(DEFAULT_COLLECTION, "r1", embedder.embed("rain"), data)

        assert retrieval_store.fetch(DEFAULT_COLLECTION, "r1") == data
        assert retrieval_store.fetch(DEFAULT_COLLECTION, "missing") is None
        assert retrieval_store.fetch("other_collection", "r1") is None

    def test_store_replaces_same_id(self, retrieval_store, embedder):
        retrieval_store.store(DEFAULT_COLLECTION, "r1", embedder.embed("a"), payload("2024-03-15|umbrella", n=1))
        retrieval_store.store(DEFAULT_COLLECTION, "r1", embedder.embed("b"), payload("2024-03-15|umbrella", n=2))
        assert retrieval_store.fetch(DEFAULT_COLLECTION, "r1")["n"] == 2

    def test_search_ranks_by_similarity(self, retrieval_store, embedder):
        texts = {
            "r1": "heavy rain all afternoon",
            "r2": "we ran a discount campaign",
            "r3": "rain and wind",
        }
        for rid, text in texts.items():
            retrieval_store.store(DEFAULT_COLLECTION, rid, embedder.embed(text), payload("2024-03-15|umbrella"))

        hits = retrieval_store.search(DEFAULT_COLLECTION, embedder.embed("heavy rain all afternoon"), limit=2)
        assert [h.id for h in hits][0] == "r1"
        assert hits[0].score == pytest.approx(1.0, abs=1e-6)
        assert len(hits) == 2

    def test_search_filters(self, retrieval_store, embedder):
        vector = embedder.embed("rain")
        retrieval_store.store(DEFAULT_COLLECTION, "a", vector, payload("2024-03-01|umbrella"))
        retrieval_store.store(DEFAULT_COLLECTION, "b", vector, payload("2024-03-20|umbrella"))
        retrieval_store.store(DEFAULT_COLLECTION, "c", vector, payload("2024-03-20|soap", type=RESOLUTION_TYPE))

        by_type = retrieval_store.search(DEFAULT_COLLECTION, vector, {"type": RESPONSE_TYPE})
        assert {h.id for h in by_type} == {"a", "b"}

        by_product = retrieval_store.search(DEFAULT_COLLECTION, vector, {"product_id": "soap"})
        assert [h.id for h in by_product] == ["c"]

        ranged = retrieval_store.search(
            DEFAULT_COLLECTION, vector, {"date_from": "2024-03-10", "date_to": date(2024, 3, 31)},
        )
        assert {h.id for h in ranged} == {"b", "c"}

    def test_mismatched_vector_size_skipped(self, retrieval_store, embedder):
        retrieval_store.store(DEFAULT_COLLECTION, "a", [1.0, 0.0], payload("2024-03-01|umbrella"))
        assert retrieval_store.search(DEFAULT_COLLECTION, embedder.embed("rain")) == []

    def test_delete_by_type(self, retrieval_store, embedder):
        vector = embedder.embed("x")
        retrieval_store.store(DEFAULT_COLLECTION, "a", vector, payload("2024-03-01|umbrella"))
        retrieval_store.store(DEFAULT_COLLECTION, "b", vector, payload("2024-03-01|umbrella", type=RESOLUTION_TYPE))

        assert retrieval_store.delete_by_type(DEFAULT_COLLECTION, RESPONSE_TYPE) == 1
        assert retrieval_store.fetch(DEFAULT_COLLECTION, "a") is None
        assert retrieval_store.fetch(DEFAULT_COLLECTION, "b") is not None


class TestLookups:
    """Answered-anomaly lookups."""

    def test_unanswered(self, retrieval_store, embedder):
        answered = Anomaly(date(2024, 3, 15), "umbrella", 45, 11, 8.0, Severity.SEVERE)
        fresh = Anomaly(date(2024, 3, 16), "umbrella", 40, 11, 7.0, Severity.SEVERE)
        retrieval_store.store(DEFAULT_COLLECTION, "r1", embedder.embed("rain"), payload(answered.ref))

        assert retrieval_store.has_response(answered.ref)
        assert not retrieval_store.has_response(fresh.ref)
        assert retrieval_store.unanswered([answered, fresh]) == [fresh]

    def test_file_backed_store_persists(self, tmp_path, embedder):
        db_path = str(tmp_path / "memory" / "retrieval.db")
        store = SQLiteRetrievalStore(db_path)
        store.store(DEFAULT_COLLECTION, "r1", embedder.embed("rain"), payload("2024-03-15|umbrella"))
        store.close()

        reopened = SQLiteRetrievalStore(db_path)
        assert reopened.has_response("2024-03-15|umbrella")
        reopened.close()


class TestPastPatterns:
    """Earlier resolutions of the same product."""

    def resolve(self, store, embedder, ref, outcome="confirmed", purpose="diagnosis", tag="weather_rain"):
        summary = f"{ref} {purpose}: {outcome}. Rain kept people indoors"
        store.store(
            DEFAULT_COLLECTION,
            f"res_{ref}_{purpose}",
            embedder.embed(summary),
            payload(ref, type=RESOLUTION_TYPE, outcome=outcome, purpose=purpose, impact_tag=tag, summary=summary),
        )

    def test_window_and_product(self, retrieval_store, embedder):
        self.resolve(retrieval_store, embedder, "2024-02-01|umbrella")
        self.resolve(retrieval_store, embedder, "2023-01-10|umbrella")
        self.resolve(retrieval_store, embedder, "2024-02-01|soap")
        self.resolve(retrieval_store, embedder, "2024-03-15|umbrella")

        patterns = recall_past_patterns(
            retrieval_store, DEFAULT_COLLECTION, embedder.embed("rain"), "umbrella", before=date(2024, 3, 15),
        )

        assert [p.anomaly_ref for p in patterns] == ["2024-02-01|umbrella"]
        assert patterns[0].impact_tag == "weather_rain"
        assert patterns[0].describe().startswith("2024-02-01|umbrella: ")

    def test_unexplained_and_follow_up_outcomes_left_out(self, retrieval_store, embedder):
        self.resolve(retrieval_store, embedder, "2024-02-01|umbrella", outcome="expired", tag=None)
        self.resolve(retrieval_store, embedder, "2024-02-05|umbrella", outcome="abandoned", tag=None)
        self.resolve(retrieval_store, embedder, "2024-02-09|umbrella", purpose="effect_persistence")
        self.resolve(retrieval_store, embedder, "2024-02-20|umbrella", outcome="not_confirmed", tag="campaign")

        patterns = recall_past_patterns(
            retrieval_store, DEFAULT_COLLECTION, embedder.embed("rain"), "umbrella", before=date(2024, 3, 15),
        )

        assert [p.outcome for p in patterns] == ["not_confirmed"]
        assert patterns[0].to_dict()["impact_tag"] == "campaign"

    def test_limit(self, retrieval_store, embedder):
        for day in range(1, 6):
            self.resolve(retrieval_store, embedder, f"2024-02-0{day}|umbrella")

        patterns = recall_past_patterns(
            retrieval_store, DEFAULT_COLLECTION, embedder.embed("rain"), "umbrella",
            before=date(2024, 3, 15), limit=2,
        )

        assert len(patterns) == 2
        assert all(isinstance(p, PastPattern) for p in patterns)
