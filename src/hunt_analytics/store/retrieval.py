"""
Retrieval store for answered anomalies.

The engine writes two record types into the store:
- ``anomaly_response``: one per answered dialogue turn, embedded on its answer text
- ``anomaly_resolution``: one per finished session, summarizing the outcome

and later reads them back by similarity ("have we seen an answer like this
before?") filtered by record type and anomaly date range.

``RetrievalStore`` is the contract any backend has to meet.
``SQLiteRetrievalStore`` keeps vectors as JSON and ranks them by cosine
similarity with numpy, which is plenty for the volume of human answers a
single business produces.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from hunt_analytics.core.models import Anomaly
from hunt_analytics.store.sqlite import get_connection, to_timestamp, transaction

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "anomaly_memory"
RESPONSE_TYPE = "anomaly_response"
RESOLUTION_TYPE = "anomaly_resolution"


@dataclass(frozen=True)
class SearchHit:
    id: str
    score: float
    payload: dict[str, Any]


@dataclass(frozen=True)
class PastPattern:
    """How an earlier anomaly of the same product was explained."""

    anomaly_ref: str
    outcome: str
    impact_tag: Optional[str]
    summary: str
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "PastPattern":
        payload = hit.payload
        return cls(
            anomaly_ref=payload.get("anomaly_ref", ""),
            outcome=payload.get("outcome") or "",
            impact_tag=payload.get("impact_tag"),
            summary=payload.get("summary", ""),
            score=hit.score,
        )

    def describe(self) -> str:
        return f"{self.anomaly_ref}: {self.summary} (tag: {self.impact_tag or 'none'})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomaly_ref": self.anomaly_ref,
            "outcome": self.outcome,
            "impact_tag": self.impact_tag,
            "summary": self.summary,
            "score": self.score,
        }


@runtime_checkable
class RetrievalStore(Protocol):
    """What the engine needs from a vector store."""

    def store(self, collection: str, id: str, vector: Sequence[float], payload: dict[str, Any]) -> None:
        ...

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        filter: Optional[dict[str, Any]] = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        ...

    def delete_by_type(self, collection: str, type: str) -> int:
        ...

    def fetch(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        ...


def _matches(payload: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Exact-match keys plus an inclusive ``date_from`` / ``date_to`` range on ``anomaly_date``."""
    for key, expected in filter.items():
        if key in ("date_from", "date_to"):
            continue
        if payload.get(key) != expected:
            return False

    date_from = filter.get("date_from")
    date_to = filter.get("date_to")
    if date_from is None and date_to is None:
        return True

    raw = payload.get("anomaly_date")
    if not raw:
        return False
    day = date.fromisoformat(str(raw)[:10])
    if date_from is not None and day < _to_date(date_from):
        return False
    if date_to is not None and day > _to_date(date_to):
        return False
    return True


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# Sessions that ended without an answer say nothing about the cause
_UNEXPLAINED = frozenset({"abandoned", "expired"})


def recall_past_patterns(
    store: RetrievalStore,
    collection: str,
    vector: Sequence[float],
    product_id: str,
    before: date,
    days: int = 365,
    limit: int = 3,
) -> list[PastPattern]:
    """Diagnosis resolutions of earlier anomalies for ``product_id``, most similar first.

    Only anomalies dated within ``days`` before ``before`` are considered;
    the anomaly on ``before`` itself is left out.
    """
    hits = store.search(
        collection,
        vector,
        filter={
            "type": RESOLUTION_TYPE,
            "purpose": "diagnosis",
            "product_id": product_id,
            "date_from": before - timedelta(days=days),
            "date_to": before - timedelta(days=1),
        },
        limit=limit * 3,
    )
    patterns = [PastPattern.from_hit(h) for h in hits]
    return [p for p in patterns if p.outcome not in _UNEXPLAINED][:limit]


class SQLiteRetrievalStore:
    """SQLite-backed ``RetrievalStore`` with numpy cosine search."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn = get_connection(db_path)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                type TEXT,
                anomaly_ref TEXT,
                vector TEXT,    -- JSON list
                payload TEXT,   -- JSON
                stored_at TEXT,
                PRIMARY KEY (collection, id)
            );

            CREATE INDEX IF NOT EXISTS idx_records_type ON records(collection, type);
            CREATE INDEX IF NOT EXISTS idx_records_ref ON records(anomaly_ref, type);
        """)

    # === CONTRACT ===

    def store(self, collection: str, id: str, vector: Sequence[float], payload: dict[str, Any]) -> None:
        """Insert or replace one record."""
        with self._lock, transaction(self.conn):
            self.conn.execute("""
                INSERT OR REPLACE INTO records
                (collection, id, type, anomaly_ref, vector, payload, stored_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                collection,
                id,
                payload.get("type"),
                payload.get("anomaly_ref"),
                json.dumps([float(v) for v in vector]) if vector is not None else None,
                json.dumps(payload, default=str),
                to_timestamp(datetime.now()),
            ))

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        filter: Optional[dict[str, Any]] = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        """Nearest records by cosine similarity, best first."""
        filter = filter or {}
        sql = "SELECT id, vector, payload FROM records WHERE collection = ? AND vector IS NOT NULL"
        params: list[Any] = [collection]
        if "type" in filter:
            sql += " AND type = ?"
            params.append(filter["type"])

        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()

        query = np.asarray(vector, dtype=float)
        ids, vectors, payloads = [], [], []
        for row in rows:
            payload = json.loads(row["payload"])
            if not _matches(payload, filter):
                continue
            emb = json.loads(row["vector"])
            if len(emb) != len(query):
                logger.debug(f"Skipping {row['id']}: vector size {len(emb)} != {len(query)}")
                continue
            ids.append(row["id"])
            vectors.append(emb)
            payloads.append(payload)

        if not ids:
            return []

        matrix = np.asarray(vectors, dtype=float)
        scores = matrix @ query / (np.linalg.norm(matrix, axis=1) * np.linalg.norm(query) + 1e-8)
        order = np.argsort(-scores, kind="stable")[:limit]
        return [SearchHit(id=ids[i], score=float(scores[i]), payload=payloads[i]) for i in order]

    def delete_by_type(self, collection: str, type: str) -> int:
        with self._lock, transaction(self.conn):
            cur = self.conn.execute(
                "DELETE FROM records WHERE collection = ? AND type = ?", (collection, type)
            )
            deleted = cur.rowcount
        logger.info(f"Deleted {deleted} '{type}' records from {collection}")
        return deleted

    def fetch(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT payload FROM records WHERE collection = ? AND id = ?", (collection, id)
            ).fetchone()
        return json.loads(row["payload"]) if row else None

    # === LOOKUPS ===

    def has_response(self, anomaly_ref: str, collection: str = DEFAULT_COLLECTION) -> bool:
        """Whether any answer has been recorded for the anomaly."""
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM records WHERE collection = ? AND anomaly_ref = ? AND type = ? LIMIT 1",
                (collection, anomaly_ref, RESPONSE_TYPE),
            ).fetchone()
        return row is not None

    def unanswered(self, anomalies: Iterable[Anomaly], collection: str = DEFAULT_COLLECTION) -> list[Anomaly]:
        """Anomalies nobody has answered a question about yet."""
        return [a for a in anomalies if not self.has_response(a.ref, collection)]

    def records_of_type(self, type: str, collection: str = DEFAULT_COLLECTION) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT payload FROM records WHERE collection = ? AND type = ? ORDER BY stored_at",
                (collection, type),
            ).fetchall()
        return [json.loads(r["payload"]) for r in rows]

    def close(self):
        self.conn.close()
