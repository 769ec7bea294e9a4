"""Durable storage: retrieval records and SQLite helpers."""

from .retrieval import (
    DEFAULT_COLLECTION,
    RESOLUTION_TYPE,
    RESPONSE_TYPE,
    RetrievalStore,
    SearchHit,
    SQLiteRetrievalStore,
)

__all__ = [
    "DEFAULT_COLLECTION",
    "RESOLUTION_TYPE",
    "RESPONSE_TYPE",
    "RetrievalStore",
    "SearchHit",
    "SQLiteRetrievalStore",
]
