"""
LLM layer for Hunt.

This module provides:
- A provider-agnostic client (OpenAI, Azure, OpenRouter, Ollama)
- Verification question phrasing with template fallback
- Text embeddings for the retrieval store

NOTE: hosted providers and local embedding models need optional dependencies:
    pip install hunt-analytics[llm]
    pip install hunt-analytics[embeddings]

The SDKs are imported lazily, so everything here imports without them;
``HashingEmbedder`` and template phrasing work with the core install.
"""

from .client import LLMClient, LLMConfig, OllamaClient, OpenAIClient, get_llm_client
from .embeddings import Embedder, HashingEmbedder, OpenAIEmbedder, SentenceTransformerEmbedder
from .questions import QuestionPlan, QuestionReply, QuestionWriter

__all__ = [
    "Embedder",
    "HashingEmbedder",
    "LLMClient",
    "LLMConfig",
    "OllamaClient",
    "OpenAIClient",
    "OpenAIEmbedder",
    "QuestionPlan",
    "QuestionReply",
    "QuestionWriter",
    "SentenceTransformerEmbedder",
    "get_llm_client",
]
