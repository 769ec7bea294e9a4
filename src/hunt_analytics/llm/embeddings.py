"""
Text embeddings for the retrieval store.

Answers are embedded on their text so later sessions can look up similar
past explanations. Three embedders:
- ``SentenceTransformerEmbedder``: local model (extra ``embeddings``)
- ``OpenAIEmbedder``: hosted model (extra ``llm``)
- ``HashingEmbedder``: feature hashing with numpy; no model, no network
"""

import hashlib
import logging
import re
from typing import Optional, Protocol, runtime_checkable

import numpy as np

from hunt_analytics.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@runtime_checkable
class Embedder(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


class HashingEmbedder:
    """Bag-of-words feature hashing into a fixed-size, L2-normalized vector."""

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=float)
        for token in re.findall(r"[a-z0-9']+", text.lower()):
            digest = hashlib.md5(token.encode()).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self._model = None

    def _get_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers required: pip install hunt-analytics[embeddings]"
                )
            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(f"Loaded embedding model {self.model_name}")
        return self._model

    def embed(self, text: str) -> list[float]:
        return self._get_model().encode(text, convert_to_numpy=True).tolist()


class OpenAIEmbedder:
    """OpenAI embeddings endpoint."""

    def __init__(self, model: str = "text-embedding-3-small", api_key: Optional[str] = None):
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required: pip install hunt-analytics[llm]")
        self.model = model
        self._errors = (openai.APIError,)
        self._client = openai.OpenAI(api_key=api_key)

    def embed(self, text: str) -> list[float]:
        try:
            response = self._client.embeddings.create(model=self.model, input=text)
        except self._errors as e:
            raise ExternalServiceError(
                f"Embedding request failed: {e}", detail={"model": self.model}
            ) from e
        return list(response.data[0].embedding)
