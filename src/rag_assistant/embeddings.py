"""
Embedding generation through Ollama's ``/api/embeddings`` endpoint.

When the endpoint cannot be reached or returns no vector, a deterministic
hash-derived vector is used instead so that ingestion and retrieval keep
working, with degraded relevance.
"""

import hashlib
import logging
from typing import List, Optional

import numpy as np
import requests

from .exceptions import ProviderUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "all-minilm:22m"
FALLBACK_DIMENSION = 384
EMBEDDING_MODEL_MARKERS = ("embed", "all-minilm", "nomic", "mxbai")


def hash_embedding(text: str, dimension: int = FALLBACK_DIMENSION) -> np.ndarray:
    """
    Deterministic pseudo-embedding of ``text``.

    Each component is derived from a SHA-256 digest of the text and the
    component index, mapped to [-1, 1), then the vector is L2-normalized.
    Empty text gives the zero vector.
    """
    vector = np.zeros(dimension, dtype=np.float64)
    if not text:
        return vector

    for i in range(dimension):
        digest = hashlib.sha256(f"{text}{i}".encode("utf-8")).digest()
        vector[i] = (int.from_bytes(digest[:8], "big") % 2000 - 1000) / 1000.0

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector


class EmbeddingService:
    """Client for Ollama embeddings with a hash fallback."""

    def __init__(self, base_url: str = "http://localhost:11434", model: str = DEFAULT_EMBEDDING_MODEL,
                 timeout: float = 30.0, fallback_dimension: int = FALLBACK_DIMENSION,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.fallback_dimension = fallback_dimension
        self.session = session or requests.Session()

    def embed(self, text: str) -> np.ndarray:
        """Embed ``text`` with the current model, falling back to a hash vector."""
        try:
            return self.embed_with_model(self.model, text)
        except ProviderUnavailableError as e:
            logger.warning(f"Embedding request failed ({e}); using hash fallback")
            return hash_embedding(text, self.fallback_dimension)

    def embed_with_model(self, model: str, text: str) -> np.ndarray:
        """
        Embed ``text`` with a specific model, without fallback.

        Raises:
            ProviderUnavailableError: If the request fails or no vector is returned
        """
        url = f"{self.base_url}/api/embeddings"
        try:
            response = self.session.post(url, json={"model": model, "prompt": text}, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderUnavailableError(f"Cannot reach {url}: {e}", provider="ollama") from e

        if response.status_code != 200:
            raise ProviderUnavailableError(
                f"Embedding API error: {response.status_code} - {response.text[:200]}",
                provider="ollama",
                status_code=response.status_code,
            )

        try:
            values = response.json().get("embedding")
        except ValueError as e:
            raise ProviderUnavailableError(f"Invalid embedding response: {e}", provider="ollama") from e
        if not values:
            raise ProviderUnavailableError(f"Model {model} returned no embedding", provider="ollama")
        return np.asarray(values, dtype=np.float64)

    def check_embedding_support(self, model: str) -> bool:
        """True if ``model`` returns a non-empty embedding for a probe text."""
        try:
            return len(self.embed_with_model(model, "test")) > 0
        except ProviderUnavailableError as e:
            logger.info(f"Model {model} does not provide embeddings: {e}")
            return False

    def get_available_embedding_models(self, installed: List[str]) -> List[str]:
        """
        Filter installed model names down to likely embedding models.

        The default embedding model is always offered first.
        """
        models = [name for name in installed
                  if any(marker in name.lower() for marker in EMBEDDING_MODEL_MARKERS)]
        if DEFAULT_EMBEDDING_MODEL not in models:
            models.insert(0, DEFAULT_EMBEDDING_MODEL)
        return models

    def close(self) -> None:
        self.session.close()
