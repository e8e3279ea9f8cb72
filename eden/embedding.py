"""
Embedding providers for the episodic memory store.

Responsibility:
- Turn normalized text into a fixed-dimension float32 vector
- Report failures as Failure results, never as exceptions from embed()

Does NOT:
- Store vectors (episode_db does)
- Score similarity (memory_store does)

Backends:
- sentence-transformers (default, all-MiniLM-L6-v2, 384 dims)
- hashing: deterministic token-hashing projection, fully offline
"""

import asyncio
import hashlib
import logging
import re
from typing import Optional

import numpy as np

from eden import policy
from eden.config import EMBEDDING_BACKENDS, Config
from eden.errors import ConfigurationError
from eden.models import Failure, Ok, Result

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def normalize_text(text: str) -> str:
    """Collapse whitespace and cap length before embedding."""
    return " ".join(text.split())[: policy.EMBEDDING_MAX_CHARS]


class EmbeddingProvider:
    """Base interface. Subclasses implement _encode()."""

    name = "base"

    def __init__(self, dimension: int):
        self._dimension = dimension
        self._loaded = False

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        self._loaded = True

    async def embed(self, text: str) -> Result[np.ndarray]:
        if not self._loaded:
            return Failure(f"{self.name} embedder not loaded")
        try:
            vector = await self._encode(normalize_text(text))
        except Exception as e:
            logger.error(f"[Embedding] {self.name} failed to embed text: {e}", exc_info=True)
            return Failure(f"embedding failed: {e}", e)
        return Ok(vector)

    async def _encode(self, text: str) -> np.ndarray:
        raise NotImplementedError


class SentenceTransformerEmbedder(EmbeddingProvider):
    name = "sentence-transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384):
        super().__init__(dimension)
        self.model_name = model_name
        self._model = None

    async def load(self) -> None:
        if self._loaded:
            return
        logger.info(f"[Embedding] Loading model {self.model_name}...")
        self._model = await asyncio.to_thread(self._load_model)
        reported = self._model.get_sentence_embedding_dimension()
        if reported:
            self._dimension = int(reported)
        self._loaded = True
        logger.info(f"[Embedding] Model ready ({self._dimension} dims)")

    def _load_model(self):
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(self.model_name)

    async def _encode(self, text: str) -> np.ndarray:
        vector = await asyncio.to_thread(
            self._model.encode, text, normalize_embeddings=True, convert_to_numpy=True
        )
        return np.asarray(vector, dtype=np.float32)


class HashingEmbedder(EmbeddingProvider):
    """
    Deterministic bag-of-words projection.

    Each token is hashed to a bucket and a sign; the summed vector is
    L2-normalized. Not semantic, but shared words give shared direction,
    which is enough for offline use and tests.
    """

    name = "hashing"

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        super().__init__(dimension)

    async def _encode(self, text: str) -> np.ndarray:
        return self.encode_sync(text)

    def encode_sync(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8", errors="ignore")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector


def create_embedder(config: Optional[Config] = None) -> EmbeddingProvider:
    """Build the provider named by memory.embedding_backend."""
    backend = config.get("memory.embedding_backend", "sentence-transformers") if config else "sentence-transformers"
    dimension = int(config.get("memory.embedding_dimension", 384)) if config else 384

    if backend not in EMBEDDING_BACKENDS:
        raise ConfigurationError(f"Unknown embedding backend: {backend}")
    if backend == "hashing":
        return HashingEmbedder(dimension)
    model_name = config.get("memory.embedding_model", "all-MiniLM-L6-v2") if config else "all-MiniLM-L6-v2"
    return SentenceTransformerEmbedder(model_name, dimension)
