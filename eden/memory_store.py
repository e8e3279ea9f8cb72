"""
Episodic memory for EDEN.

Contract:
- Every finished exchange becomes one Episode with one embedding.
- SQLite (EpisodeDatabase) keeps every episode until explicitly deleted.
- The in-memory cache holds the most recent N episodes (oldest evicted first)
  and is what search scans.
- Embedding dimension is fixed per store instance.
- Similarities are cosine, bounded to [-1, 1]; zero vectors score 0.0.
"""

import json
import logging
import sqlite3
import time
import warnings
from collections import OrderedDict
from typing import List, Optional

import numpy as np

from eden import policy
from eden.embedding import EmbeddingProvider
from eden.episode_db import EpisodeDatabase
from eden.errors import ConfigurationError, NotInitializedError, PersistenceWarning, RetrievalError
from eden.instrumentation import timed
from eden.models import (
    Episode,
    MemoryStats,
    RetrievedEpisode,
    Satisfaction,
    SearchResult,
    TimeRange,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a, b) -> float:
    """dot(a, b) / (|a| * |b|), clamped to [-1, 1]. Zero or empty input -> 0.0."""
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.size == 0 or b.size == 0:
        return 0.0
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions do not match: {a.shape[0]} vs {b.shape[0]}")
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(a, b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, score))


class EpisodicMemoryStore:
    def __init__(
        self,
        database: EpisodeDatabase,
        embedder: EmbeddingProvider,
        capacity: int = policy.EPISODE_CACHE_CAPACITY,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.database = database
        self.embedder = embedder
        self.capacity = capacity
        self._cache: "OrderedDict[str, Episode]" = OrderedDict()
        self._dimension: Optional[int] = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("[Memory] Already initialized")
            return
        try:
            await self.embedder.load()
        except Exception as e:
            logger.error(f"[Memory] Embedding provider failed to load: {e}", exc_info=True)
            raise ConfigurationError(f"Embedding provider failed to load: {e}") from e
        self._dimension = self.embedder.dimension
        self._warm_cache()
        self._initialized = True
        logger.info(f"[Memory] Initialized with {len(self._cache)} cached episodes")

    def close(self) -> None:
        self.database.close()
        self._cache.clear()
        self._initialized = False

    def _warm_cache(self) -> None:
        try:
            episodes = self.database.recent(self.capacity)
        except sqlite3.DatabaseError as e:
            try:
                moved = self.database.quarantine()
            except (OSError, sqlite3.Error) as qe:
                raise ConfigurationError(f"Episode database {self.database.db_path} is unusable: {qe}") from qe
            message = f"Episode database unreadable ({e}); moved to {moved}, starting empty"
            logger.warning(f"[Memory] {message}")
            warnings.warn(message, PersistenceWarning)
            return
        except (ValueError, json.JSONDecodeError) as e:
            message = f"Persisted episodes unreadable, starting with empty cache: {e}"
            logger.warning(f"[Memory] {message}")
            warnings.warn(message, PersistenceWarning)
            return

        for episode in episodes:
            if episode.embedding is None:
                continue
            if self._dimension is None:
                self._dimension = int(episode.embedding.shape[0])
            if episode.embedding.shape[0] != self._dimension:
                message = (
                    f"Episode {episode.id} has {episode.embedding.shape[0]}-dim embedding, "
                    f"store uses {self._dimension}; skipped"
                )
                logger.warning(f"[Memory] {message}")
                warnings.warn(message, PersistenceWarning)
                continue
            self._cache[episode.id] = episode

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("EpisodicMemoryStore")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store_episode(self, episode: Episode) -> str:
        self._require_initialized()
        if episode.embedding is None:
            episode.embedding = await self._embed(episode.searchable_text())
        else:
            episode.embedding = np.asarray(episode.embedding, dtype=np.float32)
            self._check_dimension(episode.embedding)

        try:
            self.database.insert(episode)
        except sqlite3.Error as e:
            logger.error(f"[Memory] Failed to persist episode {episode.id}: {e}", exc_info=True)
            raise RetrievalError(f"Failed to persist episode: {e}") from e

        self._cache[episode.id] = episode
        self._cache.move_to_end(episode.id)
        while len(self._cache) > self.capacity:
            evicted_id, _ = self._cache.popitem(last=False)
            logger.debug(f"[Memory] Evicted {evicted_id} from cache")

        logger.debug(f"[Memory] Stored episode {episode.id} ({episode.conversation_id})")
        return episode.id

    def delete_episode(self, episode_id: str) -> bool:
        self._require_initialized()
        in_cache = self._cache.pop(episode_id, None) is not None
        in_db = self.database.delete(episode_id)
        return in_cache or in_db

    def clear_episodes(self, conversation_id: Optional[str] = None) -> int:
        self._require_initialized()
        if conversation_id is None:
            self._cache.clear()
            removed = self.database.delete_all()
        else:
            for episode_id in [k for k, e in self._cache.items() if e.conversation_id == conversation_id]:
                del self._cache[episode_id]
            removed = self.database.delete_by_conversation(conversation_id)
        logger.info(f"[Memory] Cleared {removed} episodes (conversation={conversation_id or 'all'})")
        return removed

    def update_satisfaction(self, episode_id: str, satisfaction: Optional[Satisfaction]) -> bool:
        self._require_initialized()
        if satisfaction is not None:
            satisfaction = Satisfaction(satisfaction)
        updated = self.database.update_satisfaction(episode_id, satisfaction)
        cached = self._cache.get(episode_id)
        if cached is not None:
            cached.satisfaction = satisfaction
            updated = True
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        self._require_initialized()
        cached = self._cache.get(episode_id)
        if cached is not None:
            return cached
        return self.database.get(episode_id)

    async def search_episodes(
        self,
        query: str,
        top_k: int = policy.RETRIEVAL_TOP_K,
        min_similarity: float = 0.0,
        conversation_id: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> SearchResult:
        self._require_initialized()
        start = time.perf_counter()
        query_vector = await self._embed(query)

        scored = []
        for episode in self._cache.values():
            if conversation_id is not None and episode.conversation_id != conversation_id:
                continue
            if time_range is not None and not time_range.contains(episode.timestamp):
                continue
            if episode.embedding is None:
                continue
            similarity = cosine_similarity(query_vector, episode.embedding)
            if similarity >= min_similarity:
                scored.append((similarity, episode))

        return SearchResult(
            episodes=_rank(scored, top_k),
            total_found=len(scored),
            search_time_ms=(time.perf_counter() - start) * 1000,
        )

    def find_similar_episodes(self, episode_id: str, top_k: int = policy.RETRIEVAL_TOP_K) -> List[RetrievedEpisode]:
        self._require_initialized()
        target = self.get_episode(episode_id)
        if target is None or target.embedding is None:
            return []
        scored = [
            (cosine_similarity(target.embedding, episode.embedding), episode)
            for other_id, episode in self._cache.items()
            if other_id != episode_id and episode.embedding is not None
        ]
        return _rank(scored, top_k)

    def get_stats(self) -> MemoryStats:
        self._require_initialized()
        stats = self.database.stats()
        return MemoryStats(
            total_episodes=stats["total_episodes"],
            cached_episodes=len(self._cache),
            conversation_count=stats["conversation_count"],
            oldest_episode=stats["oldest_episode"],
            newest_episode=stats["newest_episode"],
            average_satisfaction=stats["average_satisfaction"],
        )

    def cached_ids(self) -> List[str]:
        """Cache order, oldest first."""
        return list(self._cache.keys())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _embed(self, text: str) -> np.ndarray:
        with timed("embed", policy.EMBEDDING_WATCHDOG_SECONDS):
            result = await self.embedder.embed(text)
        if not result.is_ok:
            logger.error(f"[Memory] Embedding failed: {result.reason}")
            raise RetrievalError(result.reason) from result.error
        vector = np.asarray(result.value, dtype=np.float32)
        self._check_dimension(vector)
        return vector

    def _check_dimension(self, vector: np.ndarray) -> None:
        if self._dimension is None:
            self._dimension = int(vector.shape[0])
        elif vector.shape[0] != self._dimension:
            raise RetrievalError(
                f"Embedding dimension {vector.shape[0]} does not match store dimension {self._dimension}"
            )


def _rank(scored, top_k: int) -> List[RetrievedEpisode]:
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [
        RetrievedEpisode(episode=episode, similarity=similarity, rank=i + 1)
        for i, (similarity, episode) in enumerate(scored[:top_k])
    ]
