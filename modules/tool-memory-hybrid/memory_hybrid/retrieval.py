"""Recall: vector search first, keyword search as fallback, one ranking."""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from .embeddings import Embedder
from .errors import CapabilityUnavailableError, EmbeddingDimensionError
from .keyword_index import KeywordIndex
from .lifecycle import ImportanceLifecycle
from .models import Memory, RecallResult, ScoredMemory, SearchMode, utc_now
from .records import MemoryRecords
from .scoring import ScoringConfig, score
from .time_phrases import parse_time_phrase
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)


def keyword_distances(hits: list[tuple[str, float]]) -> list[tuple[str, float]]:
    """Map keyword ranks onto the [0, 1] distance scale used by score().

    The best hit in the result set gets distance 0; a hit with half its
    rank magnitude gets 0.5. If every rank is zero, all hits get 0.
    """
    if not hits:
        return []
    top = max(abs(rank) for _key, rank in hits)
    if top == 0:
        return [(key, 0.0) for key, _rank in hits]
    return [(key, 1.0 - abs(rank) / top) for key, rank in hits]


def tag_matches(tags: list[str], query: str) -> bool:
    """True if any tag appears (case-insensitively) inside the query."""
    lowered = query.lower()
    return any(tag and tag.lower() in lowered for tag in tags)


class RetrievalController:
    """Ranks memories for a query and feeds access back into importance.

    Paths, reported as RecallResult.mode:
    - vector:       vector search returned candidates
    - fts-hybrid:   vector search ran but found nothing; keyword search used
    - fts-fallback: vector search raised; keyword search used
    - fts-only:     no embedder or vector index; keyword search used

    The two searches are never merged. Tag boost applies on every path.
    """

    def __init__(
        self,
        records: MemoryRecords,
        keywords: KeywordIndex,
        lifecycle: ImportanceLifecycle,
        vectors: Optional[VectorIndex] = None,
        embedder: Optional[Embedder] = None,
        config: ScoringConfig = ScoringConfig(),
        tag_match_boost: float = 0.15,
        time_phrases: bool = True,
    ):
        self.records = records
        self.keywords = keywords
        self.lifecycle = lifecycle
        self.vectors = vectors
        self.embedder = embedder
        self.config = config
        self.tag_match_boost = tag_match_boost
        self.time_phrases = time_phrases

    @property
    def vector_capable(self) -> bool:
        return self.vectors is not None and self.embedder is not None

    def _load(self, hits: list[tuple[str, float]]) -> list[tuple[Memory, float]]:
        found = self.records.get_many([key for key, _distance in hits])
        loaded = []
        for key, distance in hits:
            memory = found.get(key)
            if memory is None:
                logger.warning("Index entry %s has no stored memory; skipping", key)
                continue
            loaded.append((memory, distance))
        return loaded

    async def _vector_candidates(
        self, query: str, limit: int, since, until
    ) -> list[tuple[Memory, float]]:
        vector = await self.embedder.generate(query)
        return self._load(self.vectors.nearest(vector, 2 * limit, since, until))

    def _keyword_candidates(
        self, query: str, limit: int, since, until
    ) -> list[tuple[Memory, float]]:
        hits = self.keywords.search(query, limit=limit, since=since, until=until)
        return self._load(keyword_distances(hits))

    async def recall(
        self,
        query: str,
        limit: int = 5,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> RecallResult:
        """Rank memories for query, best first.

        Without an explicit since/until, a date expression in the query
        ("yesterday", "last week") becomes the range and is stripped from
        the searched text. Every returned memory has its access stats and
        importance updated.

        Raises:
            ValueError: If query is empty or limit < 1
            EmbeddingDimensionError: If the query vector does not fit the index
            CapabilityUnavailableError: If neither search path can run
        """
        query = (query or "").strip()
        if not query:
            raise ValueError("Query cannot be empty")
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        now = now or utc_now()
        if self.time_phrases and since is None and until is None:
            phrase = parse_time_phrase(query, now)
            if phrase is not None:
                query, since = phrase.query, phrase.since

        mode: SearchMode
        candidates: list[tuple[Memory, float]] = []
        if not self.vector_capable:
            mode = "fts-only"
        else:
            try:
                candidates = await self._vector_candidates(query, limit, since, until)
            except EmbeddingDimensionError:
                raise
            except Exception as e:
                logger.warning("Vector search failed, falling back to keywords: %s", e)
                mode = "fts-fallback"
            else:
                mode = "vector" if candidates else "fts-hybrid"

        if mode != "vector":
            try:
                candidates = self._keyword_candidates(query, limit, since, until)
            except sqlite3.OperationalError as e:
                if mode == "fts-hybrid":
                    # Vector search worked and simply found nothing
                    logger.warning("Keyword search unavailable: %s", e)
                    mode = "vector"
                else:
                    raise CapabilityUnavailableError(
                        f"No search path available for recall: {e}",
                        tried=["vector", "keyword"],
                    ) from e
        logger.debug("Recall path %s: %d candidates", mode, len(candidates))

        items = []
        for memory, distance in candidates:
            value = score(
                memory.importance,
                memory.last_accessed,
                memory.access_count,
                distance,
                self.config,
                now,
            )
            boosted = tag_matches(memory.tags, query)
            if boosted:
                value += self.tag_match_boost
            items.append(
                ScoredMemory(memory=memory, score=value, distance=distance, tag_boosted=boosted)
            )

        items.sort(key=lambda item: item.score, reverse=True)
        items = items[:limit]

        ids = [item.memory.id for item in items]
        self.lifecycle.record_recall(ids, now)
        refreshed = self.records.get_many(ids)
        for item in items:
            item.memory = refreshed.get(item.memory.id, item.memory)

        return RecallResult(mode=mode, items=items, query=query, since=since, until=until)
