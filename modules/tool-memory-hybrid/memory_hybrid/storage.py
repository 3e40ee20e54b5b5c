"""Hybrid memory storage with agent isolation."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .background import BackgroundTasks
from .clustering import MemoryClusterer
from .config import MemorySettings, load_settings
from .context import ContextBuilder
from .database import Database
from .embeddings import Embedder, EmbeddingGenerator
from .errors import (
    AmbiguousMatchError,
    CapabilityUnavailableError,
    EmbeddingDimensionError,
    NotFoundError,
)
from .extraction import EntityExtractor, ExtractionResult, PassiveExtractor, create_extractor
from .graph import KnowledgeGraph
from .keyword_index import KeywordIndex
from .lifecycle import ImportanceLifecycle
from .matching import NameMatcher
from .models import Cluster, Entity, GraphView, MaintenanceReport, Memory, RecallResult
from .records import MemoryRecords
from .retrieval import RetrievalController
from .scoring import ScoringConfig
from .vector_index import VectorIndex, open_client

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000
MAX_TAGS = 50
MAX_TAG_LENGTH = 100

Fact = Union[str, dict]


class MemoryStorage:
    """Memory store for one agent: records, indexes, graph and lifecycle.

    Design decisions:
    - SQLite holds every record; FTS5 in the same file is the keyword index
    - Qdrant embedded mode holds memory and entity vectors
    - remember() returns before the embedding is written; the vector and the
      extraction pass land later, bounded by embedding_concurrency
    - A missing embedder or vector index degrades recall to keyword search
    - Agent ID validation prevents path traversal
    """

    AGENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

    def __init__(
        self,
        agent_id: str,
        config: Optional[dict] = None,
        embedder: Optional[Embedder] = None,
        extractor: Optional[EntityExtractor] = None,
    ):
        """Initialize storage for specific agent.

        Args:
            agent_id: Agent identity for namespace isolation
            config: Optional overrides for MemorySettings fields
                (storage_root, embedding_model, max_memories_per_agent, ...)
            embedder: Embedding backend; built from settings when omitted
            extractor: Entity extractor; built from settings when omitted

        Raises:
            ValueError: If agent_id is invalid (path traversal attempt)
            EmbeddingDimensionError: If stored vectors have another dimension
        """
        # Validate agent_id for security
        if not self.AGENT_ID_PATTERN.match(agent_id):
            raise ValueError(
                f"Invalid agent_id: {agent_id}. "
                "Only alphanumeric, underscore, and hyphen allowed."
            )

        self.agent_id = agent_id
        self.settings: MemorySettings = load_settings(config)

        # Storage paths
        self.storage_path = Path(self.settings.storage_root) / agent_id
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.db = Database(self.settings.db_path or self.storage_path / "memory.db")
        self.keywords = KeywordIndex(self.db)
        self.records = MemoryRecords(self.db, self.keywords)

        self.embedder = embedder if embedder is not None else self._build_embedder()
        dimensions = (
            self.embedder.dimensions if self.embedder is not None
            else self.settings.embedding_dimensions
        )

        # Memory limits
        self.max_memories = self.settings.max_memories_per_agent

        # Vector collections; opened even without an embedder so deletes
        # still clean up vectors written by earlier sessions
        self.client = open_client(self.settings.vector_location, self.storage_path)
        self.memory_vectors = self._open_collection(f"memories_{agent_id}", dimensions)
        self.entity_vectors = self._open_collection(f"entities_{agent_id}", dimensions)

        self.tasks = BackgroundTasks(self.settings.embedding_concurrency)
        self.lifecycle = ImportanceLifecycle(self.db)
        self.graph = KnowledgeGraph(
            self.db,
            self.records,
            self.tasks,
            matcher=NameMatcher(
                max_distance=self.settings.fuzzy_max_distance,
                min_length=self.settings.fuzzy_min_length,
            ),
            vectors=self.entity_vectors,
            embedder=self.embedder,
            overview_limit=self.settings.graph_overview_limit,
            overview_edge_limit=self.settings.graph_overview_edge_limit,
            related_memories=self.settings.graph_related_memories,
        )
        self.retrieval = RetrievalController(
            self.records,
            self.keywords,
            self.lifecycle,
            vectors=self.memory_vectors,
            embedder=self.embedder,
            config=ScoringConfig.from_settings(self.settings),
            tag_match_boost=self.settings.tag_match_boost,
            time_phrases=self.settings.time_phrase_parsing,
        )
        self.extractor = extractor if extractor is not None else self._build_extractor()

        if self.settings.maintenance_on_startup:
            self.lifecycle.run_maintenance()

    def _build_embedder(self) -> Optional[Embedder]:
        try:
            return EmbeddingGenerator(
                model=self.settings.embedding_model,
                dimensions=self.settings.embedding_dimensions,
            )
        except ValueError as e:
            logger.warning("Embedder unavailable, using keyword search only: %s", e)
            return None

    def _build_extractor(self) -> EntityExtractor:
        try:
            return create_extractor(self.settings)
        except ValueError as e:
            logger.warning("Extractor unavailable, extraction disabled: %s", e)
            return PassiveExtractor()

    def _open_collection(self, name: str, dimensions: int) -> Optional[VectorIndex]:
        if self.client is None:
            return None
        try:
            return VectorIndex(self.client, name, dimensions)
        except EmbeddingDimensionError:
            raise
        except Exception as e:
            logger.warning("Vector collection %s unavailable: %s", name, e)
            return None

    # ------------------------------------------------------------------
    # Validation

    @staticmethod
    def _validate_content(content: str) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Content cannot be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Content too long: {len(content)} chars (max {MAX_CONTENT_LENGTH})"
            )
        return content

    @staticmethod
    def _validate_tags(tags: Optional[list[str]]) -> list[str]:
        tags = list(tags or [])
        if len(tags) > MAX_TAGS:
            raise ValueError(f"Too many tags: {len(tags)} (max {MAX_TAGS})")
        for tag in tags:
            if not isinstance(tag, str) or not tag.strip():
                raise ValueError("Tags must be non-empty strings")
            if len(tag) > MAX_TAG_LENGTH:
                raise ValueError(f"Tag too long: {len(tag)} chars (max {MAX_TAG_LENGTH})")
        return tags

    def _check_limit(self, adding: int = 1) -> None:
        current_count = self.count()
        if current_count + adding > self.max_memories:
            raise ValueError(
                f"Memory limit reached: {current_count}/{self.max_memories}. "
                "Delete old memories before adding new ones."
            )

    # ------------------------------------------------------------------
    # Memories

    async def remember(self, content: str, tags: Optional[list[str]] = None) -> str:
        """Store a memory; its embedding and extraction run in the background.

        Args:
            content: Memory text (max 10,000 chars)
            tags: Optional tags for categorization

        Returns:
            Memory ID

        Raises:
            ValueError: If content/tags are invalid or the memory limit is reached
        """
        memory = Memory(
            agent_id=self.agent_id,
            content=self._validate_content(content),
            tags=self._validate_tags(tags),
        )
        self._check_limit()
        self.records.insert(memory)
        self._schedule_indexing(memory.id)
        return memory.id

    async def remember_many(self, facts: list[Fact]) -> list[str]:
        """Store several memories in one transaction.

        Each fact is a string or a {"content": ..., "tags": [...]} dict.
        Background work for the batch shares the concurrency bound.
        """
        memories = []
        for fact in facts:
            if isinstance(fact, dict):
                content, tags = fact.get("content"), fact.get("tags")
            else:
                content, tags = fact, None
            memories.append(
                Memory(
                    agent_id=self.agent_id,
                    content=self._validate_content(content),
                    tags=self._validate_tags(tags),
                )
            )
        self._check_limit(len(memories))

        with self.db.transaction():
            for memory in memories:
                self.records.insert(memory)
        for memory in memories:
            self._schedule_indexing(memory.id)
        return [memory.id for memory in memories]

    def _schedule_indexing(self, memory_id: str) -> None:
        self.tasks.submit(self._index_memory(memory_id), key=memory_id, label="memory indexing")

    async def _index_memory(self, memory_id: str) -> None:
        memory = self.records.get(memory_id)
        if memory is None:
            return

        if self.embedder is not None and self.memory_vectors is not None:
            vector = await self.embedder.generate(memory.content)
            # Forgotten while the embedding was in flight
            if not self.records.exists(memory_id):
                return
            self.memory_vectors.upsert(memory_id, vector, memory.dict_for_storage())

        result = await self.extractor.extract(memory.content)
        if self.records.exists(memory_id):
            self._apply_extraction(memory_id, result)

    def _apply_extraction(self, memory_id: str, result: ExtractionResult) -> None:
        if result.is_empty():
            return

        importance = result.importance if result.importance is not None else 0.5
        for entity in result.entities:
            try:
                self.graph.create_entity(
                    entity.name, entity.type, entity.observations, importance=importance
                )
            except (AmbiguousMatchError, ValueError) as e:
                logger.warning("Skipping extracted entity '%s': %s", entity.name, e)
        for relation in result.relations:
            try:
                self.graph.create_relation(relation.source, relation.target, relation.relation)
            except ValueError as e:
                logger.warning("Skipping extracted relation: %s", e)

        names = result.entity_names()
        if names:
            self.records.add_tags(memory_id, names)
        if result.importance is not None:
            self.records.set_importance(memory_id, result.importance)

    async def recall(
        self,
        query: str,
        limit: int = 5,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> RecallResult:
        """Search memories by meaning, falling back to keywords.

        Args:
            query: Natural language query
            limit: Max results to return
            since: Only memories created at or after this time
            until: Only memories created at or before this time

        Returns:
            Ranked results and the search path used
        """
        return await self.retrieval.recall(query, limit=limit, since=since, until=until)

    def forget(self, memory_id: str) -> None:
        """Delete a memory with its vector and keyword entries.

        Raises:
            NotFoundError: If no memory has this id
        """
        self.tasks.cancel(memory_id)
        with self.db.transaction():
            if not self.records.delete(memory_id):
                raise NotFoundError(f"Memory not found: {memory_id}")
            if self.memory_vectors is not None:
                self.memory_vectors.delete(memory_id)

    def get(self, memory_id: str) -> Optional[Memory]:
        """Get memory by ID, or None."""
        return self.records.get(memory_id)

    def count(self) -> int:
        """Count total memories for this agent."""
        return self.records.count()

    def list_recent(self, limit: int = 10) -> list[Memory]:
        return self.records.list_recent(limit)

    def current_context(self) -> str:
        """Plain-text summary of recent memories and the most relevant entities."""
        return ContextBuilder(
            self.records,
            self.graph,
            window_tokens=self.settings.context_window_tokens,
            max_entities=self.settings.context_max_entities,
            max_memories=self.settings.context_max_memories,
        ).build()

    def cluster_memories(self, k: int = 5, seed: Optional[int] = None) -> list[Cluster]:
        """Group embedded memories and entities into at most k topics.

        Raises:
            ValueError: If k is less than 1
            CapabilityUnavailableError: If there is no vector index
        """
        if k < 1:
            raise ValueError("k must be at least 1")
        if self.memory_vectors is None:
            raise CapabilityUnavailableError("Clustering needs embeddings", tried=["vector"])
        clusterer = MemoryClusterer(
            self.memory_vectors, self.records, self.graph, entity_vectors=self.entity_vectors
        )
        return clusterer.cluster(k, seed=seed)

    # ------------------------------------------------------------------
    # Knowledge graph

    def create_entity(
        self, name: str, entity_type: str = "Unknown", observations: Optional[list[str]] = None
    ) -> str:
        return self.graph.create_entity(name, entity_type, observations)

    def update_entity(
        self, current_name: str, new_name: Optional[str] = None, new_type: Optional[str] = None
    ) -> Entity:
        return self.graph.update_entity(current_name, new_name, new_type)

    def delete_entity(self, name: str) -> int:
        return self.graph.delete_entity(name)

    def delete_observations(self, name: str, observations: list[str]) -> int:
        return self.graph.delete_observations(name, observations)

    def create_relation(self, source: str, target: str, relation: str) -> bool:
        return self.graph.create_relation(source, target, relation)

    def delete_relation(self, source: str, target: str, relation: str) -> None:
        self.graph.delete_relation(source, target, relation)

    def read_graph(self, center: Optional[str] = None, depth: int = 1) -> GraphView:
        return self.graph.read_graph(center, depth)

    async def find_entities(self, query: str, limit: int = 5) -> list[Entity]:
        return await self.graph.find_entities(query, limit)

    # ------------------------------------------------------------------
    # Lifecycle

    def run_maintenance(self) -> MaintenanceReport:
        return self.lifecycle.run_maintenance()

    async def drain(self) -> None:
        """Wait for outstanding embedding and extraction work."""
        await self.tasks.drain()

    async def close(self) -> None:
        await self.tasks.drain()
        if self.client is not None:
            self.client.close()
        self.db.close()
