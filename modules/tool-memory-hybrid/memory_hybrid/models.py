"""Data models for hybrid memory."""

from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

SearchMode = Literal["vector", "fts-fallback", "fts-hybrid", "fts-only"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def unique_ordered(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class Memory(BaseModel):
    """A stored fact with decay/access metadata.

    Design decisions:
    - id: Auto-generated UUID4 (Qdrant requires valid UUIDs)
    - agent_id: For namespace isolation
    - tags: Ordered set, insertion order preserved
    - last_accessed: Defaults to created_at
    - embedding: Lives in the vector index; only populated when a caller
      attaches one explicitly (records loaded from SQLite leave it None)
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    content: str
    tags: list[str] = []
    importance: float = 0.5
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: Optional[datetime] = None
    access_count: int = Field(default=0, ge=0)
    embedding: Optional[list[float]] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        return unique_ordered(tags)

    @field_validator("created_at", "last_accessed")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _default_last_accessed(self) -> "Memory":
        if self.last_accessed is None:
            self.last_accessed = self.created_at
        return self

    def dict_for_storage(self) -> dict:
        """Return the vector-index payload (no content, no embedding).

        created_at is stored as epoch seconds so the index can range-filter.
        """
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "created_at": self.created_at.timestamp(),
            "tags": self.tags,
        }


class Entity(BaseModel):
    """A named node in the knowledge graph."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    type: str = "Unknown"
    observations: list[str] = []
    importance: float = 0.5

    @property
    def embedding_text(self) -> str:
        return f"{self.name} {self.type}"


class Relation(BaseModel):
    """Directed, typed edge between two entities, by name."""

    source: str
    target: str
    relation: str

    def key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.relation)

    def touches(self, name: str) -> bool:
        return self.source == name or self.target == name


class ScoredMemory(BaseModel):
    """A recall hit: the memory plus the score it was ranked by."""

    memory: Memory
    score: float
    distance: Optional[float] = None
    tag_boosted: bool = False


class RecallResult(BaseModel):
    """Ordered recall hits and the retrieval path that produced them.

    query, since and until are what was actually searched: a time phrase
    found in the query is stripped from it and becomes the range.
    """

    mode: SearchMode
    items: list[ScoredMemory] = []
    query: str = ""
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    @property
    def memories(self) -> list[Memory]:
        return [item.memory for item in self.items]

    def __len__(self) -> int:
        return len(self.items)


class GraphView(BaseModel):
    """Subgraph returned by read_graph."""

    center: Optional[str] = None
    depth: int = 0
    nodes: list[Entity] = []
    edges: list[Relation] = []
    related_memories: list[Memory] = []

    def node_names(self) -> set[str]:
        return {node.name for node in self.nodes}

    def to_mermaid(self) -> str:
        """Render the edges as a Mermaid flowchart."""

        def safe_id(name: str) -> str:
            return "".join(c if c.isalnum() else "_" for c in name)

        def safe_label(name: str) -> str:
            return name.replace('"', "'")

        types = {node.name: node.type for node in self.nodes}
        lines = ["graph TD"]
        seen: list[str] = []
        for edge in self.edges:
            for name in (edge.source, edge.target):
                if name not in seen:
                    seen.append(name)
        for name in seen:
            lines.append(
                f'  {safe_id(name)}["{safe_label(name)} ({types.get(name, "Unknown")})"]'
            )
        for edge in self.edges:
            lines.append(
                f"  {safe_id(edge.source)} -->|{safe_label(edge.relation)}| {safe_id(edge.target)}"
            )
        return "\n".join(lines)


class MaintenanceReport(BaseModel):
    """Outcome of one periodic maintenance pass."""

    processed: int = 0
    updated: int = 0
    immune: int = 0


class ClusterMember(BaseModel):
    id: str
    kind: Literal["memory", "entity"]
    text: str


class Cluster(BaseModel):
    """One topic found by clustering embeddings."""

    id: int
    label: str
    size: int
    examples: list[str] = []
    members: list[ClusterMember] = []
