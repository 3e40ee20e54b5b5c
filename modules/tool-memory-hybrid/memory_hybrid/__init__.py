"""Hybrid memory: ranked recall over vectors and keywords, plus a knowledge graph."""

__version__ = "1.0.0"

from .config import MemorySettings, load_settings
from .embeddings import Embedder, EmbeddingGenerator
from .errors import (
    AmbiguousMatchError,
    CapabilityUnavailableError,
    EmbeddingDimensionError,
    IntegrityViolationError,
    MemoryStoreError,
    NotFoundError,
)
from .extraction import EntityExtractor, ExtractionResult
from .models import (
    Cluster,
    ClusterMember,
    Entity,
    GraphView,
    Memory,
    RecallResult,
    Relation,
    ScoredMemory,
)
from .scoring import ScoringConfig, score
from .storage import MemoryStorage

__all__ = [
    "Memory",
    "Entity",
    "Relation",
    "GraphView",
    "RecallResult",
    "ScoredMemory",
    "Cluster",
    "ClusterMember",
    "MemorySettings",
    "load_settings",
    "Embedder",
    "EmbeddingGenerator",
    "EntityExtractor",
    "ExtractionResult",
    "ScoringConfig",
    "score",
    "MemoryStorage",
    "MemoryStoreError",
    "NotFoundError",
    "AmbiguousMatchError",
    "CapabilityUnavailableError",
    "IntegrityViolationError",
    "EmbeddingDimensionError",
]
