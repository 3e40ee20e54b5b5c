"""Runtime configuration for hybrid memory."""

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MemorySettings(BaseSettings):
    """Settings loaded from explicit overrides, then MEMORY_* env vars.

    Design decisions:
    - Scoring knobs (half life, consolidation, semantic weight, tag boost)
      are plain settings so they can be tuned without code change
    - embedding_concurrency bounds background embedding/extraction work
    - vector_location=":memory:" runs the vector index in-process only
    - context_window_tokens caps current_context() at roughly 4 chars per token
    """

    model_config = SettingsConfigDict(env_prefix="MEMORY_", extra="ignore")

    storage_root: str = Field(
        default_factory=lambda: os.path.expanduser("~/.amplifier/memory")
    )
    db_path: Optional[str] = None
    vector_location: Optional[str] = None

    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, gt=0)
    max_memories_per_agent: int = Field(default=10000, gt=0)

    half_life_weeks: float = Field(default=4.0, gt=0)
    consolidation_factor: float = Field(default=1.0, ge=0)
    semantic_weight: float = Field(default=0.7, ge=0, le=1)
    tag_match_boost: float = 0.15

    embedding_concurrency: int = Field(default=5, ge=1)

    extraction_strategy: str = "passive"
    extraction_model: str = "gpt-4o-mini"

    fuzzy_max_distance: int = Field(default=2, ge=0)
    fuzzy_min_length: int = Field(default=3, ge=1)

    graph_overview_limit: int = Field(default=50, gt=0)
    graph_overview_edge_limit: int = Field(default=100, gt=0)
    graph_related_memories: int = Field(default=5, ge=0)

    time_phrase_parsing: bool = True

    context_window_tokens: int = Field(default=2500, gt=0)
    context_max_entities: int = Field(default=10, ge=0)
    context_max_memories: int = Field(default=10, ge=0)

    maintenance_on_startup: bool = False

    @field_validator("extraction_strategy")
    @classmethod
    def _normalize_strategy(cls, value: str) -> str:
        return ",".join(
            part.strip().lower() for part in value.split(",") if part.strip()
        ) or "passive"

    @property
    def extraction_strategies(self) -> list[str]:
        return self.extraction_strategy.split(",")


def load_settings(config: Optional[dict] = None) -> MemorySettings:
    """Build settings from a config dict; unset keys fall back to env/defaults."""
    config = {k: v for k, v in (config or {}).items() if v is not None}
    return MemorySettings(**config)
