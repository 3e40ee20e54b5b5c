"""Unit tests for settings loading."""

import pytest
from pydantic import ValidationError

from memory_hybrid.config import MemorySettings, load_settings


class TestMemorySettings:
    def test_defaults(self, monkeypatch):
        for key in (
            "MEMORY_HALF_LIFE_WEEKS",
            "MEMORY_SEMANTIC_WEIGHT",
            "MEMORY_EXTRACTION_STRATEGY",
        ):
            monkeypatch.delenv(key, raising=False)

        settings = MemorySettings()

        assert settings.half_life_weeks == 4.0
        assert settings.consolidation_factor == 1.0
        assert settings.semantic_weight == 0.7
        assert settings.tag_match_boost == 0.15
        assert settings.embedding_model == "text-embedding-3-small"
        assert settings.extraction_strategies == ["passive"]
        assert settings.time_phrase_parsing is True
        assert settings.context_window_tokens == 2500
        assert settings.context_max_entities == 10
        assert settings.context_max_memories == 10

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MEMORY_HALF_LIFE_WEEKS", "8")
        monkeypatch.setenv("MEMORY_SEMANTIC_WEIGHT", "0.5")

        settings = MemorySettings()

        assert settings.half_life_weeks == 8.0
        assert settings.semantic_weight == 0.5

    def test_explicit_config_beats_environment(self, monkeypatch):
        monkeypatch.setenv("MEMORY_HALF_LIFE_WEEKS", "8")

        settings = load_settings({"half_life_weeks": 2, "storage_root": None})

        assert settings.half_life_weeks == 2.0
        assert settings.storage_root.endswith("memory")

    def test_unknown_keys_ignored(self):
        settings = load_settings({"agent_id": "alice"})

        assert not hasattr(settings, "agent_id")

    @pytest.mark.parametrize(
        "override",
        [
            {"half_life_weeks": 0},
            {"semantic_weight": 1.5},
            {"embedding_concurrency": 0},
            {"context_window_tokens": 0},
        ],
    )
    def test_invalid_values_rejected(self, override):
        with pytest.raises(ValidationError):
            load_settings(override)

    def test_strategy_list_normalized(self):
        settings = load_settings({"extraction_strategy": " LLM, passive ,"})

        assert settings.extraction_strategies == ["llm", "passive"]
