"""Unit tests for the storage façade."""

import pytest
from pathlib import Path
from unittest.mock import patch

from memory_hybrid.errors import NotFoundError
from memory_hybrid.extraction import PassiveExtractor
from memory_hybrid.storage import MemoryStorage


class TestMemoryStorage:
    """Unit tests for storage layer."""

    async def test_agent_id_validation_accepts_valid(self, storage):
        """Valid agent IDs are accepted."""
        assert storage.agent_id.startswith("test-agent-")

    def test_agent_id_validation_rejects_path_traversal(self, store_config):
        """Path traversal attempts are rejected."""
        with pytest.raises(ValueError, match="Invalid agent_id"):
            MemoryStorage("../alice", store_config)

        with pytest.raises(ValueError, match="Invalid agent_id"):
            MemoryStorage("alice/../bob", store_config)

    def test_agent_id_validation_rejects_invalid_chars(self, store_config):
        """Invalid characters are rejected."""
        with pytest.raises(ValueError, match="Invalid agent_id"):
            MemoryStorage("alice/bob", store_config)

        with pytest.raises(ValueError, match="Invalid agent_id"):
            MemoryStorage("alice bob", store_config)

    async def test_storage_path_isolation(self, tmp_path, fake_embedder):
        """Each agent gets isolated storage directory and collections."""
        config = {"storage_root": str(tmp_path), "vector_location": ":memory:"}

        alice_storage = MemoryStorage("alice", config, embedder=fake_embedder)
        bob_storage = MemoryStorage("bob", config, embedder=fake_embedder)
        try:
            assert (Path(tmp_path) / "alice" / "memory.db").exists()
            assert (Path(tmp_path) / "bob" / "memory.db").exists()
            assert alice_storage.memory_vectors.collection == "memories_alice"
            assert bob_storage.entity_vectors.collection == "entities_bob"

            await alice_storage.remember("Alice's secret")
            assert alice_storage.count() == 1
            assert bob_storage.count() == 0
        finally:
            await alice_storage.close()
            await bob_storage.close()

    async def test_remember_and_get(self, storage):
        """Can store and retrieve memory by ID."""
        memory_id = await storage.remember("Test memory", tags=["test", "test"])

        # UUID4 format (36 chars with hyphens)
        assert len(memory_id) == 36
        assert memory_id.count("-") == 4

        memory = storage.get(memory_id)

        assert memory is not None
        assert memory.content == "Test memory"
        assert memory.agent_id == storage.agent_id
        assert memory.tags == ["test"]
        assert memory.access_count == 0
        assert memory.last_accessed == memory.created_at

    async def test_remember_returns_before_embedding(self, storage):
        memory_id = await storage.remember("Not yet embedded")

        assert not storage.memory_vectors.contains(memory_id)
        assert storage.keywords.contains(memory_id)

        await storage.drain()

        assert storage.memory_vectors.contains(memory_id)

    async def test_get_missing(self, storage):
        assert storage.get("00000000-0000-4000-8000-000000000000") is None

    async def test_count_and_list_recent(self, storage):
        for i in range(3):
            await storage.remember(f"Memory number {i}")

        assert storage.count() == 3
        assert [m.content for m in storage.list_recent(limit=2)] == [
            "Memory number 2",
            "Memory number 1",
        ]

    @pytest.mark.parametrize(
        "content, tags, message",
        [
            ("", None, "Content cannot be empty"),
            ("   ", None, "Content cannot be empty"),
            ("x" * 10_001, None, "Content too long"),
            ("ok", ["t"] * 51, "Too many tags"),
            ("ok", [""], "non-empty"),
            ("ok", ["x" * 101], "Tag too long"),
        ],
    )
    async def test_validation(self, storage, content, tags, message):
        with pytest.raises(ValueError, match=message):
            await storage.remember(content, tags=tags)
        assert storage.count() == 0

    async def test_memory_limit(self, unique_agent_id, store_config, fake_embedder):
        store = MemoryStorage(
            unique_agent_id, {**store_config, "max_memories_per_agent": 2}, embedder=fake_embedder
        )
        try:
            await store.remember("one")
            await store.remember("two")

            with pytest.raises(ValueError, match="Memory limit reached"):
                await store.remember("three")
            with pytest.raises(ValueError, match="Memory limit reached"):
                await store.remember_many(["three"])
        finally:
            await store.close()

    async def test_remember_many(self, storage):
        ids = await storage.remember_many(
            ["plain fact", {"content": "tagged fact", "tags": ["work"]}]
        )
        await storage.drain()

        assert len(ids) == 2
        assert storage.get(ids[1]).tags == ["work"]
        assert storage.memory_vectors.count() == 2

    async def test_remember_many_is_all_or_nothing(self, storage):
        with pytest.raises(ValueError):
            await storage.remember_many(["fine", ""])

        assert storage.count() == 0

    async def test_forget_missing(self, storage):
        with pytest.raises(NotFoundError):
            storage.forget("00000000-0000-4000-8000-000000000000")

    async def test_degrades_without_api_key(self, keyword_storage):
        assert keyword_storage.embedder is None
        assert not keyword_storage.retrieval.vector_capable
        assert isinstance(keyword_storage.extractor, PassiveExtractor)

    async def test_llm_extractor_without_key_falls_back(
        self, unique_agent_id, store_config, monkeypatch, fake_embedder
    ):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        store = MemoryStorage(
            unique_agent_id, {**store_config, "extraction_strategy": "llm"}, embedder=fake_embedder
        )
        try:
            assert isinstance(store.extractor, PassiveExtractor)
        finally:
            await store.close()

    async def test_maintenance_on_startup(self, unique_agent_id, store_config, fake_embedder):
        with patch("memory_hybrid.storage.ImportanceLifecycle.run_maintenance") as mock_run:
            store = MemoryStorage(
                unique_agent_id,
                {**store_config, "maintenance_on_startup": True},
                embedder=fake_embedder,
            )
        try:
            mock_run.assert_called_once()
        finally:
            await store.close()
