"""Shared fixtures: deterministic embedder and temporary stores."""

import re
import uuid
import zlib

import pytest

from memory_hybrid.storage import MemoryStorage


class FakeEmbedder:
    """Hashed bag-of-words vectors; identical text gives identical vectors.

    The last dimension is a constant bias so no vector is all zeros.
    """

    def __init__(self, dimensions: int = 64):
        self.dimensions = dimensions
        self.calls: list[str] = []
        self.fail = False

    async def generate(self, content: str) -> list[float]:
        self.calls.append(content)
        if self.fail:
            raise RuntimeError("embedding backend down")
        vector = [0.0] * self.dimensions
        for token in re.findall(r"\w+", content.lower()):
            vector[zlib.crc32(token.encode()) % (self.dimensions - 1)] += 1.0
        vector[-1] = 0.5
        return vector


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def unique_agent_id():
    """Unique agent ID per test to avoid storage conflicts."""
    return f"test-agent-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def store_config(tmp_path):
    """Dates in test queries are search terms, not time ranges."""
    return {
        "storage_root": str(tmp_path),
        "vector_location": ":memory:",
        "time_phrase_parsing": False,
    }


@pytest.fixture
async def storage(unique_agent_id, store_config, fake_embedder):
    """Store with an in-memory vector index and the fake embedder."""
    store = MemoryStorage(unique_agent_id, store_config, embedder=fake_embedder)
    yield store
    await store.close()


@pytest.fixture
async def keyword_storage(unique_agent_id, store_config, monkeypatch):
    """Store with no embedder at all: keyword search only."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    store = MemoryStorage(unique_agent_id, store_config)
    yield store
    await store.close()
