"""Unit tests for the Qdrant vector index wrapper."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from qdrant_client import QdrantClient

from memory_hybrid.errors import EmbeddingDimensionError
from memory_hybrid.vector_index import VectorIndex, open_client


@pytest.fixture
def client():
    qdrant = QdrantClient(location=":memory:")
    yield qdrant
    qdrant.close()


@pytest.fixture
def index(client):
    return VectorIndex(client, "memories_test", dimensions=3)


def _key():
    return str(uuid.uuid4())


class TestVectorIndex:
    def test_creates_collection(self, client, index):
        names = [c.name for c in client.get_collections().collections]

        assert "memories_test" in names

    def test_nearest_orders_by_distance(self, index):
        close, far = _key(), _key()
        index.upsert(close, [1.0, 0.1, 0.0])
        index.upsert(far, [0.0, 1.0, 0.0])

        hits = index.nearest([1.0, 0.0, 0.0], k=2)

        assert [key for key, _ in hits] == [close, far]
        assert hits[0][1] == pytest.approx(1 - 1 / (1.01 ** 0.5), abs=1e-4)
        assert hits[1][1] == pytest.approx(1.0, abs=1e-4)

    def test_delete(self, index):
        key = _key()
        index.upsert(key, [1.0, 0.0, 0.0])

        index.delete(key)

        assert not index.contains(key)
        assert index.count() == 0

    def test_points_reads_every_vector(self, index):
        keys = {_key() for _ in range(5)}
        for key in keys:
            index.upsert(key, [0.0, 0.0, 1.0])

        points = index.points(batch_size=2)

        assert {key for key, _ in points} == keys
        assert all(len(vector) == 3 for _, vector in points)

    def test_created_at_filter(self, index):
        now = datetime.now(timezone.utc)
        old, new = _key(), _key()
        index.upsert(old, [1.0, 0.0, 0.0], {"created_at": (now - timedelta(days=10)).timestamp()})
        index.upsert(new, [1.0, 0.0, 0.0], {"created_at": now.timestamp()})

        recent = index.nearest([1.0, 0.0, 0.0], k=5, since=now - timedelta(days=1))
        older = index.nearest([1.0, 0.0, 0.0], k=5, until=now - timedelta(days=1))

        assert [key for key, _ in recent] == [new]
        assert [key for key, _ in older] == [old]

    def test_wrong_vector_size(self, index):
        with pytest.raises(EmbeddingDimensionError):
            index.upsert(_key(), [1.0, 0.0])
        with pytest.raises(EmbeddingDimensionError):
            index.nearest([1.0], k=1)

    def test_existing_collection_with_other_size(self, client, index):
        with pytest.raises(EmbeddingDimensionError) as exc_info:
            VectorIndex(client, "memories_test", dimensions=5)

        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 5


def test_open_client_in_memory(tmp_path):
    client = open_client(":memory:", tmp_path)

    assert client is not None
    client.close()
