"""Unit tests for data models."""

import uuid
from datetime import datetime, timezone

from memory_hybrid.models import (
    Entity,
    GraphView,
    Memory,
    RecallResult,
    Relation,
    ScoredMemory,
    as_utc,
)


class TestMemoryModel:
    """Unit tests for Memory data model."""

    def test_memory_creation_with_defaults(self):
        """Memory can be created with minimal fields."""
        memory = Memory(agent_id="test-agent", content="Test memory content")

        assert memory.agent_id == "test-agent"
        assert memory.content == "Test memory content"
        # ID should be valid UUID4 format
        uuid.UUID(memory.id)  # Raises ValueError if invalid
        assert isinstance(memory.created_at, datetime)
        assert memory.tags == []
        assert memory.importance == 0.5
        assert memory.access_count == 0
        assert memory.embedding is None

    def test_last_accessed_defaults_to_created_at(self):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        memory = Memory(agent_id="a", content="x", created_at=created)

        assert memory.last_accessed == created

    def test_naive_timestamps_are_utc(self):
        memory = Memory(agent_id="a", content="x", created_at=datetime(2024, 1, 1, 12))

        assert memory.created_at.tzinfo is not None
        assert memory.created_at == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def test_tags_keep_order_and_drop_duplicates(self):
        memory = Memory(agent_id="a", content="x", tags=["b", "a", "b", "c", "a"])

        assert memory.tags == ["b", "a", "c"]

    def test_memory_dict_for_storage(self):
        """dict_for_storage is the vector payload: no content, no embedding."""
        memory = Memory(
            agent_id="test-agent",
            content="Test",
            embedding=[0.1, 0.2],
            tags=["tag1"],
        )

        storage_dict = memory.dict_for_storage()

        assert storage_dict["id"] == memory.id
        assert storage_dict["agent_id"] == "test-agent"
        assert storage_dict["tags"] == ["tag1"]
        assert "embedding" not in storage_dict
        assert "content" not in storage_dict
        assert storage_dict["created_at"] == memory.created_at.timestamp()

    def test_memory_id_uniqueness(self):
        """Each memory gets unique ID."""
        m1 = Memory(agent_id="test", content="A")
        m2 = Memory(agent_id="test", content="B")

        assert m1.id != m2.id

    def test_memory_serialization(self):
        """Memory can serialize to/from dict."""
        original = Memory(agent_id="test-agent", content="Test content", tags=["tag1"])

        restored = Memory(**original.model_dump())

        assert restored == original


class TestGraphModels:
    def test_entity_embedding_text(self):
        entity = Entity(name="Alice", type="Person")

        assert entity.embedding_text == "Alice Person"

    def test_relation_touches_either_end(self):
        relation = Relation(source="Alice", target="Bob", relation="knows")

        assert relation.touches("Alice")
        assert relation.touches("Bob")
        assert not relation.touches("Carol")
        assert relation.key() == ("Alice", "Bob", "knows")

    def test_mermaid_rendering(self):
        view = GraphView(
            center="Alice",
            depth=1,
            nodes=[Entity(name="Alice", type="Person"), Entity(name="Space X", type="Company")],
            edges=[Relation(source="Alice", target="Space X", relation="works at")],
        )

        mermaid = view.to_mermaid()

        assert mermaid.splitlines()[0] == "graph TD"
        assert 'Alice["Alice (Person)"]' in mermaid
        assert 'Space_X["Space X (Company)"]' in mermaid
        assert "Alice -->|works at| Space_X" in mermaid

    def test_node_names(self):
        view = GraphView(nodes=[Entity(name="A"), Entity(name="B")])

        assert view.node_names() == {"A", "B"}


class TestRecallResult:
    def test_memories_in_rank_order(self):
        first = Memory(agent_id="a", content="first")
        second = Memory(agent_id="a", content="second")
        result = RecallResult(
            mode="vector",
            items=[
                ScoredMemory(memory=first, score=0.9),
                ScoredMemory(memory=second, score=0.4),
            ],
        )

        assert len(result) == 2
        assert [m.content for m in result.memories] == ["first", "second"]


def test_as_utc_converts_offsets():
    from datetime import timedelta

    plus_two = timezone(timedelta(hours=2))
    value = as_utc(datetime(2024, 1, 1, 12, tzinfo=plus_two))

    assert value == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
    assert value.utcoffset() == timedelta(0)
