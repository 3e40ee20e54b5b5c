"""Memory rows in the record store, kept in sync with the keyword index."""

import json
import logging
import sqlite3
from typing import Optional

from .database import Database, from_db_time, placeholders, to_db_time
from .keyword_index import KeywordIndex
from .models import Memory, unique_ordered

logger = logging.getLogger(__name__)


def parse_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable tags: %r", raw[:50])
        return []
    return [str(tag) for tag in tags] if isinstance(tags, list) else []


def row_to_memory(row: sqlite3.Row) -> Memory:
    created_at = from_db_time(row["created_at"])
    return Memory(
        id=row["id"],
        agent_id=row["agent_id"],
        content=row["content"],
        tags=parse_tags(row["tags"]),
        importance=row["importance"] if row["importance"] is not None else 0.5,
        created_at=created_at,
        last_accessed=from_db_time(row["last_accessed"]) if row["last_accessed"] else created_at,
        access_count=row["access_count"] or 0,
    )


class MemoryRecords:
    """CRUD over the memories table.

    Every write that changes searchable text also updates the keyword index
    inside the same transaction, so the two never disagree.
    """

    def __init__(self, db: Database, keywords: KeywordIndex):
        self.db = db
        self.keywords = keywords

    def insert(self, memory: Memory) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO memories (id, agent_id, content, tags, importance, "
                "created_at, last_accessed, access_count) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    memory.agent_id,
                    memory.content,
                    json.dumps(memory.tags),
                    memory.importance,
                    to_db_time(memory.created_at),
                    to_db_time(memory.last_accessed),
                    memory.access_count,
                ),
            )
            self.keywords.upsert(memory.id, memory.content, memory.tags)

    def get(self, memory_id: str) -> Optional[Memory]:
        row = self.db.fetchone("SELECT * FROM memories WHERE id = ?", (memory_id,))
        return row_to_memory(row) if row else None

    def get_many(self, memory_ids: list[str]) -> dict[str, Memory]:
        if not memory_ids:
            return {}
        rows = self.db.fetchall(
            f"SELECT * FROM memories WHERE id IN ({placeholders(memory_ids)})",
            memory_ids,
        )
        return {row["id"]: row_to_memory(row) for row in rows}

    def exists(self, memory_id: str) -> bool:
        return self.db.fetchone("SELECT 1 FROM memories WHERE id = ?", (memory_id,)) is not None

    def delete(self, memory_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            self.keywords.delete(memory_id)
        return cursor.rowcount > 0

    def count(self) -> int:
        return self.db.fetchone("SELECT COUNT(*) FROM memories")[0]

    def list_recent(self, limit: int = 10) -> list[Memory]:
        rows = self.db.fetchall(
            "SELECT * FROM memories ORDER BY created_at DESC LIMIT ?", (limit,)
        )
        return [row_to_memory(row) for row in rows]

    def add_tags(self, memory_id: str, tags: list[str]) -> bool:
        """Append tags, keeping existing order and dropping duplicates."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT content, tags FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
            if row is None:
                return False
            merged = unique_ordered(parse_tags(row["tags"]) + list(tags))
            conn.execute(
                "UPDATE memories SET tags = ? WHERE id = ?", (json.dumps(merged), memory_id)
            )
            self.keywords.upsert(memory_id, row["content"], merged)
        return True

    def set_importance(self, memory_id: str, importance: float) -> bool:
        cursor = self.db.execute(
            "UPDATE memories SET importance = ? WHERE id = ?", (importance, memory_id)
        )
        return cursor.rowcount > 0

    def mentioning(self, text: str, limit: int = 5) -> list[Memory]:
        """Memories mentioning text, most important first.

        Keyword search first, literal substring match as fallback.
        """
        ids: list[str] = []
        if self.keywords.available:
            try:
                ids = [
                    mid for mid, _rank in self.keywords.search(text, limit=limit * 4, phrase=True)
                ]
            except sqlite3.OperationalError as e:
                logger.warning("Keyword lookup for %r failed: %s", text, e)

        if ids:
            rows = self.db.fetchall(
                f"SELECT * FROM memories WHERE id IN ({placeholders(ids)}) "
                "ORDER BY importance DESC LIMIT ?",
                [*ids, limit],
            )
        else:
            escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            rows = self.db.fetchall(
                "SELECT * FROM memories WHERE content LIKE ? ESCAPE '\\' "
                "ORDER BY importance DESC LIMIT ?",
                (f"%{escaped}%", limit),
            )
        return [row_to_memory(row) for row in rows]
