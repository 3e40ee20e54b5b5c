"""SQLite record store: connection, schema and transactions.

Holds memories, entities, entity observations and relations. Relations
reference entities by name and carry no foreign keys; the graph layer keeps
endpoints consistent itself.

Usage:
    db = Database(path)
    with db.transaction() as conn:
        conn.execute("UPDATE ...")
    # Committed on clean exit, rolled back on exception.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Union

from .models import as_utc

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    content TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    importance REAL DEFAULT 0.5,
    created_at TEXT NOT NULL,
    last_accessed TEXT,
    access_count INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0)
);
CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at);

CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    type TEXT NOT NULL DEFAULT 'Unknown',
    observations TEXT,
    importance REAL DEFAULT 0.5
);

CREATE TABLE IF NOT EXISTS entity_observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_observations_entity ON entity_observations(entity_id);

CREATE TABLE IF NOT EXISTS relations (
    source TEXT NOT NULL,
    target TEXT NOT NULL,
    relation TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (source, target, relation)
);
CREATE INDEX IF NOT EXISTS idx_relations_target ON relations(target);
"""

# Columns added after the first schema release: (table, column, ddl)
_MIGRATIONS = [
    (
        "memories",
        "agent_id",
        "ALTER TABLE memories ADD COLUMN agent_id TEXT NOT NULL DEFAULT 'default-agent'",
    ),
    ("memories", "importance", "ALTER TABLE memories ADD COLUMN importance REAL DEFAULT 0.5"),
    ("memories", "last_accessed", "ALTER TABLE memories ADD COLUMN last_accessed TEXT"),
    ("memories", "access_count", "ALTER TABLE memories ADD COLUMN access_count INTEGER DEFAULT 0"),
    ("entities", "importance", "ALTER TABLE entities ADD COLUMN importance REAL DEFAULT 0.5"),
    ("entities", "observations", "ALTER TABLE entities ADD COLUMN observations TEXT"),
]


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC text so timestamps compare correctly as strings."""
    return as_utc(value).strftime(_TIMESTAMP_FORMAT)


def from_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00").replace(" ", "T"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def placeholders(values) -> str:
    return ",".join("?" for _ in values)


class Database:
    """Single-writer SQLite connection with nested-safe transactions."""

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transaction() issues BEGIN/COMMIT explicitly
        self.conn = sqlite3.connect(
            self.path, isolation_level=None, check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA busy_timeout = 30000")
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous = NORMAL")

        self._lock = threading.RLock()
        self._depth = 0
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        for table, column, ddl in _MIGRATIONS:
            columns = {row["name"] for row in self.conn.execute(f"PRAGMA table_info({table})")}
            if column not in columns:
                logger.info("Migrating: adding '%s' to %s", column, table)
                self.conn.execute(ddl)
        self.conn.execute(
            "UPDATE memories SET last_accessed = created_at WHERE last_accessed IS NULL"
        )
        self._migrate_inline_observations()

    def _migrate_inline_observations(self) -> None:
        """Copy legacy inline observation lists into entity_observations.

        Only runs while the child table is empty; reads keep merging both
        representations, so a failed migration is not fatal.
        """
        if self.conn.execute("SELECT COUNT(*) FROM entity_observations").fetchone()[0]:
            return
        rows = self.conn.execute(
            "SELECT id, observations FROM entities "
            "WHERE observations IS NOT NULL AND observations != '[]'"
        ).fetchall()
        if not rows:
            return

        now = to_db_time(datetime.now(timezone.utc))
        migrated = 0
        with self.transaction() as conn:
            for row in rows:
                try:
                    observations = json.loads(row["observations"])
                except json.JSONDecodeError:
                    logger.warning("Skipping unparseable observations on entity %s", row["id"])
                    continue
                if not isinstance(observations, list):
                    continue
                for observation in observations:
                    conn.execute(
                        "INSERT INTO entity_observations (entity_id, content, created_at) "
                        "VALUES (?, ?, ?)",
                        (row["id"], str(observation), now),
                    )
                migrated += 1
        logger.info("Migrated observations for %d entities", migrated)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic unit of work; inner calls join the outermost transaction."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self.conn
                finally:
                    self._depth -= 1
                return

            self.conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self._depth = 0

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        with self._lock:
            return self.conn.execute(sql, params)

    def fetchall(self, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def close(self) -> None:
        with self._lock:
            self.conn.close()
