"""SQLite FTS5 keyword index over memory content and tags."""

import logging
import re
import sqlite3
from datetime import datetime
from typing import Optional

from .database import Database, to_db_time

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(query: str) -> list[str]:
    """Split a query into word tokens, dropping punctuation and empties."""
    return [token for token in _NON_WORD.sub(" ", query).split() if token]


def build_match_query(query: str, phrase: bool = False) -> Optional[str]:
    """Disjunctive FTS5 query: any token matches.

    With phrase=True the tokens must appear together, in order.
    Returns None when the query has no word tokens.
    """
    tokens = tokenize(query)
    if not tokens:
        return None
    if phrase:
        return '"' + " ".join(tokens) + '"'
    return " OR ".join(f'"{token}"' for token in tokens)


class KeywordIndex:
    """Keyword index living in the record store's database.

    Sharing the connection keeps index writes inside the same transaction
    as the memory row they describe.
    """

    TABLE = "memories_fts"

    def __init__(self, db: Database):
        self.db = db
        self.available = self._ensure_table()

    def _ensure_table(self) -> bool:
        try:
            self.db.execute(
                f"CREATE VIRTUAL TABLE IF NOT EXISTS {self.TABLE} "
                "USING fts5(memory_id UNINDEXED, content, tags)"
            )
            return True
        except sqlite3.OperationalError as e:
            logger.warning("FTS5 unavailable, keyword search disabled: %s", e)
            return False

    def upsert(self, memory_id: str, content: str, tags: list[str]) -> None:
        if not self.available:
            return
        with self.db.transaction() as conn:
            conn.execute(f"DELETE FROM {self.TABLE} WHERE memory_id = ?", (memory_id,))
            conn.execute(
                f"INSERT INTO {self.TABLE} (memory_id, content, tags) VALUES (?, ?, ?)",
                (memory_id, content, " ".join(tags)),
            )

    def delete(self, memory_id: str) -> None:
        if not self.available:
            return
        self.db.execute(f"DELETE FROM {self.TABLE} WHERE memory_id = ?", (memory_id,))

    def contains(self, memory_id: str) -> bool:
        if not self.available:
            return False
        row = self.db.fetchone(
            f"SELECT 1 FROM {self.TABLE} WHERE memory_id = ?", (memory_id,)
        )
        return row is not None

    def search(
        self,
        query: str,
        limit: int = 10,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        phrase: bool = False,
    ) -> list[tuple[str, float]]:
        """Search memories by keyword.

        Returns:
            [(memory_id, rank), ...] best first. rank is FTS5's bm25 value,
            which is negative; more negative means more relevant.

        Raises:
            sqlite3.OperationalError: If FTS5 is missing or the query fails
        """
        if not self.available:
            raise sqlite3.OperationalError("FTS5 keyword index is not available")

        match = build_match_query(query, phrase=phrase)
        if match is None:
            return []

        t = self.TABLE
        sql = (
            f"SELECT {t}.memory_id AS memory_id, {t}.rank AS rank FROM {t} "
            f"JOIN memories m ON m.id = {t}.memory_id "
            f"WHERE {t} MATCH ?"
        )
        params: list = [match]
        if since is not None:
            sql += " AND m.created_at >= ?"
            params.append(to_db_time(since))
        if until is not None:
            sql += " AND m.created_at <= ?"
            params.append(to_db_time(until))
        sql += f" ORDER BY {t}.rank LIMIT ?"
        params.append(limit)

        return [(row["memory_id"], row["rank"]) for row in self.db.fetchall(sql, params)]
