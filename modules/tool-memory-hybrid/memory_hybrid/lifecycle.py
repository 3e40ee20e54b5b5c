"""Importance lifecycle: recall growth and periodic maintenance.

Three independent formulas touch importance:

- ranking decay (scoring.py): computed while ranking, never persisted
- recall growth: written for every memory a recall returns
- maintenance: rewrites every memory when run_maintenance() is triggered

Whichever of recall growth and maintenance ran last decides the stored
value; they do not compose.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .database import Database, from_db_time, placeholders, to_db_time
from .models import MaintenanceReport, as_utc, utc_now
from .records import parse_tags

logger = logging.getLogger(__name__)

IMMUNE_TAGS = frozenset({"core", "identity", "value", "principle"})

RECALL_BASE = 0.5
RECALL_SATURATION = 20  # accesses at which recall growth reaches 1.0

MAINTENANCE_START = 0.1
MAINTENANCE_DECAY_PER_MONTH = 0.05
MAINTENANCE_MAX_BOOST = 0.9
MAINTENANCE_FLOOR = 0.01
IMMUNE_THRESHOLD = 0.9
_MONTH = timedelta(days=30.44)


def recall_importance(access_count: int) -> float:
    """0.5 + 0.5 * ln(n + 1) / ln(21), capped at 1.0 from 20 accesses on."""
    growth = math.log(access_count + 1) / math.log(RECALL_SATURATION + 1)
    return min(1.0, RECALL_BASE + RECALL_BASE * growth)


def is_immune(tags: Iterable[str]) -> bool:
    return any(tag.lower() in IMMUNE_TAGS for tag in tags)


def maintenance_importance(
    created_at: datetime, access_count: int, now: Optional[datetime] = None
) -> float:
    """Age-based decay softened by use, plus a logarithmic access boost."""
    now = as_utc(now) if now is not None else utc_now()
    months = abs(now - as_utc(created_at)) / _MONTH
    resilience = math.log2(access_count + 2)
    decay = (months * MAINTENANCE_DECAY_PER_MONTH) / resilience
    boost = min(
        MAINTENANCE_MAX_BOOST,
        (math.log2(access_count + 1) / math.log2(RECALL_SATURATION + 1))
        * MAINTENANCE_MAX_BOOST,
    )
    return max(MAINTENANCE_FLOOR, min(1.0, MAINTENANCE_START + boost - decay))


class ImportanceLifecycle:
    """Persists recall feedback and runs maintenance passes."""

    def __init__(self, db: Database):
        self.db = db

    def record_recall(self, memory_ids: list[str], now: Optional[datetime] = None) -> None:
        """Bump access stats and rewrite importance for recalled memories.

        One transaction: access_count and importance never disagree.
        """
        if not memory_ids:
            return
        now = now or utc_now()
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE memories SET last_accessed = ?, access_count = access_count + 1 "
                f"WHERE id IN ({placeholders(memory_ids)})",
                [to_db_time(now), *memory_ids],
            )
            rows = conn.execute(
                f"SELECT id, access_count FROM memories WHERE id IN ({placeholders(memory_ids)})",
                memory_ids,
            ).fetchall()
            for row in rows:
                conn.execute(
                    "UPDATE memories SET importance = ? WHERE id = ?",
                    (recall_importance(row["access_count"]), row["id"]),
                )

    def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """Recompute importance for every stored memory."""
        now = now or utc_now()
        report = MaintenanceReport()

        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT id, created_at, access_count, tags, importance FROM memories"
            ).fetchall()
            for row in rows:
                report.processed += 1
                tags = parse_tags(row["tags"])
                current = row["importance"] if row["importance"] is not None else 0.5

                if is_immune(tags):
                    report.immune += 1
                    if current < IMMUNE_THRESHOLD:
                        conn.execute(
                            "UPDATE memories SET importance = 1.0 WHERE id = ?", (row["id"],)
                        )
                        report.updated += 1
                    continue

                importance = maintenance_importance(
                    from_db_time(row["created_at"]), row["access_count"] or 0, now
                )
                if abs(importance - current) > 0.001:
                    conn.execute(
                        "UPDATE memories SET importance = ? WHERE id = ?",
                        (importance, row["id"]),
                    )
                    report.updated += 1

        logger.info(
            "Maintenance complete: processed=%d updated=%d immune=%d",
            report.processed,
            report.updated,
            report.immune,
        )
        return report
