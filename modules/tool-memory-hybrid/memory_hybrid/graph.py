"""Knowledge graph: entities, observations and typed relations.

Relations name their endpoints rather than pointing at entity ids, so
every rename and delete rewrites or removes the relation rows in the
same transaction as the entity row.
"""

import json
import logging
import sqlite3
from typing import Optional

from .background import BackgroundTasks
from .database import Database, placeholders, to_db_time
from .embeddings import Embedder
from .errors import EmbeddingDimensionError, IntegrityViolationError, NotFoundError
from .matching import NameMatcher
from .models import Entity, GraphView, Relation, unique_ordered, utc_now
from .records import MemoryRecords
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

MAX_DEPTH = 3


def _legacy_observations(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(v) for v in values] if isinstance(values, list) else []


def _clean(value: str, what: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{what} cannot be empty")
    return value


class KnowledgeGraph:
    """Entity/relation store with fuzzy dedup and bounded traversal.

    Design decisions:
    - Names are resolved exactly first, fuzzily second (NameMatcher)
    - Relation stubs are created on exact name only, type "Unknown"
    - Entity embeddings (name + type) are written in the background
    """

    def __init__(
        self,
        db: Database,
        records: MemoryRecords,
        tasks: BackgroundTasks,
        matcher: Optional[NameMatcher] = None,
        vectors: Optional[VectorIndex] = None,
        embedder: Optional[Embedder] = None,
        overview_limit: int = 50,
        overview_edge_limit: int = 100,
        related_memories: int = 5,
    ):
        self.db = db
        self.records = records
        self.tasks = tasks
        self.matcher = matcher or NameMatcher()
        self.vectors = vectors
        self.embedder = embedder
        self.overview_limit = overview_limit
        self.overview_edge_limit = overview_edge_limit
        self.related_memories = related_memories

    # ------------------------------------------------------------------
    # Lookup

    def entity_names(self) -> list[str]:
        return [row["name"] for row in self.db.fetchall("SELECT name FROM entities")]

    def _load_entities(self, where: str, params=(), suffix: str = "") -> list[Entity]:
        rows = self.db.fetchall(f"SELECT * FROM entities {where} {suffix}", params)
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        children: dict[str, list[str]] = {}
        for obs in self.db.fetchall(
            f"SELECT entity_id, content FROM entity_observations "
            f"WHERE entity_id IN ({placeholders(ids)}) ORDER BY id",
            ids,
        ):
            children.setdefault(obs["entity_id"], []).append(obs["content"])

        return [
            Entity(
                id=row["id"],
                name=row["name"],
                type=row["type"] or "Unknown",
                observations=unique_ordered(
                    _legacy_observations(row["observations"]) + children.get(row["id"], [])
                ),
                importance=row["importance"] if row["importance"] is not None else 0.5,
            )
            for row in rows
        ]

    def get_entity(self, name: str) -> Optional[Entity]:
        """Entity with exactly this name, or None."""
        entities = self._load_entities("WHERE name = ?", (name,))
        return entities[0] if entities else None

    def entities_by_id(self, ids: list[str]) -> dict[str, Entity]:
        if not ids:
            return {}
        return {
            entity.id: entity
            for entity in self._load_entities(f"WHERE id IN ({placeholders(ids)})", ids)
        }

    def resolve_name(self, name_or_id: str) -> Optional[str]:
        """Exact name, then entity id, then closest fuzzy name.

        Raises:
            AmbiguousMatchError: If several names tie for the closest match
        """
        row = self.db.fetchone(
            "SELECT name FROM entities WHERE name = ? OR id = ? "
            "ORDER BY name = ? DESC LIMIT 1",
            (name_or_id, name_or_id, name_or_id),
        )
        if row:
            return row["name"]
        return self.matcher.resolve(name_or_id, self.entity_names())

    # ------------------------------------------------------------------
    # Entities

    def _add_observations(self, conn: sqlite3.Connection, entity_id: str, observations) -> int:
        existing = {
            row["content"]
            for row in conn.execute(
                "SELECT content FROM entity_observations WHERE entity_id = ?", (entity_id,)
            )
        }
        row = conn.execute(
            "SELECT observations FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        existing.update(_legacy_observations(row["observations"] if row else None))

        now = to_db_time(utc_now())
        added = 0
        for observation in unique_ordered([o.strip() for o in observations if o and o.strip()]):
            if observation in existing:
                continue
            conn.execute(
                "INSERT INTO entity_observations (entity_id, content, created_at) VALUES (?, ?, ?)",
                (entity_id, observation, now),
            )
            added += 1
        return added

    def _insert_entity(
        self, conn: sqlite3.Connection, name: str, entity_type: str, importance: float = 0.5
    ) -> str:
        entity = Entity(name=name, type=entity_type, importance=importance)
        conn.execute(
            "INSERT INTO entities (id, name, type, observations, importance) "
            "VALUES (?, ?, ?, '[]', ?)",
            (entity.id, entity.name, entity.type, entity.importance),
        )
        return entity.id

    def create_entity(
        self,
        name: str,
        entity_type: str = "Unknown",
        observations: Optional[list[str]] = None,
        importance: float = 0.5,
    ) -> str:
        """Create an entity, or merge into a near-identical existing one.

        importance only seeds a newly inserted entity; a merge keeps the
        existing value.

        Returns:
            Id of the new or matched entity

        Raises:
            ValueError: If name is empty
            AmbiguousMatchError: If the name is equally close to several entities
        """
        name = _clean(name, "Entity name")
        entity_type = (entity_type or "").strip() or "Unknown"
        observations = observations or []

        with self.db.transaction() as conn:
            match = self.matcher.resolve(name, self.entity_names())
            if match is not None:
                entity_id = conn.execute(
                    "SELECT id FROM entities WHERE name = ?", (match,)
                ).fetchone()["id"]
                self._add_observations(conn, entity_id, observations)
                if match != name:
                    logger.debug("Entity '%s' merged into '%s'", name, match)
                return entity_id

            entity_id = self._insert_entity(conn, name, entity_type, importance)
            self._add_observations(conn, entity_id, observations)

        self._schedule_embedding(entity_id)
        return entity_id

    def update_entity(
        self,
        current_name: str,
        new_name: Optional[str] = None,
        new_type: Optional[str] = None,
    ) -> Entity:
        """Rename and/or retype an entity, rewriting every relation naming it.

        Raises:
            NotFoundError: If no entity is named current_name
            IntegrityViolationError: If new_name belongs to another entity
        """
        new_name = new_name.strip() if new_name else None
        new_type = new_type.strip() if new_type else None

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id, name, type FROM entities WHERE name = ?", (current_name,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Entity not found: {current_name}")

            name = new_name or row["name"]
            entity_type = new_type or row["type"]
            if name == row["name"] and entity_type == row["type"]:
                return self.get_entity(name)

            if name != row["name"]:
                clash = conn.execute(
                    "SELECT 1 FROM entities WHERE name = ? AND id != ?", (name, row["id"])
                ).fetchone()
                if clash:
                    raise IntegrityViolationError(f"Entity '{name}' already exists")

            try:
                conn.execute(
                    "UPDATE entities SET name = ?, type = ? WHERE id = ?",
                    (name, entity_type, row["id"]),
                )
                conn.execute(
                    "UPDATE relations SET source = ? WHERE source = ?", (name, current_name)
                )
                conn.execute(
                    "UPDATE relations SET target = ? WHERE target = ?", (name, current_name)
                )
            except sqlite3.IntegrityError as e:
                raise IntegrityViolationError(f"Cannot rename '{current_name}': {e}") from e

        # The embedding queued for the old name or type is stale
        self.tasks.cancel(row["id"])
        self._schedule_embedding(row["id"])
        return self.get_entity(name)

    def delete_entity(self, name: str) -> int:
        """Delete an entity with its observations, relations and vector.

        Returns:
            Number of relations removed

        Raises:
            NotFoundError: If no entity has this name
        """
        with self.db.transaction() as conn:
            row = conn.execute("SELECT id FROM entities WHERE name = ?", (name,)).fetchone()
            if row is None:
                raise NotFoundError(f"Entity not found: {name}")
            entity_id = row["id"]

            self.tasks.cancel(entity_id)
            conn.execute("DELETE FROM entity_observations WHERE entity_id = ?", (entity_id,))
            removed = conn.execute(
                "DELETE FROM relations WHERE source = ? OR target = ?", (name, name)
            ).rowcount
            if self.vectors is not None:
                self.vectors.delete(entity_id)
            conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))

        logger.debug("Deleted entity '%s' and %d relations", name, removed)
        return removed

    def delete_observations(self, name: str, observations: list[str]) -> int:
        """Remove observations from both the child table and the legacy list.

        Returns:
            Number of observations removed

        Raises:
            NotFoundError: If no entity has this name
        """
        targets = set(observations)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id, observations FROM entities WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Entity not found: {name}")
            if not targets:
                return 0

            removed = conn.execute(
                f"DELETE FROM entity_observations WHERE entity_id = ? "
                f"AND content IN ({placeholders(targets)})",
                [row["id"], *targets],
            ).rowcount

            legacy = _legacy_observations(row["observations"])
            kept = [o for o in legacy if o not in targets]
            if len(kept) != len(legacy):
                conn.execute(
                    "UPDATE entities SET observations = ? WHERE id = ?",
                    (json.dumps(kept), row["id"]),
                )
                removed += len(legacy) - len(kept)
        return removed

    # ------------------------------------------------------------------
    # Relations

    def create_relation(self, source: str, target: str, relation: str) -> bool:
        """Create a relation, adding "Unknown" stub entities for missing names.

        Returns:
            True if created, False if the relation already existed
        """
        source = _clean(source, "Relation source")
        target = _clean(target, "Relation target")
        relation = _clean(relation, "Relation type")

        stubs = []
        with self.db.transaction() as conn:
            for name in unique_ordered([source, target]):
                exists = conn.execute(
                    "SELECT 1 FROM entities WHERE name = ?", (name,)
                ).fetchone()
                if not exists:
                    stubs.append(self._insert_entity(conn, name, "Unknown"))
            created = conn.execute(
                "INSERT OR IGNORE INTO relations (source, target, relation, created_at) "
                "VALUES (?, ?, ?, ?)",
                (source, target, relation, to_db_time(utc_now())),
            ).rowcount == 1

        for entity_id in stubs:
            self._schedule_embedding(entity_id)
        return created

    def delete_relation(self, source: str, target: str, relation: str) -> None:
        """Raises NotFoundError if the relation does not exist."""
        cursor = self.db.execute(
            "DELETE FROM relations WHERE source = ? AND target = ? AND relation = ?",
            (source, target, relation),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Relation not found: {source} -[{relation}]-> {target}")

    def relations_touching(self, name: str) -> list[Relation]:
        rows = self.db.fetchall(
            "SELECT source, target, relation FROM relations WHERE source = ? OR target = ?",
            (name, name),
        )
        return [Relation(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Reads

    def _reachable(self, center: str, depth: int) -> set[str]:
        """Names within depth hops of center, relations taken as undirected."""
        reachable = {center}
        frontier = {center}
        for _ in range(depth):
            if not frontier:
                break
            names = list(frontier)
            rows = self.db.fetchall(
                f"SELECT source, target FROM relations "
                f"WHERE source IN ({placeholders(names)}) OR target IN ({placeholders(names)})",
                names + names,
            )
            frontier = set()
            for row in rows:
                for name in (row["source"], row["target"]):
                    if name not in reachable:
                        frontier.add(name)
            reachable |= frontier
        return reachable

    def _edges_within(self, names: list[str], limit: Optional[int] = None) -> list[Relation]:
        if not names:
            return []
        sql = (
            f"SELECT source, target, relation FROM relations "
            f"WHERE source IN ({placeholders(names)}) AND target IN ({placeholders(names)}) "
            "ORDER BY source, target, relation"
        )
        params: list = names + names
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Relation(**dict(row)) for row in self.db.fetchall(sql, params)]

    def read_graph(self, center: Optional[str] = None, depth: int = 1) -> GraphView:
        """Subgraph around center, or an importance-ranked overview.

        depth is clamped to 1..3. Every relation with both endpoints inside
        the reachable set is returned, including lateral ones.

        Raises:
            NotFoundError: If center matches no entity
            AmbiguousMatchError: If center is equally close to several entities
        """
        if center is None:
            nodes = self.top_entities(self.overview_limit)
            edges = self._edges_within(
                [node.name for node in nodes], limit=self.overview_edge_limit
            )
            return GraphView(nodes=nodes, edges=edges)

        depth = max(1, min(MAX_DEPTH, depth or 1))
        name = self.resolve_name(center)
        if name is None:
            raise NotFoundError(f"Entity not found: {center}")

        names = sorted(self._reachable(name, depth))
        nodes = self._load_entities(
            f"WHERE name IN ({placeholders(names)})",
            [*names, name],
            suffix="ORDER BY name = ? DESC, importance DESC, name",
        )
        return GraphView(
            center=name,
            depth=depth,
            nodes=nodes,
            edges=self._edges_within(names),
            related_memories=self.records.mentioning(name, limit=self.related_memories)
            if self.related_memories
            else [],
        )

    def top_entities(self, limit: int, types: Optional[list[str]] = None) -> list[Entity]:
        """Most important entities, optionally only of the given types."""
        if types:
            return self._load_entities(
                f"WHERE type IN ({placeholders(types)})",
                [*types, limit],
                suffix="ORDER BY importance DESC, name LIMIT ?",
            )
        return self._load_entities(
            "", (limit,), suffix="ORDER BY importance DESC, name LIMIT ?"
        )

    def entities_mentioned_in(self, text: str, limit: int) -> list[Entity]:
        """Entities whose name appears verbatim in text."""
        names = [name for name in self.entity_names() if name in text][:limit]
        if not names:
            return []
        return self._load_entities(
            f"WHERE name IN ({placeholders(names)})", names, suffix="ORDER BY name"
        )

    def prominent_relations(self, limit: int) -> list[Relation]:
        """Relations between the most important endpoints, newest first on ties."""
        rows = self.db.fetchall(
            "SELECT r.source, r.target, r.relation FROM relations r "
            "LEFT JOIN entities s ON s.name = r.source "
            "LEFT JOIN entities t ON t.name = r.target "
            "ORDER BY COALESCE(s.importance, 0) + COALESCE(t.importance, 0) DESC, "
            "r.created_at DESC LIMIT ?",
            (limit,),
        )
        return [Relation(**dict(row)) for row in rows]

    async def find_entities(self, query: str, limit: int = 5) -> list[Entity]:
        """Entities closest in meaning to query; name substring match without vectors."""
        query = _clean(query, "Query")
        if self.vectors is not None and self.embedder is not None:
            try:
                vector = await self.embedder.generate(query)
                hits = self.vectors.nearest(vector, limit)
            except EmbeddingDimensionError:
                raise
            except Exception as e:
                logger.warning("Entity vector search failed, using name match: %s", e)
            else:
                if hits:
                    ids = [key for key, _distance in hits]
                    found = self.entities_by_id(ids)
                    return [found[key] for key in ids if key in found]

        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return self._load_entities(
            "WHERE name LIKE ? ESCAPE '\\'",
            (f"%{escaped}%", limit),
            suffix="ORDER BY importance DESC, name LIMIT ?",
        )

    # ------------------------------------------------------------------
    # Embeddings

    def _schedule_embedding(self, entity_id: str) -> None:
        if self.vectors is None or self.embedder is None:
            return
        self.tasks.submit(self._embed_entity(entity_id), key=entity_id, label="entity embedding")

    async def _embed_entity(self, entity_id: str) -> None:
        entities = self._load_entities("WHERE id = ?", (entity_id,))
        if not entities:
            return
        entity = entities[0]
        vector = await self.embedder.generate(entity.embedding_text)

        # Deleted or renamed while the embedding was in flight
        row = self.db.fetchone("SELECT name, type FROM entities WHERE id = ?", (entity_id,))
        if row is None or (row["name"], row["type"]) != (entity.name, entity.type):
            return
        self.vectors.upsert(entity_id, vector, {"name": entity.name, "type": entity.type})
