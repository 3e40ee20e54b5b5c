"""Qdrant-backed nearest-neighbour index."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    PointIdsList,
    PointStruct,
    Range,
    VectorParams,
)

from .errors import EmbeddingDimensionError
from .models import as_utc

logger = logging.getLogger(__name__)


def open_client(location: Optional[str], storage_path: Path) -> Optional[QdrantClient]:
    """Open an embedded Qdrant client, or None if it cannot be opened.

    A missing vector capability degrades recall to keyword search instead
    of failing the whole store.
    """
    try:
        if location == ":memory:":
            return QdrantClient(location=":memory:")
        db_path = location or str(storage_path / "qdrant.db")
        return QdrantClient(path=db_path)
    except Exception as e:
        logger.warning("Vector index unavailable, using keyword search only: %s", e)
        return None


class VectorIndex:
    """One cosine collection with a fixed dimension.

    Distances returned are cosine distances (1 - cosine similarity), so 0.0
    is an exact match and larger is farther.
    """

    def __init__(self, client: QdrantClient, collection: str, dimensions: int):
        self.client = client
        self.collection = collection
        self.dimensions = dimensions
        self._ensure_collection()

    def _ensure_collection(self):
        """Create collection if it doesn't exist."""
        collections = self.client.get_collections().collections
        collection_names = [c.name for c in collections]

        if self.collection not in collection_names:
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(
                    size=self.dimensions, distance=Distance.COSINE
                ),
            )
            return

        stored = self.client.get_collection(self.collection).config.params.vectors.size
        if stored != self.dimensions:
            raise EmbeddingDimensionError(stored, self.dimensions)

    def _check(self, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(vector))

    def upsert(self, key: str, vector: list[float], payload: Optional[dict] = None) -> None:
        self._check(vector)
        self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(id=key, vector=vector, payload=payload or {})],
        )

    def delete(self, key: str) -> None:
        self.client.delete(
            collection_name=self.collection,
            points_selector=PointIdsList(points=[key]),
        )

    def contains(self, key: str) -> bool:
        return bool(self.client.retrieve(collection_name=self.collection, ids=[key]))

    def count(self) -> int:
        return self.client.count(collection_name=self.collection).count

    def points(self, batch_size: int = 256) -> list[tuple[str, list[float]]]:
        """Every stored (key, vector) pair, in index order."""
        result = []
        offset = None
        while True:
            records, offset = self.client.scroll(
                collection_name=self.collection,
                limit=batch_size,
                offset=offset,
                with_payload=False,
                with_vectors=True,
            )
            result.extend((str(record.id), list(record.vector)) for record in records)
            if offset is None:
                return result

    def nearest(
        self,
        vector: list[float],
        k: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[tuple[str, float]]:
        """Return up to k (key, distance) pairs, nearest first.

        since/until filter on the created_at payload (epoch seconds).
        """
        self._check(vector)

        query_filter = None
        if since is not None or until is not None:
            query_filter = Filter(
                must=[
                    FieldCondition(
                        key="created_at",
                        range=Range(
                            gte=as_utc(since).timestamp() if since else None,
                            lte=as_utc(until).timestamp() if until else None,
                        ),
                    )
                ]
            )

        points = self.client.query_points(
            collection_name=self.collection,
            query=vector,
            limit=k,
            query_filter=query_filter,
            with_payload=False,
        ).points

        return [(str(point.id), 1.0 - point.score) for point in points]
