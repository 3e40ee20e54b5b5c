"""Topic clusters over memory and entity embeddings.

Spherical k-means: vectors are unit-normalised and assigned to the
centroid with the highest cosine similarity.
"""

import logging
from typing import Optional

import numpy as np

from .graph import KnowledgeGraph
from .models import Cluster, ClusterMember
from .records import MemoryRecords
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 15
EXAMPLES = 3
LABEL_PREVIEW = 20


def _normalise(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def kmeans(
    vectors: list[list[float]],
    k: int,
    seed: Optional[int] = None,
    max_iterations: int = MAX_ITERATIONS,
) -> tuple[np.ndarray, np.ndarray]:
    """Cluster vectors by cosine similarity.

    Centroids are seeded farthest-first from a random start point. k is
    clamped to the number of vectors.

    Returns:
        (labels, centroids): cluster index per vector, unit centroids
    """
    points = _normalise(np.asarray(vectors, dtype=float))
    k = min(k, len(points))
    rng = np.random.default_rng(seed)

    centroids = [points[rng.integers(len(points))]]
    while len(centroids) < k:
        closeness = np.max(points @ np.array(centroids).T, axis=1)
        centroids.append(points[int(np.argmin(closeness))])
    centroids = np.array(centroids)

    labels = np.full(len(points), -1)
    for _ in range(max_iterations):
        assigned = np.argmax(points @ centroids.T, axis=1)
        if np.array_equal(assigned, labels):
            break
        labels = assigned
        for index in range(k):
            members = points[labels == index]
            if len(members):
                centroids[index] = members.mean(axis=0)
        centroids = _normalise(centroids)
    return labels, centroids


class MemoryClusterer:
    """Groups memories and entities that share a vector space into topics."""

    def __init__(
        self,
        memory_vectors: VectorIndex,
        records: MemoryRecords,
        graph: KnowledgeGraph,
        entity_vectors: Optional[VectorIndex] = None,
    ):
        self.memory_vectors = memory_vectors
        self.records = records
        self.graph = graph
        self.entity_vectors = entity_vectors

    def _members(self) -> tuple[list[ClusterMember], list[list[float]]]:
        members, vectors = [], []

        memory_points = self.memory_vectors.points()
        memories = self.records.get_many([key for key, _ in memory_points])
        for key, vector in memory_points:
            memory = memories.get(key)
            if memory is None:
                continue
            members.append(ClusterMember(id=key, kind="memory", text=memory.content))
            vectors.append(vector)

        if self.entity_vectors is not None:
            entity_points = self.entity_vectors.points()
            entities = self.graph.entities_by_id([key for key, _ in entity_points])
            for key, vector in entity_points:
                entity = entities.get(key)
                if entity is None:
                    continue
                members.append(ClusterMember(id=key, kind="entity", text=entity.name))
                vectors.append(vector)

        return members, vectors

    def cluster(self, k: int, seed: Optional[int] = None) -> list[Cluster]:
        """Largest cluster first; empty clusters are dropped."""
        members, vectors = self._members()
        if not members:
            return []

        labels, centroids = kmeans(vectors, k, seed=seed)
        points = _normalise(np.asarray(vectors, dtype=float))

        clusters = []
        for index, centroid in enumerate(centroids):
            positions = np.flatnonzero(labels == index)
            if not len(positions):
                continue
            similarity = points[positions] @ centroid
            ranked = [members[i] for i in positions[np.argsort(-similarity)]]
            clusters.append(
                Cluster(
                    id=index,
                    label=f"Topic: {ranked[0].text[:LABEL_PREVIEW]}...",
                    size=len(ranked),
                    examples=[member.text for member in ranked[:EXAMPLES]],
                    members=ranked,
                )
            )

        clusters.sort(key=lambda c: c.size, reverse=True)
        logger.debug("Clustered %d items into %d topics", len(members), len(clusters))
        return clusters
