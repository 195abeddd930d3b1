"""
Nearest-neighbour lookup over memory embeddings.

Both adapters return ``(memory_id, cosine_similarity)`` pairs for active
memories only, best match first.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from sqlalchemy.exc import DBAPIError

import semantic_memory.config as config
from semantic_memory.errors import SimilaritySearchError
from semantic_memory.models import Memory, active_memory_clause
from semantic_memory.services.memory_shared import has_any_tag, logger, tag_overlap_clause


def _candidate_query(db, columns, *, tags, source, exclude_id):
    query = db.query(*columns).filter(
        active_memory_clause(),
        Memory.embedding.isnot(None),
    )
    if source:
        query = query.filter(Memory.source == source)
    if exclude_id:
        query = query.filter(Memory.id != exclude_id)
    overlap = tag_overlap_clause(tags or ())
    if overlap is not None:
        query = query.filter(overlap)
    return query


class PgVectorSimilaritySearch:
    """Cosine distance ordering served by the pgvector HNSW index."""

    name = "pgvector"

    def search(
        self,
        db,
        query_vector: Sequence[float],
        limit: int,
        *,
        tags: Optional[Sequence[str]] = None,
        source: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> list[tuple[str, float]]:
        distance = Memory.embedding.cosine_distance(list(query_vector))
        query = _candidate_query(
            db,
            (Memory.id, (1 - distance).label("similarity")),
            tags=tags,
            source=source,
            exclude_id=exclude_id,
        )
        try:
            rows = query.order_by(distance).limit(limit).all()
        except DBAPIError as exc:
            logger.warning("similarity_search_failed", extra={"backend": self.name})
            raise SimilaritySearchError("vector index unavailable") from exc
        return [(row.id, float(row.similarity)) for row in rows]


class ExactSimilaritySearch:
    """In-process cosine scan; used with SQLite and for small deployments."""

    name = "exact"

    def search(
        self,
        db,
        query_vector: Sequence[float],
        limit: int,
        *,
        tags: Optional[Sequence[str]] = None,
        source: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> list[tuple[str, float]]:
        query = np.asarray(query_vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        rows = _candidate_query(
            db,
            (Memory.id, Memory.embedding, Memory.tags),
            tags=tags,
            source=source,
            exclude_id=exclude_id,
        ).all()

        ids: list[str] = []
        vectors = []
        for row in rows:
            if not has_any_tag(row.tags, tags or ()):
                continue
            vector = np.asarray(row.embedding, dtype=float)
            if vector.shape != query.shape:
                logger.warning(
                    "embedding_dimension_mismatch",
                    extra={"memory_id": row.id, "expected": query.shape[0], "received": vector.size},
                )
                continue
            ids.append(row.id)
            vectors.append(vector)
        if not vectors:
            return []

        matrix = np.vstack(vectors)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        similarities = (matrix @ query) / (norms * query_norm)
        order = np.argsort(-similarities, kind="stable")[:limit]
        return [(ids[index], float(similarities[index])) for index in order]


def get_similarity_search():
    if config.VECTOR_BACKEND_EFFECTIVE == "pgvector" and config.DB_BACKEND_EFFECTIVE == "postgres":
        return PgVectorSimilaritySearch()
    return ExactSimilaritySearch()


__all__ = [
    "PgVectorSimilaritySearch",
    "ExactSimilaritySearch",
    "get_similarity_search",
]
