"""
Memory persistence: create, ranked search, neighbours and the single-record
importance / deletion transitions.

Functions here work inside the caller's session and never commit; the service
layer owns the transaction boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import case, delete, or_, update

import semantic_memory.config as config
from semantic_memory.errors import MemoryNotFoundError, ValidationIssue
from semantic_memory.models import (
    Memory,
    MemoryAccessEvent,
    MemoryRelation,
    active_memory_clause,
    as_utc,
    utcnow,
)
from semantic_memory.services.memory_shared import logger, serialize_memory
from semantic_memory.services.scoring import ScoringConfig, recency_score
from semantic_memory.services.similarity import get_similarity_search
from semantic_memory.validators import (
    validate_content,
    validate_metadata,
    validate_source,
    validate_summary,
    validate_tags,
    validate_unit_interval,
)


@dataclass
class ScoredMemory:
    memory: Memory
    similarity: float
    recency: float
    hybrid_score: float

    def to_payload(self) -> dict:
        payload = serialize_memory(self.memory)
        payload["similarity"] = round(self.similarity, 6)
        payload["recency"] = round(self.recency, 6)
        payload["hybrid_score"] = round(self.hybrid_score, 6)
        return payload


def validate_embedding(vector) -> list[float]:
    if vector is None or isinstance(vector, (str, bytes)):
        raise ValidationIssue("embedding is required", field="embedding", error_type="required")
    try:
        values = [float(value) for value in vector]
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(
            "embedding must be a sequence of numbers",
            field="embedding",
            error_type="invalid_type",
        ) from exc
    if len(values) != config.EMBEDDING_DIM:
        raise ValidationIssue(
            f"embedding must have {config.EMBEDDING_DIM} dimensions, got {len(values)}",
            field="embedding",
            error_type="invalid_dimension",
        )
    return values


def create_memory(
    db,
    *,
    content: str,
    embedding: Sequence[float],
    summary: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    source: Optional[str] = None,
    metadata: Optional[dict] = None,
    importance: Optional[float] = None,
    expires_in_days: Optional[float] = None,
) -> Memory:
    """Validate, default and add a memory; flushed so the id is assigned."""
    now = utcnow()
    memory = Memory(
        content=validate_content(content),
        summary=validate_summary(summary),
        embedding=validate_embedding(embedding),
        tags=validate_tags(tags),
        source=validate_source(source),
        metadata_=validate_metadata(metadata),
        importance=(
            config.DEFAULT_IMPORTANCE
            if importance is None
            else validate_unit_interval(importance, "importance")
        ),
        access_count=0,
        reinforcement_count=0,
        created_at=now,
        last_accessed=now,
        expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
    )
    db.add(memory)
    db.flush()
    return memory


def get_memory(db, memory_id: str, *, include_inactive: bool = False) -> Memory:
    memory = db.get(Memory, memory_id)
    if memory is None or (not include_inactive and not memory.is_active):
        raise MemoryNotFoundError(f"Memory not found: {memory_id}")
    return memory


def load_memories(db, memory_ids: Sequence[str]) -> dict[str, Memory]:
    if not memory_ids:
        return {}
    rows = (
        db.query(Memory)
        .filter(Memory.id.in_(list(memory_ids)), active_memory_clause())
        .all()
    )
    return {row.id: row for row in rows}


def score_candidates(
    candidates: Sequence[tuple[Memory, float]],
    scoring: ScoringConfig,
    now: Optional[datetime] = None,
) -> list[ScoredMemory]:
    now = now or utcnow()
    scored = []
    for memory, similarity in candidates:
        recency = recency_score(as_utc(memory.last_accessed), scoring.decay_days, now)
        scored.append(
            ScoredMemory(
                memory=memory,
                similarity=similarity,
                recency=recency,
                hybrid_score=scoring.score(similarity, as_utc(memory.last_accessed), memory.importance, now),
            )
        )
    return scored


def search_memories(
    db,
    query_vector: Sequence[float],
    *,
    limit: int,
    min_score: float,
    tags: Optional[Sequence[str]] = None,
    source: Optional[str] = None,
    scoring: Optional[ScoringConfig] = None,
    searcher=None,
    now: Optional[datetime] = None,
) -> list[ScoredMemory]:
    """Rank the top ``limit`` similarity candidates, then drop those below min_score.

    The candidate pool is capped at ``limit`` before thresholding, so fewer than
    ``limit`` results may come back.
    """
    scoring = scoring or ScoringConfig.from_config()
    searcher = searcher or get_similarity_search()
    pairs = searcher.search(db, query_vector, limit, tags=tags or None, source=source)
    memories = load_memories(db, [memory_id for memory_id, _ in pairs])
    # Rows can vanish between the index lookup and the load; skip them.
    candidates = [(memories[memory_id], sim) for memory_id, sim in pairs if memory_id in memories]

    scored = score_candidates(candidates, scoring, now)
    scored.sort(key=lambda item: item.hybrid_score, reverse=True)
    return [item for item in scored[:limit] if item.hybrid_score >= min_score]


def similar_memories(db, memory_id: str, limit: int, *, searcher=None) -> list[tuple[Memory, float]]:
    """Nearest active neighbours of a memory by embedding, excluding itself."""
    memory = get_memory(db, memory_id)
    if memory.embedding is None:
        return []
    searcher = searcher or get_similarity_search()
    pairs = searcher.search(db, list(memory.embedding), limit, exclude_id=memory.id)
    memories = load_memories(db, [other_id for other_id, _ in pairs])
    return [(memories[other_id], sim) for other_id, sim in pairs if other_id in memories]


def reinforce_memory(db, memory_id: str, boost: float) -> Memory:
    now = utcnow()
    boosted = Memory.importance + boost
    result = db.execute(
        update(Memory)
        .where(Memory.id == memory_id, Memory.deleted_at.is_(None))
        .values(
            importance=case((boosted > 1.0, 1.0), else_=boosted),
            reinforcement_count=Memory.reinforcement_count + 1,
            last_reinforced=now,
            last_accessed=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise MemoryNotFoundError(f"Memory not found: {memory_id}")
    return _reload(db, memory_id)


def decay_memory(db, memory_id: str, decay_factor: float, floor: Optional[float] = None) -> Memory:
    floor = config.IMPORTANCE_FLOOR if floor is None else floor
    decayed = Memory.importance * decay_factor
    result = db.execute(
        update(Memory)
        .where(Memory.id == memory_id, Memory.deleted_at.is_(None))
        .values(importance=case((decayed < floor, floor), else_=decayed))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise MemoryNotFoundError(f"Memory not found: {memory_id}")
    return _reload(db, memory_id)


def soft_delete_memory(db, memory_id: str) -> int:
    result = db.execute(
        update(Memory)
        .where(Memory.id == memory_id, Memory.deleted_at.is_(None))
        .values(deleted_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def hard_delete_memories(db, memory_ids: Sequence[str]) -> int:
    """Physically remove memories with their edges and access history."""
    ids = list(memory_ids)
    if not ids:
        return 0
    # SQLite only honours ON DELETE CASCADE with foreign_keys enabled, so the
    # dependants are removed explicitly in the same transaction.
    db.execute(
        delete(MemoryRelation)
        .where(or_(MemoryRelation.source_memory_id.in_(ids), MemoryRelation.target_memory_id.in_(ids)))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(MemoryAccessEvent)
        .where(MemoryAccessEvent.memory_id.in_(ids))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(
        delete(Memory).where(Memory.id.in_(ids)).execution_options(synchronize_session=False)
    )
    logger.info("memories_hard_deleted", extra={"count": result.rowcount})
    return result.rowcount


def _reload(db, memory_id: str) -> Memory:
    return db.query(Memory).filter(Memory.id == memory_id).populate_existing().one()


__all__ = [
    "ScoredMemory",
    "validate_embedding",
    "create_memory",
    "get_memory",
    "load_memories",
    "score_candidates",
    "search_memories",
    "similar_memories",
    "reinforce_memory",
    "decay_memory",
    "soft_delete_memory",
    "hard_delete_memories",
]
