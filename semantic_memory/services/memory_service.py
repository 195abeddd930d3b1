"""
Memory service operations.

Each operation validates its parameters, runs in one session/transaction and
returns a JSON-able payload. Failures are turned into structured payloads by
``service_tool``.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func

import semantic_memory.config as config
from semantic_memory.errors import ValidationIssue
from semantic_memory.models import Memory, MemoryAccessEvent, MemoryRelation, active_memory_clause, as_utc, utcnow
from semantic_memory.services import access_ledger, lifecycle, memory_relations, memory_shared, memory_store, recall
from semantic_memory.services.memory_guide import memory_user_guide as _memory_user_guide
from semantic_memory.services.memory_shared import _open_session, logger, serialize_memory, service_tool
from semantic_memory.services.scoring import ScoringConfig
from semantic_memory.validators import (
    validate_boost,
    validate_content,
    validate_expires_in_days,
    validate_limit,
    validate_memory_id,
    validate_metadata,
    validate_older_than_days,
    validate_query,
    validate_relation_type,
    validate_source,
    validate_summary,
    validate_tags,
    validate_unit_interval,
)

init_http_client = memory_shared.init_http_client
cleanup_http_client = memory_shared.cleanup_http_client


def _round(value: Optional[float]) -> Optional[float]:
    return round(value, 4) if value is not None else None


# =============================================================================
# Store
# =============================================================================

@service_tool
def store_memory(
    content: str,
    tags: Optional[List[str]] = None,
    importance: Optional[float] = None,
    metadata: Optional[dict] = None,
    summary: Optional[str] = None,
    source: Optional[str] = None,
    expires_in_days: Optional[float] = None,
) -> dict:
    """
    Store a new memory with its embedding.

    Args:
        content: Memory text (trimmed, control characters removed)
        tags: Lowercase tags used for filtering and bulk forgetting
        importance: 0.0-1.0 (default 0.5)
        metadata: Free-form JSON object
        summary: Optional short summary
        source: Optional origin label (e.g. "conversation", "docs")
        expires_in_days: Hide the memory automatically after this many days

    Returns:
        The stored memory
    """
    content = validate_content(content)
    tags = validate_tags(tags)
    if importance is not None:
        importance = validate_unit_interval(importance, "importance")
    metadata = validate_metadata(metadata)
    summary = validate_summary(summary)
    source = validate_source(source)
    expires_in_days = validate_expires_in_days(expires_in_days)

    embedding = memory_shared._embed_or_raise(content)

    db = _open_session()
    try:
        memory = memory_store.create_memory(
            db,
            content=content,
            embedding=embedding,
            summary=summary,
            tags=tags,
            source=source,
            metadata=metadata,
            importance=importance,
            expires_in_days=expires_in_days,
        )
        db.commit()
        payload = serialize_memory(memory)
    finally:
        db.close()

    logger.info("memory_stored", extra={"memory_id": payload["id"], "tag_count": len(tags)})
    return {
        "status": "stored",
        "message": f"Memory stored successfully with ID {payload['id']}",
        "memory": payload,
    }


# =============================================================================
# Search & recall
# =============================================================================

@service_tool
def search_memory(
    query: str,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    min_score: float = config.DEFAULT_SEARCH_MIN_SCORE,
    tags: Optional[List[str]] = None,
    source: Optional[str] = None,
) -> dict:
    """
    Semantic search ranked by hybrid score.

    Args:
        query: Natural language query
        limit: Max results (1-100)
        min_score: Minimum hybrid score
        tags: Only memories with ANY of these tags
        source: Only memories with this exact source

    Returns:
        Matching memories, best first
    """
    query = validate_query(query)
    limit = validate_limit(limit, "limit", config.MAX_SEARCH_LIMIT)
    min_score = validate_unit_interval(min_score, "min_score")
    tags = validate_tags(tags)
    source = validate_source(source)

    query_vector = memory_shared._embed_or_raise(query)

    db = _open_session()
    try:
        results = memory_store.search_memories(
            db,
            query_vector,
            limit=limit,
            min_score=min_score,
            tags=tags,
            source=source,
            scoring=ScoringConfig.from_config(),
        )
        memories = [item.to_payload() for item in results]
    finally:
        db.close()

    access_ledger.record_access_in_background(
        [item["id"] for item in memories],
        "search",
        query_text=query,
        similarity_scores=[item["similarity"] for item in memories],
    )
    return {
        "status": "ok",
        "query": query,
        "count": len(memories),
        "memories": memories,
    }


@service_tool
def recall_context(
    task: str,
    context: Optional[List[str]] = None,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    min_score: float = config.DEFAULT_RECALL_MIN_SCORE,
) -> dict:
    """
    Gather memories for a task from the task text plus context strings.

    Args:
        task: The task or question that needs context
        context: Extra search strings (file names, errors, ...); beyond 10 are ignored
        limit: Max memories after deduplication (1-50)
        min_score: Minimum hybrid score per sub-query

    Returns:
        Deduplicated memories with the query that matched each best
    """
    queries = recall.prepare_queries(task, context)
    limit = validate_limit(limit, "limit", config.MAX_RECALL_LIMIT)
    min_score = validate_unit_interval(min_score, "min_score")

    db = _open_session()
    try:
        matches = recall.recall(
            db,
            queries,
            limit=limit,
            min_score=min_score,
            scoring=ScoringConfig.from_config(),
        )
        memories = [match.to_payload() for match in matches]
    finally:
        db.close()

    task_text = queries[0]
    access_ledger.record_access_in_background(
        [item["id"] for item in memories],
        "recall",
        query_text=task_text,
        similarity_scores=[item["similarity"] for item in memories],
    )
    return {
        "status": "ok",
        "task": task_text,
        "context_queries": len(queries) - 1,
        "count": len(memories),
        "memories": memories,
    }


# =============================================================================
# Relations
# =============================================================================

@service_tool
def get_related(
    memory_id: str,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    include_explicit: bool = True,
    include_similar: bool = True,
) -> dict:
    """
    Explicit relations plus semantic neighbours of a memory.

    Explicit edges win over a semantic match for the same neighbour. Entries
    are ordered by relation strength or similarity.
    """
    memory_id = validate_memory_id(memory_id)
    limit = validate_limit(limit, "limit", config.MAX_RECALL_LIMIT)

    db = _open_session()
    try:
        anchor = memory_store.get_memory(db, memory_id)
        related: list[dict] = []
        seen: set[str] = set()

        if include_explicit:
            for edge in memory_relations.relations_for_memory(db, memory_id, "both"):
                neighbour_id = edge["related_memory_id"]
                if neighbour_id in seen:
                    continue
                seen.add(neighbour_id)
                related.append(
                    {
                        "id": neighbour_id,
                        "content": edge["content"],
                        "summary": edge["summary"],
                        "relation_type": edge["relation_type"],
                        "relation_strength": edge["strength"],
                        "relation_direction": edge["direction"],
                        "source": "explicit",
                        "_rank": edge["strength"],
                    }
                )

        if include_similar:
            for neighbour, similarity in memory_store.similar_memories(db, memory_id, limit):
                if neighbour.id in seen:
                    continue
                seen.add(neighbour.id)
                related.append(
                    {
                        "id": neighbour.id,
                        "content": neighbour.content,
                        "summary": neighbour.summary,
                        "tags": list(neighbour.tags or []),
                        "similarity": _round(similarity),
                        "source": "semantic",
                        "_rank": similarity,
                    }
                )

        related.sort(key=lambda item: item["_rank"], reverse=True)
        related = related[:limit]
        for item in related:
            item.pop("_rank")
        result = {
            "status": "ok",
            "memory_id": memory_id,
            "source_content": anchor.content,
            "source_summary": anchor.summary,
            "count": len(related),
            "related": related,
        }
    finally:
        db.close()
    return result


@service_tool
def delete_relation(
    source_memory_id: str,
    target_memory_id: str,
    relation_type: str,
) -> dict:
    """Remove one (source, target, type) edge."""
    source_memory_id = validate_memory_id(source_memory_id, "source_memory_id")
    target_memory_id = validate_memory_id(target_memory_id, "target_memory_id")
    relation_type = validate_relation_type(relation_type)

    db = _open_session()
    try:
        deleted = memory_relations.delete_relation(db, source_memory_id, target_memory_id, relation_type)
        db.commit()
    finally:
        db.close()
    return {"status": "ok", "deleted": deleted}


# =============================================================================
# Lifecycle
# =============================================================================

@service_tool
def reinforce(
    memory_id: str,
    boost: float = config.DEFAULT_REINFORCE_BOOST,
    relate_to_memory_id: Optional[str] = None,
    relation_type: str = "related_to",
    relation_strength: float = config.DEFAULT_RELATION_STRENGTH,
) -> dict:
    """
    Increase a memory's importance and optionally link it to another memory.

    Args:
        memory_id: Memory to reinforce
        boost: Importance increase (0-0.5); importance is capped at 1.0
        relate_to_memory_id: Optional memory to relate to
        relation_type: e.g. related_to, derived_from, supports, contradicts
        relation_strength: Edge strength 0.0-1.0

    Returns:
        Updated importance and the relation, if one was created or updated
    """
    memory_id = validate_memory_id(memory_id)
    boost = validate_boost(boost, config.MAX_REINFORCE_BOOST)
    if relate_to_memory_id is not None:
        relate_to_memory_id = validate_memory_id(relate_to_memory_id, "relate_to_memory_id")
        if relate_to_memory_id == memory_id:
            raise ValidationIssue(
                "a memory cannot be related to itself",
                field="relate_to_memory_id",
                error_type="self_relation",
            )
        relation_type = validate_relation_type(relation_type)
        relation_strength = validate_unit_interval(relation_strength, "relation_strength")

    db = _open_session()
    try:
        outcome = lifecycle.reinforce(
            db,
            memory_id,
            boost,
            relate_to=relate_to_memory_id,
            relation_type=relation_type,
            strength=relation_strength,
        )
        db.commit()
        memory = outcome["memory"]
        result = {
            "status": "ok",
            "memory": {
                "id": memory.id,
                "importance": memory.importance,
                "reinforcement_count": memory.reinforcement_count,
                "last_reinforced": as_utc(memory.last_reinforced).isoformat(),
            },
            "message": f"Memory reinforced. New importance: {memory.importance:.3f}",
        }
        if outcome["relation"] is not None:
            result["relation"] = memory_relations.serialize_relation(outcome["relation"])
            result["relation_created"] = outcome["relation_created"]
        if outcome["relation_error"]:
            result["relation_error"] = outcome["relation_error"]
    finally:
        db.close()
    return result


@service_tool
def forget(
    memory_id: Optional[str] = None,
    tags: Optional[List[str]] = None,
    older_than_days: Optional[int] = None,
    below_importance: Optional[float] = None,
    soft: bool = True,
    mode: Optional[str] = None,
    decay_factor: float = config.DEFAULT_DECAY_FACTOR,
) -> dict:
    """
    Forget one memory by id, or every active memory matching all criteria.

    Args:
        memory_id: Single memory to forget
        tags: Criteria - any of these tags
        older_than_days: Criteria - created more than N days ago
        below_importance: Criteria - importance strictly below this value
        soft: Without mode, False hard-deletes; True decays a single memory
            and soft-deletes criteria matches
        mode: decay, soft_delete or hard_delete
        decay_factor: Importance multiplier for decay (floored at 0.01)

    Returns:
        The resolved method and how many memories were affected
    """
    decay_factor = validate_unit_interval(decay_factor, "decay_factor")
    if memory_id is not None:
        memory_id = validate_memory_id(memory_id)
        method = lifecycle.resolve_forget_mode(True, soft, mode)
        db = _open_session()
        try:
            outcome = lifecycle.forget_memory(db, memory_id, method, decay_factor)
            db.commit()
        finally:
            db.close()
        return {"status": "ok", "method": method, "memory_id": memory_id, **outcome}

    tags = validate_tags(tags)
    older_than_days = validate_older_than_days(older_than_days)
    if below_importance is not None:
        below_importance = validate_unit_interval(below_importance, "below_importance")
    method = lifecycle.resolve_forget_mode(False, soft, mode)

    db = _open_session()
    try:
        forgotten = lifecycle.forget_by_criteria(
            db,
            tags=tags,
            older_than_days=older_than_days,
            below_importance=below_importance,
            mode=method,
            decay_factor=decay_factor,
        )
        db.commit()
    finally:
        db.close()

    criteria = {}
    if tags:
        criteria["tags"] = tags
    if older_than_days is not None:
        criteria["older_than_days"] = older_than_days
    if below_importance is not None:
        criteria["below_importance"] = below_importance
    logger.info("memories_forgotten", extra={"method": method, "count": forgotten})
    return {"status": "ok", "method": method, "forgotten": forgotten, "criteria": criteria}


# =============================================================================
# Introspection
# =============================================================================

@service_tool
def memory_access_history(memory_id: str, limit: int = 20) -> dict:
    """Recent access events for a memory, newest first."""
    memory_id = validate_memory_id(memory_id)
    limit = validate_limit(limit, "limit", config.MAX_SEARCH_LIMIT)
    db = _open_session()
    try:
        memory_store.get_memory(db, memory_id, include_inactive=True)
        events = access_ledger.access_history(db, memory_id, limit)
    finally:
        db.close()
    return {"status": "ok", "memory_id": memory_id, "count": len(events), "events": events}


@service_tool
def memory_stats() -> dict:
    """Counts and averages across the memory store."""
    now = utcnow()
    db = _open_session()
    try:
        total = db.query(func.count(Memory.id)).scalar() or 0
        soft_deleted = db.query(func.count(Memory.id)).filter(Memory.deleted_at.isnot(None)).scalar() or 0
        expired = (
            db.query(func.count(Memory.id))
            .filter(
                Memory.deleted_at.is_(None),
                Memory.expires_at.isnot(None),
                Memory.expires_at <= now,
            )
            .scalar()
            or 0
        )
        active = db.query(
            func.count(Memory.id),
            func.avg(Memory.importance),
            func.avg(Memory.access_count),
            func.min(Memory.created_at),
            func.max(Memory.created_at),
        ).filter(active_memory_clause(now)).one()
        relation_count = db.query(func.count(MemoryRelation.id)).scalar() or 0
        access_events = db.query(func.count(MemoryAccessEvent.id)).scalar() or 0
    finally:
        db.close()

    active_count, avg_importance, avg_access, oldest, newest = active
    return {
        "status": "ok",
        "memories": {
            "total": total,
            "active": active_count or 0,
            "soft_deleted": soft_deleted,
            "expired": expired,
        },
        "avg_importance": _round(float(avg_importance)) if avg_importance is not None else None,
        "avg_access_count": _round(float(avg_access)) if avg_access is not None else None,
        "oldest_memory": as_utc(oldest).isoformat() if oldest is not None else None,
        "newest_memory": as_utc(newest).isoformat() if newest is not None else None,
        "relations": relation_count,
        "access_events": access_events,
        "embedding": {
            "provider": config.EMBEDDING_PROVIDER,
            "model": config.EMBEDDING_MODEL,
            "dimension": config.EMBEDDING_DIM,
        },
        "vector_backend": config.VECTOR_BACKEND_EFFECTIVE,
    }


@service_tool
def memory_user_guide(format: str = "markdown", verbosity: str = "short") -> dict:
    return _memory_user_guide(format=format, verbosity=verbosity)


__all__ = [
    "init_http_client",
    "cleanup_http_client",
    "store_memory",
    "search_memory",
    "recall_context",
    "get_related",
    "delete_relation",
    "reinforce",
    "forget",
    "memory_access_history",
    "memory_stats",
    "memory_user_guide",
]
