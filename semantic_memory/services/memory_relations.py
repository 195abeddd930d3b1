"""
Directed, typed, weighted edges between memories.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import aliased

from semantic_memory.errors import MemoryNotFoundError, ValidationIssue
from semantic_memory.models import Memory, MemoryRelation, as_utc, utcnow
from semantic_memory.services.memory_shared import logger
from semantic_memory.validators import validate_direction


def _require_active(db, memory_id: str, field: str) -> Memory:
    memory = db.get(Memory, memory_id)
    if memory is None or memory.deleted_at is not None:
        raise MemoryNotFoundError(f"{field} not found: {memory_id}")
    return memory


def _find(db, source_id: str, target_id: str, relation_type: str) -> Optional[MemoryRelation]:
    return (
        db.query(MemoryRelation)
        .filter(
            MemoryRelation.source_memory_id == source_id,
            MemoryRelation.target_memory_id == target_id,
            MemoryRelation.relation_type == relation_type,
        )
        .first()
    )


def upsert_relation(
    db,
    source_id: str,
    target_id: str,
    relation_type: str,
    strength: float,
    metadata: Optional[dict] = None,
) -> tuple[MemoryRelation, bool]:
    """Create or overwrite the (source, target, type) edge.

    Returns ``(relation, created)``. Self-loops are rejected before the store
    is touched; both endpoints must exist and be active.
    """
    if source_id == target_id:
        raise ValidationIssue(
            "a memory cannot be related to itself",
            field="target_memory_id",
            error_type="self_relation",
        )
    _require_active(db, source_id, "source memory")
    _require_active(db, target_id, "target memory")

    existing = _find(db, source_id, target_id, relation_type)
    if existing is not None:
        existing.strength = strength
        existing.metadata_ = metadata or {}
        db.flush()
        return existing, False

    relation = MemoryRelation(
        source_memory_id=source_id,
        target_memory_id=target_id,
        relation_type=relation_type,
        strength=strength,
        metadata_=metadata or {},
    )
    # A concurrent insert of the same triple trips uq_memory_relations_unique
    # and surfaces as a store error; no duplicate edge can be written.
    db.add(relation)
    db.flush()
    logger.info("relation_created", extra={"relation_type": relation_type})
    return relation, True


def delete_relation(db, source_id: str, target_id: str, relation_type: str) -> bool:
    deleted = (
        db.query(MemoryRelation)
        .filter(
            MemoryRelation.source_memory_id == source_id,
            MemoryRelation.target_memory_id == target_id,
            MemoryRelation.relation_type == relation_type,
        )
        .delete(synchronize_session=False)
    )
    return deleted > 0


def _edges(db, memory_id: str, direction: str) -> list[dict]:
    other = aliased(Memory)
    if direction == "outgoing":
        anchor, far = MemoryRelation.source_memory_id, MemoryRelation.target_memory_id
    else:
        anchor, far = MemoryRelation.target_memory_id, MemoryRelation.source_memory_id
    rows = (
        db.query(MemoryRelation, other)
        .join(
            other,
            and_(
                other.id == far,
                other.deleted_at.is_(None),
                or_(other.expires_at.is_(None), other.expires_at > utcnow()),
            ),
        )
        .filter(anchor == memory_id)
        .all()
    )
    return [
        {
            "id": relation.id,
            "source_memory_id": relation.source_memory_id,
            "target_memory_id": relation.target_memory_id,
            "related_memory_id": memory.id,
            "relation_type": relation.relation_type,
            "strength": relation.strength,
            "metadata": relation.metadata_ or {},
            "direction": direction,
            "content": memory.content,
            "summary": memory.summary,
            "created_at": as_utc(relation.created_at).isoformat(),
        }
        for relation, memory in rows
    ]


def relations_for_memory(db, memory_id: str, direction: str = "both") -> list[dict]:
    """Edges touching ``memory_id``, strongest first, far endpoint denormalised."""
    direction = validate_direction(direction)
    edges: list[dict] = []
    if direction in ("outgoing", "both"):
        edges.extend(_edges(db, memory_id, "outgoing"))
    if direction in ("incoming", "both"):
        edges.extend(_edges(db, memory_id, "incoming"))
    edges.sort(key=lambda edge: edge["strength"], reverse=True)
    return edges


def serialize_relation(relation: MemoryRelation) -> dict:
    return {
        "id": relation.id,
        "source_memory_id": relation.source_memory_id,
        "target_memory_id": relation.target_memory_id,
        "relation_type": relation.relation_type,
        "strength": relation.strength,
        "metadata": relation.metadata_ or {},
    }


__all__ = [
    "upsert_relation",
    "delete_relation",
    "relations_for_memory",
    "serialize_relation",
]
