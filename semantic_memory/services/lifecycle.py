"""
Memory lifecycle transitions.

    active --reinforce--> active        importance up, capped at 1.0
    active --decay------> active        importance down, floored at IMPORTANCE_FLOOR
    active --soft delete--> soft-deleted   invisible to retrieval, row kept
    active | soft-deleted --hard delete--> gone (edges and access log removed)

Expiry is a soft delete applied by the sweep once ``expires_at`` has passed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import case, update

import semantic_memory.config as config
from semantic_memory.db import DB
from semantic_memory.errors import MemoryNotFoundError, ValidationIssue
from semantic_memory.models import Memory, utcnow
from semantic_memory.services import access_ledger
from semantic_memory.services.memory_relations import upsert_relation
from semantic_memory.services.memory_shared import has_any_tag, logger, tag_overlap_clause
from semantic_memory.services.memory_store import (
    decay_memory,
    hard_delete_memories,
    reinforce_memory,
    soft_delete_memory,
)

FORGET_MODES = ("decay", "soft_delete", "hard_delete")


def resolve_forget_mode(single: bool, soft: bool = True, mode: Optional[str] = None) -> str:
    """Explicit mode wins; otherwise soft=False hard-deletes, and soft=True
    decays a single memory but soft-deletes criteria matches."""
    if mode is not None:
        if mode not in FORGET_MODES:
            raise ValidationIssue(
                f"mode must be one of {', '.join(FORGET_MODES)}",
                field="mode",
                error_type="invalid_choice",
            )
        return mode
    if not soft:
        return "hard_delete"
    return "decay" if single else "soft_delete"


def forget_memory(db, memory_id: str, mode: str, decay_factor: float) -> dict:
    if mode == "decay":
        memory = decay_memory(db, memory_id, decay_factor)
        return {"forgotten": 1, "memory": {"id": memory.id, "importance": memory.importance}}
    if mode == "soft_delete":
        if soft_delete_memory(db, memory_id) == 0:
            raise MemoryNotFoundError(f"Memory not found: {memory_id}")
        return {"forgotten": 1}
    return {"forgotten": hard_delete_memories(db, [memory_id])}


def _matching_ids(
    db,
    *,
    tags: Sequence[str],
    older_than_days: Optional[int],
    below_importance: Optional[float],
    now: datetime,
) -> list[str]:
    query = db.query(Memory.id, Memory.tags).filter(Memory.deleted_at.is_(None))
    overlap = tag_overlap_clause(tags)
    if overlap is not None:
        query = query.filter(overlap)
    if older_than_days is not None:
        query = query.filter(Memory.created_at < now - timedelta(days=older_than_days))
    if below_importance is not None:
        query = query.filter(Memory.importance < below_importance)
    return [row.id for row in query.all() if has_any_tag(row.tags, tags)]


def forget_by_criteria(
    db,
    *,
    tags: Optional[Sequence[str]] = None,
    older_than_days: Optional[int] = None,
    below_importance: Optional[float] = None,
    mode: str = "soft_delete",
    decay_factor: float = config.DEFAULT_DECAY_FACTOR,
    now: Optional[datetime] = None,
) -> int:
    """Apply ``mode`` to every active memory matching all supplied criteria.

    Tags match when any tag overlaps. Selection and mutation share the caller's
    transaction.
    """
    tags = list(tags or ())
    if not tags and older_than_days is None and below_importance is None:
        raise ValidationIssue(
            "provide memory_id or at least one of tags, older_than_days, below_importance",
            field="criteria",
            error_type="required",
        )
    now = now or utcnow()
    ids = _matching_ids(
        db,
        tags=tags,
        older_than_days=older_than_days,
        below_importance=below_importance,
        now=now,
    )
    if not ids:
        return 0

    if mode == "hard_delete":
        return hard_delete_memories(db, ids)

    if mode == "soft_delete":
        values = {"deleted_at": now}
    else:
        decayed = Memory.importance * decay_factor
        floor = config.IMPORTANCE_FLOOR
        values = {"importance": case((decayed < floor, floor), else_=decayed)}
    result = db.execute(
        update(Memory)
        .where(Memory.id.in_(ids), Memory.deleted_at.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def reinforce(
    db,
    memory_id: str,
    boost: float,
    *,
    relate_to: Optional[str] = None,
    relation_type: str = "related_to",
    strength: float = config.DEFAULT_RELATION_STRENGTH,
) -> dict:
    """Boost importance and optionally link to another memory.

    A failed link is reported in ``relation_error`` and does not undo the boost.
    """
    memory = reinforce_memory(db, memory_id, boost)
    access_ledger.record_access(db, [memory_id], "reinforce")
    result = {"memory": memory, "relation": None, "relation_created": False, "relation_error": None}
    if relate_to is None:
        return result

    try:
        relation, created = upsert_relation(db, memory_id, relate_to, relation_type, strength)
    except (MemoryNotFoundError, ValidationIssue) as exc:
        result["relation_error"] = str(exc)
        return result
    access_ledger.record_access(db, [relate_to], "relate")
    result["relation"] = relation
    result["relation_created"] = created
    return result


def expire_due_memories(db, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    result = db.execute(
        update(Memory)
        .where(
            Memory.deleted_at.is_(None),
            Memory.expires_at.isnot(None),
            Memory.expires_at <= now,
        )
        .values(deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def run_expiry_sweep() -> int:
    """Soft-delete expired memories in a session of its own."""
    if DB.SessionLocal is None:
        return 0
    db = DB.SessionLocal()
    try:
        expired = expire_due_memories(db)
        db.commit()
    finally:
        db.close()
    if expired:
        logger.info("expiry_sweep_complete", extra={"expired": expired})
    return expired


__all__ = [
    "FORGET_MODES",
    "resolve_forget_mode",
    "forget_memory",
    "forget_by_criteria",
    "reinforce",
    "expire_due_memories",
    "run_expiry_sweep",
]
