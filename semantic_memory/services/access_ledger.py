"""
Append-only access log.

Every event insert bumps the memory's access_count and last_accessed through
the MemoryAccessEvent after_insert hook, inside the same flush, so callers
only ever write events.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional, Sequence

import semantic_memory.config as config
from semantic_memory.context import current_actor
from semantic_memory.db import DB
from semantic_memory.errors import ValidationIssue
from semantic_memory.models import ACCESS_TYPES, MemoryAccessEvent, as_utc, utcnow

logger = config.logger

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()
_pending: set[Future] = set()
_pending_lock = threading.Lock()


def record_access(
    db,
    memory_ids: Sequence[str],
    access_type: str,
    query_text: Optional[str] = None,
    similarity_scores: Optional[Sequence[Optional[float]]] = None,
    metadata: Optional[dict] = None,
) -> int:
    """Insert one event per id in the caller's transaction. Caller commits."""
    if access_type not in ACCESS_TYPES:
        raise ValidationIssue(
            f"access_type must be one of {', '.join(ACCESS_TYPES)}",
            field="access_type",
            error_type="invalid_choice",
        )
    if similarity_scores is not None and len(similarity_scores) != len(memory_ids):
        raise ValueError("similarity_scores must align with memory_ids")

    event_metadata = dict(metadata or {})
    actor = current_actor()
    if actor:
        event_metadata.setdefault("actor", actor)

    accessed_at = utcnow()
    for index, memory_id in enumerate(memory_ids):
        db.add(
            MemoryAccessEvent(
                memory_id=memory_id,
                access_type=access_type,
                query_text=query_text,
                similarity_score=similarity_scores[index] if similarity_scores is not None else None,
                metadata_=event_metadata,
                accessed_at=accessed_at,
            )
        )
    db.flush()
    return len(memory_ids)


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=max(1, config.ACCESS_LOG_WORKERS),
                thread_name_prefix="access-ledger",
            )
        return _executor


def _write_in_own_session(
    memory_ids: list[str],
    access_type: str,
    query_text: Optional[str],
    similarity_scores: Optional[list[Optional[float]]],
    metadata: Optional[dict],
) -> int:
    db = DB.SessionLocal()
    try:
        count = record_access(db, memory_ids, access_type, query_text, similarity_scores, metadata)
        db.commit()
        return count
    except Exception as exc:
        db.rollback()
        # Reads never fail because the ledger did; surface it in the log instead.
        logger.warning(
            "access_log_failed",
            extra={
                "access_type": access_type,
                "memory_count": len(memory_ids),
                "error": type(exc).__name__,
            },
        )
        return 0
    finally:
        db.close()


def record_access_in_background(
    memory_ids: Sequence[str],
    access_type: str,
    query_text: Optional[str] = None,
    similarity_scores: Optional[Sequence[Optional[float]]] = None,
) -> Optional[Future]:
    """Queue an access write without blocking the caller."""
    if not memory_ids or DB.SessionLocal is None:
        return None
    metadata = {}
    actor = current_actor()
    if actor:
        metadata["actor"] = actor
    future = _get_executor().submit(
        _write_in_own_session,
        list(memory_ids),
        access_type,
        query_text,
        list(similarity_scores) if similarity_scores is not None else None,
        metadata,
    )
    with _pending_lock:
        _pending.add(future)
    future.add_done_callback(_forget_future)
    return future


def _forget_future(future: Future) -> None:
    with _pending_lock:
        _pending.discard(future)


def drain_pending(timeout: Optional[float] = None) -> bool:
    """Wait for queued writes; True when nothing is left outstanding."""
    with _pending_lock:
        outstanding = list(_pending)
    if not outstanding:
        return True
    _, not_done = wait(outstanding, timeout=timeout)
    return not not_done


def shutdown(timeout: Optional[float] = 5.0) -> None:
    global _executor
    drained = drain_pending(timeout)
    if not drained:
        logger.warning("access_log_drain_timeout", extra={"timeout": timeout})
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=drained)
            _executor = None


def access_history(db, memory_id: str, limit: int = 20) -> list[dict]:
    events = (
        db.query(MemoryAccessEvent)
        .filter(MemoryAccessEvent.memory_id == memory_id)
        .order_by(MemoryAccessEvent.accessed_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": event.id,
            "memory_id": event.memory_id,
            "access_type": event.access_type,
            "query_text": event.query_text,
            "similarity_score": event.similarity_score,
            "metadata": event.metadata_ or {},
            "accessed_at": as_utc(event.accessed_at).isoformat(),
        }
        for event in events
    ]


__all__ = [
    "record_access",
    "record_access_in_background",
    "drain_pending",
    "shutdown",
    "access_history",
]
