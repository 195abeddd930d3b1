"""
Semantic memory database models
PostgreSQL + pgvector schema (SQLite for development and tests)
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Column, Integer, Text, Float, DateTime, ForeignKey, CheckConstraint,
    Index, UniqueConstraint, JSON, and_, event, or_, update,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import relationship, declarative_base

import semantic_memory.config as config
from semantic_memory.errors import ConsistencyViolation

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except ImportError:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
else:
    EMBEDDING_COLUMN_TYPE = JSON(none_as_null=True)

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
TAGS_TYPE = ARRAY(Text) if DB_BACKEND_EFFECTIVE == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=False) if DB_BACKEND_EFFECTIVE == "postgres" else Text


def _uuid_default() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Base = declarative_base()

ACCESS_TYPES = ("search", "recall", "reinforce", "relate")


# =============================================================================
# Memories
# =============================================================================

class Memory(Base):
    __tablename__ = "memories"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)

    # Content
    content = Column(Text, nullable=False)
    summary = Column(Text)
    embedding = Column(EMBEDDING_COLUMN_TYPE)

    # Classification
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    tags = Column(TAGS_TYPE, default=list)
    source = Column(Text)

    # Strength
    importance = Column(Float, default=config.DEFAULT_IMPORTANCE, nullable=False)
    access_count = Column(Integer, default=0, nullable=False)
    reinforcement_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_accessed = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_reinforced = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))

    # Soft delete
    deleted_at = Column(DateTime(timezone=True))

    outgoing_relations = relationship(
        "MemoryRelation",
        foreign_keys="MemoryRelation.source_memory_id",
        back_populates="source_memory",
        passive_deletes=True,
    )
    incoming_relations = relationship(
        "MemoryRelation",
        foreign_keys="MemoryRelation.target_memory_id",
        back_populates="target_memory",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("importance >= 0 AND importance <= 1", name="ck_memories_importance"),
        CheckConstraint("length(trim(content)) > 0", name="ck_memories_content_not_empty"),
        Index("ix_memories_created_at", "created_at"),
        Index("ix_memories_last_accessed", "last_accessed"),
        Index("ix_memories_importance", "importance"),
        Index("ix_memories_source", "source"),
        Index("ix_memories_deleted_at", "deleted_at"),
    )

    @property
    def is_active(self) -> bool:
        if self.deleted_at is not None:
            return False
        expires_at = as_utc(self.expires_at)
        return expires_at is None or expires_at > utcnow()


# =============================================================================
# Memory Relations (graph edges)
# =============================================================================

class MemoryRelation(Base):
    __tablename__ = "memory_relations"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    source_memory_id = Column(
        UUID_TYPE, ForeignKey("memories.id", ondelete="CASCADE"), nullable=False
    )
    target_memory_id = Column(
        UUID_TYPE, ForeignKey("memories.id", ondelete="CASCADE"), nullable=False
    )
    relation_type = Column(Text, nullable=False)  # related_to, derived_from, supports, contradicts
    strength = Column(Float, default=config.DEFAULT_RELATION_STRENGTH, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    source_memory = relationship(
        "Memory", foreign_keys=[source_memory_id], back_populates="outgoing_relations"
    )
    target_memory = relationship(
        "Memory", foreign_keys=[target_memory_id], back_populates="incoming_relations"
    )

    __table_args__ = (
        CheckConstraint("source_memory_id != target_memory_id", name="ck_memory_relations_no_self"),
        CheckConstraint("strength >= 0 AND strength <= 1", name="ck_memory_relations_strength"),
        UniqueConstraint(
            "source_memory_id",
            "target_memory_id",
            "relation_type",
            name="uq_memory_relations_unique",
        ),
        Index("ix_memory_relations_source", "source_memory_id"),
        Index("ix_memory_relations_target", "target_memory_id"),
        Index("ix_memory_relations_type", "relation_type"),
    )


# =============================================================================
# Memory Access Log
# =============================================================================

class MemoryAccessEvent(Base):
    __tablename__ = "memory_access_log"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    memory_id = Column(
        UUID_TYPE, ForeignKey("memories.id", ondelete="CASCADE"), nullable=False
    )
    access_type = Column(Text, nullable=False)  # search, recall, reinforce, relate
    query_text = Column(Text)
    similarity_score = Column(Float)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    accessed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_memory_access_log_memory", "memory_id"),
        Index("ix_memory_access_log_accessed_at", "accessed_at"),
    )


def active_memory_clause(now: datetime | None = None):
    """Rows visible to retrieval: not soft-deleted and not past expiry."""
    current = now or utcnow()
    return and_(
        Memory.deleted_at.is_(None),
        or_(Memory.expires_at.is_(None), Memory.expires_at > current),
    )


@event.listens_for(MemoryRelation, "before_insert")
def _reject_self_relation(mapper, connection, target) -> None:
    if target.source_memory_id == target.target_memory_id:
        raise ConsistencyViolation("relation endpoints must differ")


@event.listens_for(MemoryAccessEvent, "before_insert")
def _stamp_access_time(mapper, connection, target) -> None:
    if target.accessed_at is None:
        target.accessed_at = utcnow()


@event.listens_for(MemoryAccessEvent, "after_insert")
def _touch_memory_on_access(mapper, connection, target) -> None:
    # Runs inside the flush that inserted the event, so the log row and the
    # counter/timestamp update commit or roll back together.
    memories = Memory.__table__
    result = connection.execute(
        update(memories)
        .where(memories.c.id == target.memory_id)
        .values(
            access_count=memories.c.access_count + 1,
            last_accessed=target.accessed_at,
        )
    )
    if result.rowcount == 0:
        raise ConsistencyViolation(f"access event for unknown memory {target.memory_id}")


__all__ = [
    "Base",
    "ACCESS_TYPES",
    "Memory",
    "MemoryRelation",
    "MemoryAccessEvent",
    "PGVECTOR_AVAILABLE",
    "active_memory_clause",
    "as_utc",
    "utcnow",
]
