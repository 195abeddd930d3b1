"""Initial semantic memory schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-02
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

import semantic_memory.config as config


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _use_pgvector(is_postgres: bool) -> bool:
    return is_postgres and config.VECTOR_BACKEND == "pgvector"


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    tags_type = postgresql.ARRAY(sa.Text()) if is_postgres else sa.JSON
    id_type = postgresql.UUID(as_uuid=False) if is_postgres else sa.Text

    if _use_pgvector(is_postgres):
        from pgvector.sqlalchemy import Vector

        op.execute("CREATE EXTENSION IF NOT EXISTS vector")
        embedding_type = Vector(config.EMBEDDING_DIM)
    else:
        embedding_type = sa.JSON

    op.create_table(
        "memories",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text()),
        sa.Column("embedding", embedding_type),
        sa.Column("metadata", json_type),
        sa.Column("tags", tags_type),
        sa.Column("source", sa.Text()),
        sa.Column("importance", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reinforcement_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reinforced", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("importance >= 0 AND importance <= 1", name="ck_memories_importance"),
        sa.CheckConstraint("length(trim(content)) > 0", name="ck_memories_content_not_empty"),
    )
    op.create_index("ix_memories_created_at", "memories", ["created_at"])
    op.create_index("ix_memories_last_accessed", "memories", ["last_accessed"])
    op.create_index("ix_memories_importance", "memories", ["importance"])
    op.create_index("ix_memories_source", "memories", ["source"])
    op.create_index("ix_memories_deleted_at", "memories", ["deleted_at"])
    if is_postgres:
        op.create_index(
            "ix_memories_tags",
            "memories",
            ["tags"],
            postgresql_using="gin",
        )
    if _use_pgvector(is_postgres):
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_memories_embedding_hnsw "
            "ON memories USING hnsw (embedding vector_cosine_ops)"
        )

    op.create_table(
        "memory_relations",
        sa.Column("id", id_type, primary_key=True),
        sa.Column(
            "source_memory_id",
            id_type,
            sa.ForeignKey("memories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_memory_id",
            id_type,
            sa.ForeignKey("memories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relation_type", sa.Text(), nullable=False),
        sa.Column("strength", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("source_memory_id != target_memory_id", name="ck_memory_relations_no_self"),
        sa.CheckConstraint("strength >= 0 AND strength <= 1", name="ck_memory_relations_strength"),
        sa.UniqueConstraint(
            "source_memory_id",
            "target_memory_id",
            "relation_type",
            name="uq_memory_relations_unique",
        ),
    )
    op.create_index("ix_memory_relations_source", "memory_relations", ["source_memory_id"])
    op.create_index("ix_memory_relations_target", "memory_relations", ["target_memory_id"])
    op.create_index("ix_memory_relations_type", "memory_relations", ["relation_type"])

    op.create_table(
        "memory_access_log",
        sa.Column("id", id_type, primary_key=True),
        sa.Column(
            "memory_id",
            id_type,
            sa.ForeignKey("memories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("access_type", sa.Text(), nullable=False),
        sa.Column("query_text", sa.Text()),
        sa.Column("similarity_score", sa.Float()),
        sa.Column("metadata", json_type),
        sa.Column("accessed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_memory_access_log_memory", "memory_access_log", ["memory_id"])
    op.create_index("ix_memory_access_log_accessed_at", "memory_access_log", ["accessed_at"])


def downgrade() -> None:
    op.drop_index("ix_memory_access_log_accessed_at", table_name="memory_access_log")
    op.drop_index("ix_memory_access_log_memory", table_name="memory_access_log")
    op.drop_table("memory_access_log")

    op.drop_index("ix_memory_relations_type", table_name="memory_relations")
    op.drop_index("ix_memory_relations_target", table_name="memory_relations")
    op.drop_index("ix_memory_relations_source", table_name="memory_relations")
    op.drop_table("memory_relations")

    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    if _use_pgvector(is_postgres):
        op.execute("DROP INDEX IF EXISTS ix_memories_embedding_hnsw")
    if is_postgres:
        op.drop_index("ix_memories_tags", table_name="memories")
    op.drop_index("ix_memories_deleted_at", table_name="memories")
    op.drop_index("ix_memories_source", table_name="memories")
    op.drop_index("ix_memories_importance", table_name="memories")
    op.drop_index("ix_memories_last_accessed", table_name="memories")
    op.drop_index("ix_memories_created_at", table_name="memories")
    op.drop_table("memories")
