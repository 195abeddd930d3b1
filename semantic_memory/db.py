"""
Database initialization and migration helpers.
"""

from __future__ import annotations

import os
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

import semantic_memory.config as config

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class DB:
    """Database state holder (avoids global scoping issues)."""

    engine = None
    SessionLocal = None


def _get_alembic_config() -> Config:
    alembic_cfg = Config(os.path.join(PROJECT_ROOT, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(PROJECT_ROOT, "alembic"))
    if config.DATABASE_URL:
        alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL.replace("%", "%%"))
    return alembic_cfg


def get_schema_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    """(current, head) alembic revisions; current is None on an unstamped database."""
    head_revision = ScriptDirectory.from_config(_get_alembic_config()).get_current_head()
    with engine.connect() as conn:
        current_revision = MigrationContext.configure(conn).get_current_revision()
    return current_revision, head_revision


def _ensure_schema_up_to_date(engine) -> None:
    current_rev, head_rev = get_schema_revisions(engine)
    if current_rev == head_rev:
        return

    if not config.AUTO_MIGRATE_ON_STARTUP:
        raise RuntimeError(
            f"Database schema out of date (current={current_rev}, expected={head_rev}). "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true for dev."
        )

    config.logger.info("schema_upgrade", extra={"current": current_rev, "head": head_rev})
    command.upgrade(_get_alembic_config(), "head")
    new_current, _ = get_schema_revisions(engine)
    if new_current != head_rev:
        raise RuntimeError("Database migration did not reach expected revision")


def bind_engine(engine) -> None:
    """Point the shared session factory at an already-built engine."""
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)


def init_db() -> None:
    """Initialize database connection and bring the schema to head."""
    config.validate_and_prepare_config()

    config.logger.info("Connecting to database...")
    engine_kwargs = {"pool_pre_ping": True}
    if config.DB_BACKEND == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs["pool_size"] = config.DB_POOL_SIZE
    bind_engine(create_engine(config.DATABASE_URL, **engine_kwargs))

    if (
        config.AUTO_CREATE_EXTENSIONS
        and config.DB_BACKEND == "postgres"
        and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    ):
        config.logger.info("Ensuring pgvector extension...")
        with DB.engine.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()
    else:
        config.logger.info("Skipping pgvector extension creation")

    _ensure_schema_up_to_date(DB.engine)

    config.logger.info("Database initialized")


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None
