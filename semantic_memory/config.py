"""
Shared configuration for the semantic memory core.
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger("semantic_memory")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "exact"} else "exact"
    if db_effective == "sqlite" and vector_effective == "pgvector":
        vector_effective = "exact"
    return db_effective, vector_effective


SERVICE_NAME = "semantic-memory"
SERVICE_VERSION = "1.1.0"

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _get_int("PORT", 3325)

# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/semantic_memory.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_POOL_SIZE = _get_int("DB_POOL_SIZE", 10)
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Embedding settings
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "ollama").strip().lower()
OLLAMA_URL = os.environ.get("OLLAMA_URL", "http://localhost:11434").rstrip("/")
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "nomic-embed-text")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 768)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("MAX_EMBEDDING_TEXT_LENGTH", 32000)

# Embedding retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)

# Hybrid scoring
SEMANTIC_WEIGHT = _get_float("SEMANTIC_WEIGHT", 0.8)
RECENCY_WEIGHT = _get_float("RECENCY_WEIGHT", 0.2)
RECENCY_DECAY_DAYS = _get_float("RECENCY_DECAY_DAYS", 30.0)

# Memory strength
DEFAULT_IMPORTANCE = _get_float("DEFAULT_IMPORTANCE", 0.5)
IMPORTANCE_FLOOR = _get_float("IMPORTANCE_FLOOR", 0.01)
DEFAULT_REINFORCE_BOOST = _get_float("DEFAULT_REINFORCE_BOOST", 0.1)
MAX_REINFORCE_BOOST = _get_float("MAX_REINFORCE_BOOST", 0.5)
DEFAULT_DECAY_FACTOR = _get_float("DEFAULT_DECAY_FACTOR", 0.1)
DEFAULT_RELATION_STRENGTH = _get_float("DEFAULT_RELATION_STRENGTH", 0.5)

# Search & recall
DEFAULT_SEARCH_MIN_SCORE = _get_float("DEFAULT_SEARCH_MIN_SCORE", 0.3)
DEFAULT_RECALL_MIN_SCORE = _get_float("DEFAULT_RECALL_MIN_SCORE", 0.25)
DEFAULT_RESULT_LIMIT = _get_int("DEFAULT_RESULT_LIMIT", 10)
MAX_SEARCH_LIMIT = _get_int("MAX_SEARCH_LIMIT", 100)
MAX_RECALL_LIMIT = _get_int("MAX_RECALL_LIMIT", 50)
RECALL_MAX_CONTEXT_ITEMS = _get_int("RECALL_MAX_CONTEXT_ITEMS", 10)
RECALL_CANDIDATE_SLACK = _get_int("RECALL_CANDIDATE_SLACK", 5)

# Request/input limits
MAX_CONTENT_BYTES = _get_int("MAX_CONTENT_BYTES", 10 * 1024)
MAX_SUMMARY_BYTES = _get_int("MAX_SUMMARY_BYTES", 1024)
MAX_QUERY_LENGTH = _get_int("MAX_QUERY_LENGTH", 10000)
MAX_TAG_ITEMS = _get_int("MAX_TAG_ITEMS", 20)
MAX_TAG_LENGTH = _get_int("MAX_TAG_LENGTH", 100)
MAX_SOURCE_LENGTH = _get_int("MAX_SOURCE_LENGTH", 100)
MAX_METADATA_BYTES = _get_int("MAX_METADATA_BYTES", 65536)
MAX_RELATION_TYPE_LENGTH = _get_int("MAX_RELATION_TYPE_LENGTH", 100)
MAX_DAY_RANGE = _get_int("MAX_DAY_RANGE", 36500)

# Background work
ACCESS_LOG_WORKERS = _get_int("ACCESS_LOG_WORKERS", 2)
EXPIRY_SWEEP_SECONDS = _get_int("EXPIRY_SWEEP_SECONDS", 900)

# Transport
API_KEY = os.environ.get("API_KEY", "")
REQUIRE_API_KEY = _get_bool("REQUIRE_API_KEY", False)
RATE_LIMIT_ENABLED = _get_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_WINDOW_SECONDS = _get_int("RATE_LIMIT_WINDOW_SECONDS", 900)
RATE_LIMIT_MAX = _get_int("RATE_LIMIT_MAX", 100)
RATE_LIMIT_MAX_ENTRIES = _get_int("RATE_LIMIT_MAX_ENTRIES", 10000)
RATE_LIMIT_TRUSTED_PROXY_COUNT = _get_int("RATE_LIMIT_TRUSTED_PROXY_COUNT", 0)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "exact"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'exact'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        errors.append("VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if EMBEDDING_PROVIDER not in {"ollama", "openai", "none"}:
        errors.append("EMBEDDING_PROVIDER must be 'ollama', 'openai', or 'none'")
    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        errors.append("EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY")
    if EMBEDDING_DIM <= 0:
        errors.append("EMBEDDING_DIM must be positive")
    if RECENCY_DECAY_DAYS <= 0:
        errors.append("RECENCY_DECAY_DAYS must be positive")
    if not 0.0 <= DEFAULT_IMPORTANCE <= 1.0:
        errors.append("DEFAULT_IMPORTANCE must be between 0 and 1")
    if not 0.0 < IMPORTANCE_FLOOR <= 1.0:
        errors.append("IMPORTANCE_FLOOR must be in (0, 1]")
    if not 1 <= MAX_DAY_RANGE <= 1000000:
        errors.append("MAX_DAY_RANGE must be between 1 and 1000000")
    if REQUIRE_API_KEY and not API_KEY:
        errors.append("REQUIRE_API_KEY=true requires API_KEY")

    if SEMANTIC_WEIGHT + RECENCY_WEIGHT <= 0:
        logger.warning(
            "scoring_weights_nonpositive",
            extra={"semantic_weight": SEMANTIC_WEIGHT, "recency_weight": RECENCY_WEIGHT},
        )

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from semantic_memory.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
