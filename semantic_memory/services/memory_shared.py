"""
Shared helpers for memory services: embedding client, circuit breaker,
tool error handling and small query helpers.
"""

from __future__ import annotations

import random
import threading
import time
from functools import wraps
from typing import Callable, Iterable, List, Optional, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError

import semantic_memory.config as config
from semantic_memory.db import DB
from semantic_memory.errors import (
    EmbeddingProviderError,
    MemoryNotFoundError,
    SimilaritySearchError,
    ValidationIssue,
)
from semantic_memory.models import Memory, as_utc

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

EMBEDDING_PROVIDER = config.EMBEDDING_PROVIDER
EMBEDDING_MODEL = config.EMBEDDING_MODEL
EMBEDDING_DIM = config.EMBEDDING_DIM
OLLAMA_URL = config.OLLAMA_URL
OPENAI_API_KEY = config.OPENAI_API_KEY
OPENAI_EMBEDDINGS_URL = config.OPENAI_EMBEDDINGS_URL
MAX_EMBEDDING_TEXT_LENGTH = config.MAX_EMBEDDING_TEXT_LENGTH

EMBEDDING_TIMEOUT_SECONDS = config.EMBEDDING_TIMEOUT_SECONDS
EMBEDDING_RETRY_MAX = config.EMBEDDING_RETRY_MAX
EMBEDDING_RETRY_BACKOFF_SECONDS = config.EMBEDDING_RETRY_BACKOFF_SECONDS
EMBEDDING_RETRY_JITTER_SECONDS = config.EMBEDDING_RETRY_JITTER_SECONDS
EMBEDDING_FAILURE_THRESHOLD = config.EMBEDDING_FAILURE_THRESHOLD
EMBEDDING_COOLDOWN_SECONDS = config.EMBEDDING_COOLDOWN_SECONDS

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

http_client = None  # Reusable HTTP client for embedding calls
_http_client_lock = threading.Lock()


def init_http_client() -> httpx.Client:
    """Initialize the pooled HTTP client for embedding calls (once)."""
    global http_client
    with _http_client_lock:
        if http_client is not None:
            return http_client
        headers = {"Content-Type": "application/json"}
        if EMBEDDING_PROVIDER == "openai" and OPENAI_API_KEY:
            headers["Authorization"] = f"Bearer {OPENAI_API_KEY}"
        http_client = httpx.Client(
            timeout=httpx.Timeout(EMBEDDING_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
            headers=headers,
        )
        client = http_client
    logger.info("HTTP client initialized", extra={"provider": EMBEDDING_PROVIDER})
    return client


def cleanup_http_client():
    """Clean up HTTP client on shutdown."""
    global http_client
    with _http_client_lock:
        client, http_client = http_client, None
    if client:
        client.close()
        logger.info("HTTP client closed")


# =============================================================================
# Circuit breaker
# =============================================================================

class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def reset(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_error = None

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


embedding_circuit_breaker = EmbeddingCircuitBreaker(
    failure_threshold=EMBEDDING_FAILURE_THRESHOLD,
    cooldown_seconds=EMBEDDING_COOLDOWN_SECONDS,
)


def _raise_embedding_unavailable(detail: str) -> None:
    logger.warning("embedding_unavailable", extra={"provider": EMBEDDING_PROVIDER, "detail": detail})
    raise EmbeddingProviderError(f"embedding provider unavailable: {detail}")


def _sleep_backoff(attempt: int) -> None:
    base = EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    jitter = random.uniform(0, EMBEDDING_RETRY_JITTER_SECONDS)
    time.sleep(base + jitter)


# =============================================================================
# Embeddings
# =============================================================================

def _prepare_embedding_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationIssue("text must be a non-empty string", field="text", error_type="required")
    return text[:MAX_EMBEDDING_TEXT_LENGTH]


def _embedding_request() -> tuple[str, Callable[[str], dict], Callable[[dict], list]]:
    if EMBEDDING_PROVIDER == "openai":
        return (
            OPENAI_EMBEDDINGS_URL,
            lambda text: {"model": EMBEDDING_MODEL, "input": text},
            lambda data: data["data"][0]["embedding"],
        )
    return (
        f"{OLLAMA_URL}/api/embeddings",
        lambda text: {"model": EMBEDDING_MODEL, "prompt": text},
        lambda data: data["embedding"],
    )


def _check_embedding(vector) -> List[float]:
    if not isinstance(vector, list) or len(vector) != EMBEDDING_DIM:
        received = len(vector) if isinstance(vector, list) else None
        logger.error(
            "embedding_dimension_mismatch",
            extra={"expected": EMBEDDING_DIM, "received": received, "model": EMBEDDING_MODEL},
        )
        embedding_circuit_breaker.record_failure("dimension mismatch")
        _raise_embedding_unavailable(f"expected {EMBEDDING_DIM} dimensions, got {received}")
    return [float(value) for value in vector]


def _handle_response(response: httpx.Response, parse: Callable[[dict], list]) -> List[float]:
    if response.status_code >= 400:
        embedding_circuit_breaker.record_failure(f"status {response.status_code}")
        _raise_embedding_unavailable(f"status {response.status_code}")
    try:
        vector = parse(response.json())
    except (ValueError, KeyError, IndexError, TypeError):
        embedding_circuit_breaker.record_failure("malformed response")
        _raise_embedding_unavailable("malformed response")
    checked = _check_embedding(vector)
    embedding_circuit_breaker.record_success()
    return checked


def embed_text_sync(text: str) -> List[float]:
    """Generate an embedding with the configured provider over the pooled client."""
    prepared = _prepare_embedding_text(text)
    if EMBEDDING_PROVIDER == "none":
        _raise_embedding_unavailable("embedding provider disabled")
    if embedding_circuit_breaker.is_open():
        _raise_embedding_unavailable("circuit breaker open")
    client = http_client or init_http_client()

    url, build_body, parse = _embedding_request()
    for attempt in range(EMBEDDING_RETRY_MAX + 1):
        try:
            response = client.post(url, json=build_body(prepared))
        except httpx.RequestError as exc:
            if attempt >= EMBEDDING_RETRY_MAX:
                embedding_circuit_breaker.record_failure(str(exc))
                _raise_embedding_unavailable("request error")
            _sleep_backoff(attempt)
            continue

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < EMBEDDING_RETRY_MAX:
            _sleep_backoff(attempt)
            continue
        return _handle_response(response, parse)
    _raise_embedding_unavailable("retries exhausted")


def _embed_or_raise(text: str) -> List[float]:
    # Looked up at call time so tests can swap embed_text_sync on this module.
    return embed_text_sync(text)


def embed_texts_sync(texts: Sequence[str]) -> List[List[float]]:
    return [_embed_or_raise(text) for text in texts]


def embedding_health(probe: bool = False) -> dict:
    status = {
        "provider": EMBEDDING_PROVIDER,
        "model": EMBEDDING_MODEL,
        "dimension": EMBEDDING_DIM,
        "circuit_breaker": embedding_circuit_breaker.status(),
    }
    if EMBEDDING_PROVIDER == "none":
        status["status"] = "disabled"
        return status
    if embedding_circuit_breaker.is_open():
        status["status"] = "unavailable"
        return status
    if not probe:
        status["status"] = "unknown"
        return status
    try:
        _embed_or_raise("health check")
        status["status"] = "healthy"
    except EmbeddingProviderError as exc:
        status["status"] = "unavailable"
        status["error"] = str(exc)
    return status


# =============================================================================
# Query helpers
# =============================================================================

def tag_overlap_clause(tags: Sequence[str]):
    """SQL-side tag overlap where the column type supports it, else None."""
    if not tags or config.DB_BACKEND_EFFECTIVE != "postgres":
        return None
    return Memory.tags.overlap(list(tags))


def has_any_tag(row_tags: Optional[Iterable[str]], tags: Sequence[str]) -> bool:
    if not tags:
        return True
    return bool(set(row_tags or ()) & set(tags))


def _open_session():
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized - SessionLocal is None")
    return DB.SessionLocal()


def serialize_memory(memory: Memory, *, include_embedding: bool = False) -> dict:
    payload = {
        "id": memory.id,
        "content": memory.content,
        "summary": memory.summary,
        "tags": list(memory.tags or []),
        "source": memory.source,
        "metadata": memory.metadata_ or {},
        "importance": memory.importance,
        "access_count": memory.access_count,
        "reinforcement_count": memory.reinforcement_count,
        "created_at": _isoformat(memory.created_at),
        "last_accessed": _isoformat(memory.last_accessed),
        "last_reinforced": _isoformat(memory.last_reinforced),
        "expires_at": _isoformat(memory.expires_at),
    }
    if include_embedding and memory.embedding is not None:
        payload["embedding"] = [float(value) for value in memory.embedding]
    return payload


def _isoformat(value) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


# =============================================================================
# Tool error handling
# =============================================================================

def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except MemoryNotFoundError as exc:
            logger.info("tool_not_found", extra={"tool": fn.__name__, "detail": str(exc)})
            return {"status": "not_found", "tool": fn.__name__, "message": str(exc)}
        except (EmbeddingProviderError, SimilaritySearchError) as exc:
            logger.warning("tool_dependency_error", extra={"tool": fn.__name__, "detail": str(exc)})
            return {
                "status": "error",
                "error_type": "dependency_error",
                "tool": fn.__name__,
                "message": str(exc),
                "degraded": True,
            }
        except SQLAlchemyError:
            logger.exception("tool_store_error", extra={"tool": fn.__name__})
            return {
                "status": "error",
                "error_type": "store_error",
                "tool": fn.__name__,
                "message": "storage operation failed",
            }
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


__all__ = [
    "init_http_client",
    "cleanup_http_client",
    "EmbeddingCircuitBreaker",
    "embedding_circuit_breaker",
    "embed_text_sync",
    "embed_texts_sync",
    "embedding_health",
    "tag_overlap_clause",
    "has_any_tag",
    "serialize_memory",
    "service_tool",
]
