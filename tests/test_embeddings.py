import json
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

import semantic_memory.config as config
from semantic_memory.errors import EmbeddingProviderError
from semantic_memory.services import memory_service, memory_shared


@pytest.fixture
def provider(monkeypatch):
    """Point the embedding client at a mock transport; returns the request log."""
    requests = []
    responses = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = responses.pop(0) if responses else (200, {"embedding": [0.1] * config.EMBEDDING_DIM})
        return httpx.Response(status, json=body)

    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "ollama")
    monkeypatch.setattr(memory_shared, "_sleep_backoff", lambda attempt: None)
    monkeypatch.setattr(
        memory_shared,
        "embedding_circuit_breaker",
        memory_shared.EmbeddingCircuitBreaker(failure_threshold=2, cooldown_seconds=60),
    )
    monkeypatch.setattr(memory_shared, "http_client", httpx.Client(transport=httpx.MockTransport(handler)))
    return requests, responses


def test_ollama_request_shape(provider):
    requests, _ = provider
    vector = memory_shared.embed_text_sync("hello world")
    assert len(vector) == config.EMBEDDING_DIM
    assert requests[0].url.path == "/api/embeddings"
    body = json.loads(requests[0].content)
    assert body == {"model": config.EMBEDDING_MODEL, "prompt": "hello world"}


def test_openai_response_parsing(provider, monkeypatch):
    requests, responses = provider
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "openai")
    responses.append((200, {"data": [{"embedding": [0.2] * config.EMBEDDING_DIM}]}))
    vector = memory_shared.embed_text_sync("hello")
    assert vector[0] == pytest.approx(0.2)
    assert json.loads(requests[0].content)["input"] == "hello"


def test_retries_transient_errors(provider):
    requests, responses = provider
    responses.extend([(503, {}), (429, {})])
    vector = memory_shared.embed_text_sync("retry me")
    assert len(vector) == config.EMBEDDING_DIM
    assert len(requests) == 3


def test_dimension_mismatch_fails_closed(provider, caplog):
    _, responses = provider
    responses.append((200, {"embedding": [0.1, 0.2, 0.3]}))
    with pytest.raises(EmbeddingProviderError):
        memory_shared.embed_text_sync("wrong size")
    assert any(record.getMessage() == "embedding_dimension_mismatch" for record in caplog.records)


def test_breaker_opens_after_repeated_failures(provider):
    requests, responses = provider
    responses.extend([(400, {}), (400, {})])
    for _ in range(2):
        with pytest.raises(EmbeddingProviderError):
            memory_shared.embed_text_sync("bad request")
    assert memory_shared.embedding_circuit_breaker.is_open()

    with pytest.raises(EmbeddingProviderError):
        memory_shared.embed_text_sync("short circuited")
    assert len(requests) == 2
    assert memory_shared.embedding_health()["status"] == "unavailable"


def test_disabled_provider_reports_degraded(server_db, monkeypatch):
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "none")
    result = memory_service.store_memory(content="Cannot embed this")
    assert result["status"] == "error"
    assert result["error_type"] == "dependency_error"
    assert result["degraded"] is True

    search = memory_service.search_memory(query="anything")
    assert search["error_type"] == "dependency_error"
    assert memory_service.memory_stats()["memories"]["total"] == 0


def test_health_check_calls_provider(provider):
    assert memory_shared.embedding_health(probe=False)["status"] == "unknown"
    assert memory_shared.embedding_health(probe=True)["status"] == "healthy"


def test_http_client_built_once_under_concurrency(monkeypatch):
    monkeypatch.setattr(memory_shared, "http_client", None)
    with ThreadPoolExecutor(max_workers=8) as executor:
        clients = list(executor.map(lambda _: memory_shared.init_http_client(), range(16)))
    try:
        assert len({id(client) for client in clients}) == 1
        assert memory_shared.http_client is clients[0]
    finally:
        memory_shared.cleanup_http_client()
    assert memory_shared.http_client is None
