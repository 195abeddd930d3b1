from concurrent.futures import ThreadPoolExecutor

from semantic_memory.models import Memory
from semantic_memory.services import access_ledger, memory_service


def _store(text: str) -> dict:
    return memory_service.store_memory(content=text, tags=["concurrency"])


def test_store_memory_concurrency(server_db, fake_embeddings):
    texts = [f"Concurrent memory {i}" for i in range(4)]
    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(_store, texts))

    assert all(result["status"] == "stored" for result in results)

    search = memory_service.search_memory(query="concurrent memory", min_score=0.0, tags=["concurrency"])
    assert search["count"] == 4


def test_concurrent_reinforce_is_not_lost(server_db, fake_embeddings, db_session):
    stored = memory_service.store_memory(content="Hot memory", importance=0.0)
    memory_id = stored["memory"]["id"]

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(lambda _: memory_service.reinforce(memory_id=memory_id, boost=0.1), range(5)))

    assert all(result["status"] == "ok" for result in results)
    assert access_ledger.drain_pending(timeout=5)
    memory = db_session.get(Memory, memory_id)
    assert memory.reinforcement_count == 5
    assert memory.access_count == 5
    assert abs(memory.importance - 0.5) < 1e-9
