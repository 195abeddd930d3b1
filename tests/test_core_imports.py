import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "exact")


def test_core_imports():
    import semantic_memory.context  # noqa: F401
    import semantic_memory.models  # noqa: F401
    import semantic_memory.services.memory_service  # noqa: F401
    import semantic_memory.mcp  # noqa: F401


def test_registered_tools():
    from semantic_memory.mcp import registered_tools

    assert set(registered_tools()) == {
        "store_memory",
        "search_memory",
        "get_related",
        "recall_context",
        "forget",
        "reinforce",
        "delete_relation",
        "memory_access_history",
        "memory_stats",
        "memory_user_guide",
    }


def test_core_smoke_lifecycle(server_db, fake_embeddings):
    import semantic_memory.services.memory_service as memory

    stored = memory.store_memory(content="Core import smoke memory", tags=["core_smoke"])
    memory_id = stored["memory"]["id"]

    search_result = memory.search_memory(query="Core import smoke memory", limit=5)
    assert search_result["count"] == 1

    hidden = memory.forget(memory_id=memory_id, mode="soft_delete")
    assert hidden["forgotten"] == 1

    search_hidden = memory.search_memory(query="Core import smoke memory", limit=5)
    assert search_hidden["count"] == 0

    history = memory.memory_access_history(memory_id=memory_id)
    assert history["status"] == "ok"

    purged = memory.forget(memory_id=memory_id, mode="hard_delete")
    assert purged["forgotten"] == 1

    gone = memory.memory_access_history(memory_id=memory_id)
    assert gone["status"] == "not_found"
