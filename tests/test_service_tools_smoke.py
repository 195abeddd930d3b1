import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "exact")

import pytest

from semantic_memory.services import access_ledger
from semantic_memory.services import memory_service


def test_service_tools_smoke(server_db, fake_embeddings):
    first = memory_service.store_memory(
        content="Service tool smoke memory about release notes",
        tags=["smoke", "Release"],
        importance=0.7,
        metadata={"origin": "smoke"},
        summary="release notes",
        source="conversation",
    )
    assert first["status"] == "stored"
    assert first["memory"]["tags"] == ["smoke", "release"]
    first_id = first["memory"]["id"]

    second = memory_service.store_memory(
        content="Release notes are drafted from merged pull requests",
        tags=["smoke"],
    )
    assert second["status"] == "stored"
    second_id = second["memory"]["id"]

    search = memory_service.search_memory(query="release notes", limit=5, min_score=0.0, tags=["smoke"])
    assert search["count"] == 2

    by_source = memory_service.search_memory(query="release notes", min_score=0.0, source="conversation")
    assert [item["id"] for item in by_source["memories"]] == [first_id]

    reinforced = memory_service.reinforce(
        memory_id=first_id,
        boost=0.1,
        relate_to_memory_id=second_id,
        relation_type="supports",
        relation_strength=0.9,
    )
    assert reinforced["status"] == "ok"
    assert reinforced["relation_created"] is True
    assert reinforced["memory"]["importance"] == pytest.approx(0.8)

    related = memory_service.get_related(memory_id=second_id)
    assert related["status"] == "ok"
    assert related["related"][0]["id"] == first_id
    assert related["related"][0]["source"] == "explicit"
    assert related["related"][0]["relation_direction"] == "incoming"
    assert len({item["id"] for item in related["related"]}) == related["count"]

    self_relation = memory_service.reinforce(memory_id=first_id, relate_to_memory_id=first_id)
    assert self_relation["status"] == "error"
    assert self_relation["field"] == "relate_to_memory_id"

    removed = memory_service.delete_relation(
        source_memory_id=first_id,
        target_memory_id=second_id,
        relation_type="supports",
    )
    assert removed == {"status": "ok", "deleted": True}

    recall = memory_service.recall_context(task="write the release notes", context=["pull requests"], min_score=0.0)
    assert recall["count"] == 2

    assert access_ledger.drain_pending(timeout=5)
    history = memory_service.memory_access_history(memory_id=first_id)
    assert {event["access_type"] for event in history["events"]} >= {"search", "reinforce", "recall"}

    stats = memory_service.memory_stats()
    assert stats["memories"]["active"] == 2
    assert stats["relations"] == 0
    assert stats["vector_backend"] == "exact"

    guide = memory_service.memory_user_guide(format="markdown", verbosity="short")
    assert guide["status"] == "ok"

    forgotten = memory_service.forget(memory_id=second_id, soft=False)
    assert forgotten["method"] == "hard_delete"
    assert forgotten["forgotten"] == 1

    missing = memory_service.get_related(memory_id=second_id)
    assert missing["status"] == "not_found"

    invalid = memory_service.search_memory(query="release", limit=0)
    assert invalid["status"] == "error"
    assert invalid["field"] == "limit"


def test_day_ranges_rejected_with_payload(server_db, fake_embeddings):
    stored = memory_service.store_memory(content="long lived", expires_in_days=10_000_000)
    assert stored["status"] == "error"
    assert stored["field"] == "expires_in_days"

    bulk = memory_service.forget(tags=["x"], older_than_days=10**6)
    assert bulk["status"] == "error"
    assert bulk["field"] == "older_than_days"


def test_recall_access_events_carry_task_text(server_db, fake_embeddings):
    stored = memory_service.store_memory(content="Deploy pipeline uses blue green releases")
    memory_id = stored["memory"]["id"]

    recall = memory_service.recall_context(task="Which rollout strategy?", context=["blue green"], min_score=0.0)
    assert [item["id"] for item in recall["memories"]] == [memory_id]
    assert recall["memories"][0]["matched_query"] == "blue green"

    assert access_ledger.drain_pending(timeout=5)
    history = memory_service.memory_access_history(memory_id=memory_id)
    recall_events = [event for event in history["events"] if event["access_type"] == "recall"]
    assert [event["query_text"] for event in recall_events] == ["Which rollout strategy?"]


def test_get_related_hides_soft_deleted_neighbours(server_db, fake_embeddings):
    anchor = memory_service.store_memory(content="Deploy with blue green releases")["memory"]["id"]
    kept = memory_service.store_memory(content="Blue green releases need two environments")["memory"]["id"]
    hidden = memory_service.store_memory(content="Deploy with blue green releases today")["memory"]["id"]
    assert memory_service.forget(memory_id=hidden, mode="soft_delete")["forgotten"] == 1

    related = memory_service.get_related(memory_id=anchor, include_explicit=False, include_similar=True)
    ids = [item["id"] for item in related["related"]]
    assert kept in ids
    assert hidden not in ids
