import logging

import pytest

from conftest import basis_vector
from semantic_memory.context import AuthContext, RequestContext, reset_current_request_context, set_current_request_context
from semantic_memory.errors import ConsistencyViolation, ValidationIssue
from semantic_memory.models import Memory, MemoryAccessEvent, as_utc
from semantic_memory.services import access_ledger, memory_service, memory_store


def test_event_updates_counter_and_timestamp_together(db_session):
    memory = memory_store.create_memory(db_session, content="Tracked", embedding=basis_vector(1.0))
    db_session.commit()
    before = as_utc(memory.last_accessed)

    access_ledger.record_access(db_session, [memory.id], "search", query_text="tracked", similarity_scores=[0.9])
    access_ledger.record_access(db_session, [memory.id], "recall", query_text="tracked")
    db_session.commit()
    db_session.refresh(memory)

    event = (
        db_session.query(MemoryAccessEvent)
        .order_by(MemoryAccessEvent.accessed_at.desc())
        .first()
    )
    assert memory.access_count == 2
    assert as_utc(memory.last_accessed) == as_utc(event.accessed_at)
    assert as_utc(memory.last_accessed) >= before


def test_rollback_discards_both_writes(db_session):
    memory = memory_store.create_memory(db_session, content="Rolled back", embedding=basis_vector(1.0))
    db_session.commit()
    access_ledger.record_access(db_session, [memory.id], "search")
    db_session.rollback()

    db_session.refresh(memory)
    assert memory.access_count == 0
    assert db_session.query(MemoryAccessEvent).count() == 0


def test_event_for_unknown_memory_is_a_violation(db_session):
    with pytest.raises(ConsistencyViolation):
        access_ledger.record_access(db_session, ["00000000-0000-4000-8000-000000000000"], "search")


def test_unknown_access_type_rejected(db_session):
    with pytest.raises(ValidationIssue):
        access_ledger.record_access(db_session, [], "browse")


def test_actor_is_recorded_from_request_context(db_session):
    memory = memory_store.create_memory(db_session, content="Attributed", embedding=basis_vector(1.0))
    db_session.commit()
    token = set_current_request_context(RequestContext(auth=AuthContext(actor="api_key", authenticated=True)))
    try:
        access_ledger.record_access(db_session, [memory.id], "search")
    finally:
        reset_current_request_context(token)
    db_session.commit()
    history = access_ledger.access_history(db_session, memory.id)
    assert history[0]["metadata"] == {"actor": "api_key"}


def test_background_write(server_db, db_session):
    memory = memory_store.create_memory(db_session, content="Background", embedding=basis_vector(1.0))
    db_session.commit()

    future = access_ledger.record_access_in_background([memory.id], "search", query_text="bg", similarity_scores=[0.5])
    assert future.result(timeout=5) == 1
    db_session.refresh(memory)
    assert memory.access_count == 1


def test_background_failure_is_logged_not_raised(server_db, caplog):
    caplog.set_level(logging.WARNING, logger="semantic_memory")
    future = access_ledger.record_access_in_background(["00000000-0000-4000-8000-000000000000"], "search")
    assert future.result(timeout=5) == 0
    assert any(record.getMessage() == "access_log_failed" for record in caplog.records)


def test_background_noop_without_ids(server_db):
    assert access_ledger.record_access_in_background([], "search") is None


def test_search_tool_records_access(server_db, fake_embeddings):
    stored = memory_service.store_memory(content="Searchable fact about coffee")
    memory_id = stored["memory"]["id"]
    result = memory_service.search_memory(query="coffee fact", min_score=0.0)
    assert result["count"] == 1
    assert access_ledger.drain_pending(timeout=5)

    history = memory_service.memory_access_history(memory_id=memory_id)
    assert history["count"] == 1
    assert history["events"][0]["access_type"] == "search"
    assert history["events"][0]["query_text"] == "coffee fact"


def test_access_history_newest_first(db_session):
    memory = memory_store.create_memory(db_session, content="History", embedding=basis_vector(1.0))
    db_session.commit()
    for access_type in ("search", "recall", "reinforce"):
        access_ledger.record_access(db_session, [memory.id], access_type)
        db_session.commit()
    history = access_ledger.access_history(db_session, memory.id, limit=2)
    assert [event["access_type"] for event in history] == ["reinforce", "recall"]
    assert db_session.get(Memory, memory.id).access_count == 3
