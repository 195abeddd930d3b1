import pytest

from conftest import basis_vector
from semantic_memory.errors import ConsistencyViolation, MemoryNotFoundError, ValidationIssue
from semantic_memory.models import MemoryAccessEvent, MemoryRelation
from semantic_memory.services import memory_relations, memory_store


@pytest.fixture
def trio(db_session):
    memories = [
        memory_store.create_memory(db_session, content=f"Node {name}", embedding=basis_vector(1.0, index))
        for index, name in enumerate("abc")
    ]
    db_session.commit()
    return memories


def test_upsert_is_idempotent(db_session, trio):
    a, b, _ = trio
    first, created = memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.4)
    db_session.commit()
    second, created_again = memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.9)
    db_session.commit()

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert second.strength == pytest.approx(0.9)
    assert db_session.query(MemoryRelation).count() == 1


def test_distinct_types_are_distinct_edges(db_session, trio):
    a, b, _ = trio
    memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.5)
    memory_relations.upsert_relation(db_session, a.id, b.id, "contradicts", 0.5)
    db_session.commit()
    assert db_session.query(MemoryRelation).count() == 2


def test_self_relation_rejected_before_store(db_session, trio):
    a, _, _ = trio
    with pytest.raises(ValidationIssue) as excinfo:
        memory_relations.upsert_relation(db_session, a.id, a.id, "related_to", 0.5)
    assert excinfo.value.error_type == "self_relation"
    assert db_session.query(MemoryRelation).count() == 0


def test_self_relation_guarded_at_flush(db_session, trio):
    a, _, _ = trio
    db_session.add(MemoryRelation(source_memory_id=a.id, target_memory_id=a.id, relation_type="x", strength=0.5))
    with pytest.raises(ConsistencyViolation):
        db_session.flush()


def test_relation_requires_active_endpoints(db_session, trio):
    a, b, _ = trio
    memory_store.soft_delete_memory(db_session, b.id)
    db_session.commit()
    with pytest.raises(MemoryNotFoundError):
        memory_relations.upsert_relation(db_session, a.id, b.id, "related_to", 0.5)


def test_directions_and_strength_order(db_session, trio):
    a, b, c = trio
    memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.3)
    memory_relations.upsert_relation(db_session, c.id, a.id, "derived_from", 0.8)
    db_session.commit()

    outgoing = memory_relations.relations_for_memory(db_session, a.id, "outgoing")
    assert [edge["related_memory_id"] for edge in outgoing] == [b.id]
    assert outgoing[0]["direction"] == "outgoing"

    incoming = memory_relations.relations_for_memory(db_session, a.id, "incoming")
    assert [edge["related_memory_id"] for edge in incoming] == [c.id]

    both = memory_relations.relations_for_memory(db_session, a.id)
    assert [edge["related_memory_id"] for edge in both] == [c.id, b.id]
    assert both[0]["content"] == "Node c"


def test_deleted_neighbours_are_hidden(db_session, trio):
    a, b, _ = trio
    memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.3)
    memory_store.soft_delete_memory(db_session, b.id)
    db_session.commit()
    assert memory_relations.relations_for_memory(db_session, a.id) == []


def test_delete_relation(db_session, trio):
    a, b, _ = trio
    memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.3)
    db_session.commit()
    assert memory_relations.delete_relation(db_session, a.id, b.id, "supports") is True
    assert memory_relations.delete_relation(db_session, a.id, b.id, "supports") is False


def test_hard_delete_removes_edges_and_history(db_session, trio):
    a, b, c = trio
    memory_relations.upsert_relation(db_session, a.id, b.id, "supports", 0.3)
    memory_relations.upsert_relation(db_session, c.id, a.id, "supports", 0.3)
    memory_relations.upsert_relation(db_session, b.id, c.id, "supports", 0.3)
    db_session.add(MemoryAccessEvent(memory_id=a.id, access_type="search"))
    db_session.commit()

    assert memory_store.hard_delete_memories(db_session, [a.id]) == 1
    db_session.commit()

    remaining = db_session.query(MemoryRelation).all()
    assert [(r.source_memory_id, r.target_memory_id) for r in remaining] == [(b.id, c.id)]
    assert db_session.query(MemoryAccessEvent).filter(MemoryAccessEvent.memory_id == a.id).count() == 0


def test_unknown_direction_rejected(db_session, trio):
    a, _, _ = trio
    with pytest.raises(ValidationIssue):
        memory_relations.relations_for_memory(db_session, a.id, "sideways")
