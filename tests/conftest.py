import hashlib
import os
import re

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "exact")
os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("REQUIRE_API_KEY", "false")

import pytest
from sqlalchemy import create_engine

import semantic_memory.config as config
from semantic_memory.db import DB, bind_engine
from semantic_memory.models import Base
from semantic_memory.services import access_ledger, memory_shared

_TOKEN = re.compile(r"[a-z0-9]+")


def fake_embedding(text: str) -> list[float]:
    """Hashed bag-of-words; texts sharing words get positive cosine similarity."""
    vector = [0.0] * config.EMBEDDING_DIM
    for token in _TOKEN.findall(text.lower()):
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        vector[int.from_bytes(digest[:4], "big") % config.EMBEDDING_DIM] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


def basis_vector(*weights: float) -> list[float]:
    """Embedding whose leading components are ``weights``, rest zero."""
    vector = [0.0] * config.EMBEDDING_DIM
    for index, weight in enumerate(weights):
        vector[index] = float(weight)
    return vector


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "semantic_memory.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    bind_engine(engine)
    memory_shared.embedding_circuit_breaker.reset()
    try:
        yield engine
    finally:
        access_ledger.drain_pending(timeout=5)
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_embeddings(monkeypatch):
    monkeypatch.setattr(memory_shared, "embed_text_sync", fake_embedding)
    return fake_embedding
