"""
Pytest configuration and fixtures for chatrecall tests.

This module provides shared fixtures for database sessions, export documents
and a deterministic embedding client.
"""

import hashlib
import json
import zipfile
from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from chatrecall.db.connection import build_engine, enable_sqlite_savepoints, init_db
from chatrecall.embeddings.service import EmbeddingService
from chatrecall.models.db import Base

FAKE_DIMENSION = 8


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Commits inside the code under test only release savepoints; the outer
    transaction is rolled back after the test, ensuring isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection, autoflush=False, join_transaction_mode="create_savepoint"
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def file_engine(tmp_path: Path):
    """File-backed SQLite engine, visible from worker threads."""
    engine = build_engine(f"sqlite:///{tmp_path / 'chatrecall.db'}", echo=False)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine) -> Callable:
    """Context manager factory matching ``background_session`` for the file engine."""
    factory = sessionmaker(bind=file_engine, autoflush=False)

    @contextmanager
    def session_scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


class FakeEmbeddingClient:
    """
    Stand-in for ``OpenAI`` exposing ``embeddings.create``.

    Vectors come from ``vectors`` when the text is listed there, otherwise
    from a hash of the text, so results are deterministic.
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        dimension: int = FAKE_DIMENSION,
        errors: Optional[Dict[str, Exception]] = None,
        reverse: bool = False,
        on_create: Optional[Callable[[List[str]], None]] = None,
    ):
        self.vectors = vectors or {}
        self.dimension = dimension
        self.errors = errors or {}
        self.reverse = reverse
        self.on_create = on_create
        self.calls: List[List[str]] = []
        self.embeddings = self

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[: self.dimension]]

    def create(self, model: str, input: List[str], **kwargs: Any) -> SimpleNamespace:
        self.calls.append(list(input))
        for text in input:
            if text in self.errors:
                raise self.errors[text]
        if self.on_create is not None:
            self.on_create(list(input))

        data = [
            SimpleNamespace(index=i, embedding=self.vector_for(text))
            for i, text in enumerate(input)
        ]
        if self.reverse:
            data.reverse()
        return SimpleNamespace(data=data)


@pytest.fixture
def fake_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def embedding_service(fake_client: FakeEmbeddingClient) -> EmbeddingService:
    return EmbeddingService(client=fake_client, model="test-embedding", max_chars=1000)


def _node(node_id: str, message: Optional[dict], parent: Optional[str], children: List[str]) -> dict:
    return {"id": node_id, "message": message, "parent": parent, "children": children}


def make_turn(
    node_id: str,
    role: str,
    *parts: Any,
    hidden: bool = False,
    create_time: Optional[float] = None,
) -> dict:
    """A message payload for an export node."""
    message = {
        "id": node_id,
        "author": {"role": role},
        "create_time": create_time,
        "content": {"content_type": "text", "parts": list(parts)},
    }
    if hidden:
        message["metadata"] = {"is_visually_hidden_from_conversation": True}
    return message


def make_conversation(
    title: Optional[str],
    create_time: float,
    turns: List[dict],
    update_time: Optional[float] = None,
) -> dict:
    """A raw export conversation whose turns form a single chain under a root node."""
    mapping = {}
    ids = [turn["id"] for turn in turns]
    mapping["root"] = _node("root", None, None, ids[:1])
    for position, turn in enumerate(turns):
        parent = ids[position - 1] if position else "root"
        children = ids[position + 1 : position + 2]
        mapping[turn["id"]] = _node(turn["id"], turn, parent, children)

    return {
        "title": title,
        "create_time": create_time,
        "update_time": update_time,
        "mapping": mapping,
    }


def image_part(file_id: str, scheme: str = "file-service") -> dict:
    return {"content_type": "image_asset_pointer", "asset_pointer": f"{scheme}://{file_id}"}


@pytest.fixture
def export_builder() -> SimpleNamespace:
    """Helpers for building raw export documents."""
    return SimpleNamespace(
        turn=make_turn, conversation=make_conversation, image=image_part
    )


@pytest.fixture
def write_export(tmp_path: Path) -> Callable:
    """Write conversations to a ``conversations.json`` file."""

    def _write(conversations: List[dict], name: str = "conversations.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(conversations), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_archive(tmp_path: Path) -> Callable:
    """Write a zip export holding ``conversations.json`` plus asset files."""

    def _write(
        conversations: List[dict],
        assets: Optional[Dict[str, bytes]] = None,
        name: str = "export.zip",
        prefix: str = "",
    ) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr(f"{prefix}conversations.json", json.dumps(conversations))
            for asset_name, data in (assets or {}).items():
                zf.writestr(f"{prefix}{asset_name}", data)
        return path

    return _write
