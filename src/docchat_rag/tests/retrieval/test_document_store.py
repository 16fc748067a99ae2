import json

import pytest

from docchat_rag.common.errors import ConfigurationError
from docchat_rag.common.schemas import Chunk, ChunkMetadata, Document, SourceType, Visibility
from docchat_rag.retrieval.chunk_store import ChunkStore
from docchat_rag.retrieval.document_store import (
    InMemoryChunkRepository,
    InMemoryConversationHistory,
    JsonFileChunkRepository,
    create_chunk_repository,
)


def _make_document(name: str = "notes.md") -> Document:
    return Document(filename=name, type="md", size_bytes=42, visibility=Visibility.PUBLIC)


def _make_chunk(document_id: str, chunk_id: int, embedding=None) -> Chunk:
    return Chunk(
        id=chunk_id,
        document_id=document_id,
        index=chunk_id - 1,
        text=f"chunk number {chunk_id}",
        embedding=embedding,
        metadata=ChunkMetadata(source_type=SourceType.MARKDOWN, quality_hint=0.9),
    )


def test_json_repository_persists_across_instances(tmp_path):
    """
    Documents and chunks written by one repository are read back by a new
    instance pointing at the same file.
    """
    path = tmp_path / "store" / "snapshot.json"
    doc = _make_document()
    chunks = [_make_chunk(doc.id, 1, embedding=(0.1, 0.2)), _make_chunk(doc.id, 2)]

    repo = JsonFileChunkRepository(path)
    repo.save_document(doc)
    repo.save_chunks(chunks)

    reopened = JsonFileChunkRepository(path)

    assert reopened.load_documents() == [doc]
    assert reopened.load_chunks() == chunks
    assert json.loads(path.read_text(encoding="utf-8"))["version"] == 1


def test_json_repository_delete_removes_document_and_chunks(tmp_path):
    """
    Deleting a document is persisted and drops its chunks.
    """
    path = tmp_path / "snapshot.json"
    keep, drop = _make_document("keep.md"), _make_document("drop.md")

    repo = JsonFileChunkRepository(path)
    for d in (keep, drop):
        repo.save_document(d)
    repo.save_chunks([_make_chunk(keep.id, 1), _make_chunk(drop.id, 2)])
    repo.delete_document(drop.id)

    reopened = JsonFileChunkRepository(path)

    assert [d.id for d in reopened.load_documents()] == [keep.id]
    assert [c.document_id for c in reopened.load_chunks()] == [keep.id]


def test_json_repository_rejects_unknown_snapshot_version(tmp_path):
    """
    A snapshot written with another format version is refused.
    """
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"version": 99, "documents": [], "chunks": []}), encoding="utf-8")

    with pytest.raises(ConfigurationError):
        JsonFileChunkRepository(path)


def test_repository_load_filters_by_document_ids():
    """
    ``load_*`` honour the accessible-document filter.
    """
    repo = InMemoryChunkRepository()
    a, b = _make_document("a.md"), _make_document("b.md")
    repo.save_document(a)
    repo.save_document(b)
    repo.save_chunks([_make_chunk(a.id, 1), _make_chunk(b.id, 2)])

    assert [d.id for d in repo.load_documents([b.id])] == [b.id]
    assert [c.id for c in repo.load_chunks([b.id])] == [2]


def test_store_rehydrates_from_json_snapshot(tmp_path):
    """
    A chunk store rebuilt from a JSON snapshot serves the same chunks.
    """
    path = tmp_path / "snapshot.json"
    doc = _make_document()
    repo = JsonFileChunkRepository(path)
    repo.save_document(doc)
    repo.save_chunks([_make_chunk(doc.id, 1, embedding=(1.0, 0.0)), _make_chunk(doc.id, 2, embedding=(0.0, 1.0))])

    store = ChunkStore()
    store.rehydrate(JsonFileChunkRepository(path))

    assert len(store) == 2
    assert store.dimension == 2
    assert store.get_document(doc.id).visibility is Visibility.PUBLIC


@pytest.mark.parametrize(
    "cfg, expected",
    [
        ({}, InMemoryChunkRepository),
        ({"kind": "memory"}, InMemoryChunkRepository),
    ],
)
def test_create_chunk_repository_kinds(cfg, expected):
    """
    The factory defaults to the in-memory repository.
    """
    assert type(create_chunk_repository(cfg)) is expected


def test_create_chunk_repository_json_requires_path(tmp_path):
    """
    ``kind: json`` needs a path; unknown kinds are rejected.
    """
    with pytest.raises(ConfigurationError):
        create_chunk_repository({"kind": "json"})
    with pytest.raises(ConfigurationError):
        create_chunk_repository({"kind": "qdrant"})

    repo = create_chunk_repository({"kind": "json", "path": str(tmp_path / "s.json")})
    assert isinstance(repo, JsonFileChunkRepository)


def test_conversation_history_returns_latest_messages_in_order():
    """
    ``recent_messages`` returns at most ``limit`` messages, oldest first, and
    sessions are kept apart.
    """
    history = InMemoryConversationHistory()
    for i in range(8):
        history.append("s1", "user" if i % 2 == 0 else "assistant", f"m{i}")
    history.append("s2", "user", "other")

    recent = history.recent_messages("s1", limit=6)

    assert [m.content for m in recent] == ["m2", "m3", "m4", "m5", "m6", "m7"]
    assert [m.content for m in history.recent_messages("s2")] == ["other"]
    assert history.recent_messages("s1", limit=0) == []

    history.clear("s1")
    assert history.recent_messages("s1") == []


def test_conversation_history_evicts_least_recent_session():
    """
    Beyond ``max_sessions`` the session written longest ago is dropped, so
    memory stays bounded however many session ids are seen.
    """
    history = InMemoryConversationHistory(max_messages=3, max_sessions=2)
    history.append("s1", "user", "one")
    history.append("s2", "user", "two")
    history.append("s1", "assistant", "again")
    history.append("s3", "user", "three")

    assert len(history) == 2
    assert history.recent_messages("s2") == []
    assert [m.content for m in history.recent_messages("s1")] == ["one", "again"]

    for i in range(5):
        history.append("s3", "user", f"t{i}")
    assert [m.content for m in history.recent_messages("s3")] == ["t2", "t3", "t4"]


def test_conversation_history_from_config_validates_limits():
    """
    Limits come from the ``history`` section and must be positive.
    """
    history = InMemoryConversationHistory.from_config_dict({"max_sessions": 10})

    assert history.max_sessions == 10
    assert history.max_messages == 100
    with pytest.raises(ConfigurationError):
        InMemoryConversationHistory(max_sessions=0)
