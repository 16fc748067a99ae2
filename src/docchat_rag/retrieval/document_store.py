"""docchat_rag.retrieval.document_store

Persistence collaborators for documents, chunks and conversation turns.

Repositories satisfy the :class:`~docchat_rag.retrieval.types.ChunkRepository`
protocol and additionally accept writes from the ingestion pipeline, so
that a :class:`~docchat_rag.retrieval.chunk_store.ChunkStore` can be
rehydrated on start-up.

Classes
-------
InMemoryChunkRepository
    Process-local repository, mainly for tests.
JsonFileChunkRepository
    Repository persisted as a single JSON snapshot on disk.
InMemoryConversationHistory
    Per-session message log.

Functions
---------
create_chunk_repository
    Build a repository from the ``storage`` configuration section.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections import OrderedDict, deque
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Union

from docchat_rag.common.errors import ConfigurationError
from docchat_rag.common.schemas import (
    Chunk,
    ChunkMetadata,
    Document,
    Message,
    SourceType,
    Visibility,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _filter(items: Iterable, ids: Optional[Iterable[str]], key) -> list:
    if ids is None:
        return list(items)
    allowed = set(ids)
    return [item for item in items if key(item) in allowed]


class InMemoryChunkRepository:
    """Repository holding documents and chunks in process memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}
        self._chunks: dict[int, Chunk] = {}

    def save_document(self, document: Document) -> None:
        with self._lock:
            self._documents[document.id] = document

    def save_chunks(self, chunks: Iterable[Chunk]) -> None:
        with self._lock:
            for chunk in chunks:
                self._chunks[chunk.id] = chunk

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)
            self._chunks = {cid: c for cid, c in self._chunks.items() if c.document_id != document_id}

    def load_documents(self, accessible_document_ids: Optional[Iterable[str]] = None) -> List[Document]:
        with self._lock:
            return _filter(self._documents.values(), accessible_document_ids, lambda d: d.id)

    def load_chunks(self, accessible_document_ids: Optional[Iterable[str]] = None) -> List[Chunk]:
        with self._lock:
            chunks = sorted(self._chunks.values(), key=lambda c: c.id)
            return _filter(chunks, accessible_document_ids, lambda c: c.document_id)


class JsonFileChunkRepository(InMemoryChunkRepository):
    """Repository persisted to a JSON file.

    The file is read once on construction and rewritten atomically after
    every write.

    Parameters
    ----------
    path : str or Path
        Snapshot location. Parent directories are created on first write.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._read()

    def save_document(self, document: Document) -> None:
        with self._lock:
            super().save_document(document)
            self._write()

    def save_chunks(self, chunks: Iterable[Chunk]) -> None:
        with self._lock:
            super().save_chunks(chunks)
            self._write()

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            super().delete_document(document_id)
            self._write()

    def _read(self) -> None:
        with self.path.open("r", encoding="utf-8") as f:
            payload = json.load(f)

        version = payload.get("version", SNAPSHOT_VERSION)
        if version != SNAPSHOT_VERSION:
            raise ConfigurationError(f"Unsupported snapshot version {version} in {self.path}")

        for raw in payload.get("documents", []):
            document = _document_from_dict(raw)
            self._documents[document.id] = document
        for raw in payload.get("chunks", []):
            chunk = _chunk_from_dict(raw)
            self._chunks[chunk.id] = chunk

        logger.info(
            "Loaded %d documents and %d chunks from %s",
            len(self._documents), len(self._chunks), self.path,
        )

    def _write(self) -> None:
        payload = {
            "version": SNAPSHOT_VERSION,
            "documents": [_document_to_dict(d) for d in self._documents.values()],
            "chunks": [_chunk_to_dict(c) for c in sorted(self._chunks.values(), key=lambda c: c.id)],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def _document_to_dict(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "filename": document.filename,
        "type": document.type,
        "size_bytes": document.size_bytes,
        "chunk_count": document.chunk_count,
        "visibility": document.visibility.value,
    }


def _document_from_dict(raw: Mapping[str, Any]) -> Document:
    return Document(
        id=str(raw["id"]),
        filename=raw["filename"],
        type=raw.get("type", ""),
        size_bytes=int(raw.get("size_bytes", 0)),
        chunk_count=int(raw.get("chunk_count", 0)),
        visibility=Visibility(raw.get("visibility", Visibility.PRIVATE.value)),
    )


def _chunk_to_dict(chunk: Chunk) -> dict[str, Any]:
    return {
        "id": chunk.id,
        "document_id": chunk.document_id,
        "index": chunk.index,
        "text": chunk.text,
        "embedding": list(chunk.embedding) if chunk.embedding is not None else None,
        "metadata": {
            "source_type": chunk.metadata.source_type.value,
            "quality_hint": chunk.metadata.quality_hint,
        },
    }


def _chunk_from_dict(raw: Mapping[str, Any]) -> Chunk:
    meta = raw.get("metadata") or {}
    embedding = raw.get("embedding")
    return Chunk(
        id=int(raw["id"]),
        document_id=str(raw["document_id"]),
        index=int(raw["index"]),
        text=raw["text"],
        embedding=tuple(float(v) for v in embedding) if embedding else None,
        metadata=ChunkMetadata(
            source_type=SourceType.coerce(meta.get("source_type")),
            quality_hint=float(meta.get("quality_hint", 1.0)),
        ),
    )


class InMemoryConversationHistory:
    """Per-session conversation log.

    Parameters
    ----------
    max_messages : int, optional
        Messages retained per session; older ones are discarded.
    max_sessions : int, optional
        Sessions retained; appending to a new session beyond this evicts the
        least recently written one.
    """

    def __init__(self, max_messages: int = 100, max_sessions: int = 1000):
        if max_messages <= 0 or max_sessions <= 0:
            raise ConfigurationError("max_messages and max_sessions must be positive")
        self.max_messages = int(max_messages)
        self.max_sessions = int(max_sessions)
        self._lock = threading.Lock()
        self._sessions: OrderedDict[str, deque[Message]] = OrderedDict()

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "InMemoryConversationHistory":
        """Create a history from the ``history`` configuration section."""
        cfg = dict(config or {})
        return cls(
            max_messages=int(cfg.get("max_messages", 100)),
            max_sessions=int(cfg.get("max_sessions", 1000)),
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def append(self, session_id: str, role: str, content: str) -> Message:
        message = Message(role=role, content=content)
        with self._lock:
            messages = self._sessions.get(session_id)
            if messages is None:
                messages = self._sessions[session_id] = deque(maxlen=self.max_messages)
            self._sessions.move_to_end(session_id)
            messages.append(message)
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted conversation history of session %s", evicted)
        return message

    def recent_messages(self, session_id: str, limit: int = 6) -> List[Message]:
        """Return at most ``limit`` of the session's latest messages, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            messages = list(self._sessions.get(session_id, ()))
        return messages[-limit:]

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


def create_chunk_repository(config: Mapping[str, Any] | None) -> InMemoryChunkRepository:
    """Create a repository from the ``storage`` configuration section.

    ``kind: memory`` (the default) keeps everything in process;
    ``kind: json`` persists to ``path``.

    Raises
    ------
    ConfigurationError
        If the kind is unknown or ``path`` is missing for ``json``.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("kind", "memory")).strip().lower()
    if kind in {"memory", "in_memory", "inmemory"}:
        return InMemoryChunkRepository()
    if kind in {"json", "json_file", "file"}:
        path = cfg.get("path")
        if not path:
            raise ConfigurationError("storage.path is required for kind 'json'")
        return JsonFileChunkRepository(path)
    raise ConfigurationError(f"Unknown storage kind: {kind!r}. Use 'memory' or 'json'.")


__all__ = [
    "InMemoryChunkRepository",
    "JsonFileChunkRepository",
    "InMemoryConversationHistory",
    "create_chunk_repository",
]
