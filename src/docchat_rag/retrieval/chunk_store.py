"""docchat_rag.retrieval.chunk_store

In-memory chunk store for brute-force retrieval.

The store owns the documents and chunks of a corpus and is passed explicitly
to the retriever. It is single-writer, many-reader: writers serialise on a
lock and publish a fresh immutable tuple of chunks on every insertion, so a
reader's snapshot always contains whole chunks only.

Classes
-------
ChunkStore
    Document and chunk registry with write-time validation.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
from typing import Iterable, Optional, Sequence

from docchat_rag.common.errors import (
    ChunkEmbeddingDimensionMismatch,
    DuplicateChunkIndex,
    UnknownDocument,
)
from docchat_rag.common.schemas import Chunk, ChunkMetadata, Document, Visibility
from docchat_rag.retrieval.types import ChunkRepository

logger = logging.getLogger(__name__)


class ChunkStore:
    """Holds documents and their embedded chunks.

    Parameters
    ----------
    dimension : int or None, optional
        Embedding dimension D. If ``None``, D is fixed by the first embedded
        chunk inserted.

    Notes
    -----
    Chunk ids are assigned from a monotonically increasing counter starting
    at ``1``; rehydrated chunks keep their persisted ids and advance the
    counter past them.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._lock = threading.RLock()
        self._dimension = dimension
        self._documents: dict[str, Document] = {}
        self._chunks: tuple[Chunk, ...] = ()
        self._keys: set[tuple[str, int]] = set()
        self._counts: dict[str, int] = {}
        self._ids = itertools.count(1)
        self._max_id = 0

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return len(self._chunks)

    # ----------------- documents -----------------

    def add_document(self, document: Document) -> Document:
        """Register ``document``; re-registering an id replaces its record."""
        with self._lock:
            self._documents[document.id] = document
        return document

    def get_document(self, document_id: str) -> Document:
        """Return the document registered under ``document_id``.

        Raises
        ------
        UnknownDocument
            If no such document is registered.
        """
        try:
            return self._documents[document_id]
        except KeyError:
            raise UnknownDocument(document_id) from None

    def documents(self) -> list[Document]:
        """Return all registered documents."""
        return list(self._documents.values())

    def document_names(self, document_ids: Optional[Iterable[str]] = None) -> dict[str, str]:
        """Map document ids to filenames, optionally restricted to ``document_ids``."""
        docs = self._documents
        ids = docs.keys() if document_ids is None else [d for d in document_ids if d in docs]
        return {doc_id: docs[doc_id].filename for doc_id in ids}

    def set_visibility(self, document_id: str, visibility: Visibility) -> Document:
        """Change the visibility of a document."""
        with self._lock:
            document = dataclasses.replace(self.get_document(document_id), visibility=Visibility(visibility))
            self._documents[document_id] = document
        return document

    def accessible_document_ids(self, owned_document_ids: Iterable[str] = ()) -> list[str]:
        """Return the owned ids that exist plus every public document id."""
        owned = set(owned_document_ids)
        return [
            doc_id
            for doc_id, doc in self._documents.items()
            if doc_id in owned or doc.visibility is Visibility.PUBLIC
        ]

    def delete_document(self, document_id: str) -> int:
        """Remove a document and all of its chunks.

        Returns
        -------
        int
            Number of chunks removed.
        """
        with self._lock:
            self.get_document(document_id)
            kept = tuple(c for c in self._chunks if c.document_id != document_id)
            removed = len(self._chunks) - len(kept)
            self._chunks = kept
            self._keys = {k for k in self._keys if k[0] != document_id}
            self._counts.pop(document_id, None)
            del self._documents[document_id]

        logger.info("Deleted document %s and %d chunks", document_id, removed)
        return removed

    # ----------------- chunks -----------------

    def ingest_chunk(
            self,
            chunk_text: str,
            document_id: str,
            chunk_index: int,
            metadata: Optional[ChunkMetadata] = None,
            embedding: Optional[Sequence[float]] = None,
        ) -> Chunk:
        """Validate and insert a single chunk.

        Parameters
        ----------
        chunk_text : str
            Non-empty chunk text.
        document_id : str
            Id of a registered document.
        chunk_index : int
            0-based position within the document; must be unused.
        metadata : ChunkMetadata or None, optional
            Typed metadata. Defaults to ``ChunkMetadata()``.
        embedding : Sequence[float] or None, optional
            Vector of the store dimension, or ``None`` if the embedding
            collaborator failed for this chunk.

        Returns
        -------
        Chunk
            The stored chunk.

        Raises
        ------
        ValueError
            If the text is empty or the index is negative.
        UnknownDocument
            If ``document_id`` is not registered.
        ChunkEmbeddingDimensionMismatch
            If ``embedding`` does not match the store dimension.
        DuplicateChunkIndex
            If ``(document_id, chunk_index)`` is already stored.
        """
        if not chunk_text or not chunk_text.strip():
            raise ValueError("chunk_text must be non-empty")
        if chunk_index < 0:
            raise ValueError(f"chunk_index must be >= 0, got {chunk_index}")

        vector = tuple(float(v) for v in embedding) if embedding is not None else None

        with self._lock:
            self.get_document(document_id)
            if vector is not None:
                self._check_dimension(vector)
            key = (document_id, int(chunk_index))
            if key in self._keys:
                raise DuplicateChunkIndex(f"Chunk {chunk_index} of document {document_id} already exists")

            if vector is not None and self._dimension is None:
                self._dimension = len(vector)
                logger.info("Chunk store dimension fixed at %d", self._dimension)

            chunk = Chunk(
                id=self._next_id(),
                document_id=document_id,
                index=int(chunk_index),
                text=chunk_text,
                embedding=vector,
                metadata=metadata or ChunkMetadata(),
            )
            self._publish(chunk)
        return chunk

    def ingest_document(
            self,
            document: Document,
            drafts: Sequence,
            embeddings: Sequence[Optional[Sequence[float]]],
        ) -> tuple[Document, list[Chunk]]:
        """Register ``document`` together with all of its chunks at once.

        Every chunk is validated before anything is stored. The document and
        its chunks then become visible in one step, so readers never observe
        a partially ingested document.

        Parameters
        ----------
        document : Document
            New document; its id must not be registered yet.
        drafts : Sequence
            Chunk records with ``text``, ``index`` and ``metadata``
            attributes, such as
            :class:`~docchat_rag.retrieval.text_splitter.ChunkDraft`.
        embeddings : Sequence[Sequence[float] or None]
            One vector (or ``None``) per draft.

        Returns
        -------
        tuple[Document, list[Chunk]]
            The registered document with its ``chunk_count`` and the stored
            chunks in draft order.

        Raises
        ------
        ValueError
            If the document is already registered, ``drafts`` and
            ``embeddings`` differ in length, or a chunk has empty text or a
            negative index.
        ChunkEmbeddingDimensionMismatch
            If any vector disagrees with the store dimension or with the
            other vectors of the document.
        DuplicateChunkIndex
            If two drafts share an index.
        """
        if len(drafts) != len(embeddings):
            raise ValueError(f"Got {len(drafts)} chunks but {len(embeddings)} embeddings")

        vectors = [tuple(float(v) for v in e) if e is not None else None for e in embeddings]
        seen: set[int] = set()
        for draft in drafts:
            if not draft.text or not draft.text.strip():
                raise ValueError("chunk_text must be non-empty")
            if draft.index < 0:
                raise ValueError(f"chunk_index must be >= 0, got {draft.index}")
            if draft.index in seen:
                raise DuplicateChunkIndex(f"Chunk {draft.index} of document {document.id} already exists")
            seen.add(int(draft.index))

        with self._lock:
            if document.id in self._documents:
                raise ValueError(f"Document {document.id} is already registered")

            dimension = self._dimension
            for vector in vectors:
                if vector is None:
                    continue
                if dimension is None:
                    dimension = len(vector)
                elif len(vector) != dimension:
                    raise ChunkEmbeddingDimensionMismatch(dimension, len(vector))
            if dimension != self._dimension:
                self._dimension = dimension
                logger.info("Chunk store dimension fixed at %d", dimension)

            chunks = [
                Chunk(
                    id=self._next_id(),
                    document_id=document.id,
                    index=int(draft.index),
                    text=draft.text,
                    embedding=vector,
                    metadata=draft.metadata or ChunkMetadata(),
                )
                for draft, vector in zip(drafts, vectors)
            ]
            stored = dataclasses.replace(document, chunk_count=len(chunks))
            self._documents[document.id] = stored
            self._counts[document.id] = len(chunks)
            self._keys.update((document.id, c.index) for c in chunks)
            self._chunks = self._chunks + tuple(chunks)
        return stored, chunks

    def snapshot(self, accessible_document_ids: Optional[Iterable[str]] = None) -> tuple[Chunk, ...]:
        """Return the current chunks, optionally filtered by document id.

        The returned tuple is immutable and unaffected by later writes.
        """
        chunks = self._chunks
        if accessible_document_ids is None:
            return chunks
        allowed = set(accessible_document_ids)
        return tuple(c for c in chunks if c.document_id in allowed)

    def chunks_for_document(self, document_id: str) -> list[Chunk]:
        """Return the chunks of one document ordered by index."""
        return sorted(self.snapshot([document_id]), key=lambda c: c.index)

    def rehydrate(
            self,
            repository: ChunkRepository,
            accessible_document_ids: Optional[Iterable[str]] = None,
        ) -> int:
        """Load persisted documents and chunks from ``repository``.

        Chunks whose vectors disagree with the store dimension are kept and
        logged: they are excluded from semantic scoring only. Chunks that
        reference unknown documents or duplicate an existing index are
        skipped.

        Returns
        -------
        int
            Number of chunks loaded.
        """
        ids = None if accessible_document_ids is None else list(accessible_document_ids)
        loaded = 0

        with self._lock:
            for document in repository.load_documents(ids):
                self._documents[document.id] = document

            for chunk in repository.load_chunks(ids):
                if chunk.document_id not in self._documents:
                    logger.warning("Skipping chunk %s: unknown document %s", chunk.id, chunk.document_id)
                    continue
                key = (chunk.document_id, chunk.index)
                if key in self._keys:
                    logger.warning("Skipping chunk %s: duplicate index %s", chunk.id, key)
                    continue
                if chunk.embedding is not None:
                    if self._dimension is None:
                        self._dimension = len(chunk.embedding)
                    elif len(chunk.embedding) != self._dimension:
                        logger.warning(
                            "Chunk %s has embedding dimension %d, store dimension is %d; "
                            "it will be excluded from semantic scoring",
                            chunk.id, len(chunk.embedding), self._dimension,
                        )
                if chunk.id > self._max_id:
                    self._max_id = chunk.id
                    self._ids = itertools.count(chunk.id + 1)
                self._publish(chunk)
                loaded += 1

        logger.info("Rehydrated %d chunks from %s", loaded, type(repository).__name__)
        return loaded

    def _check_dimension(self, vector: tuple[float, ...]) -> None:
        if self._dimension is not None and len(vector) != self._dimension:
            raise ChunkEmbeddingDimensionMismatch(self._dimension, len(vector))

    def _next_id(self) -> int:
        chunk_id = next(self._ids)
        self._max_id = max(self._max_id, chunk_id)
        return chunk_id

    def _publish(self, chunk: Chunk) -> None:
        self._chunks = self._chunks + (chunk,)
        self._keys.add((chunk.document_id, chunk.index))
        count = self._counts.get(chunk.document_id, 0) + 1
        self._counts[chunk.document_id] = count
        document = self._documents[chunk.document_id]
        self._documents[chunk.document_id] = dataclasses.replace(document, chunk_count=count)


__all__ = ["ChunkStore"]
