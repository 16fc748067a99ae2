"""docchat_rag.pipelines.ingestion_pipeline

Write-path orchestration: chunk extracted text, embed each chunk and store
it.

A chunk whose embedding fails is still stored, without a vector, so it
remains reachable through the lexical signals.

Classes
-------
IngestionPipeline
    Ingests and deletes documents.
"""

from __future__ import annotations

import logging
from pathlib import PurePath
from typing import Optional

from docchat_rag.common.errors import DocChatError, EmbeddingUnavailable
from docchat_rag.common.schemas import Document, SourceType, Visibility
from docchat_rag.retrieval.chunk_store import ChunkStore
from docchat_rag.retrieval.document_store import InMemoryChunkRepository
from docchat_rag.retrieval.embedder import EmbeddingClient
from docchat_rag.retrieval.text_splitter import TextChunker

logger = logging.getLogger(__name__)

_SUFFIX_SOURCE_TYPES: dict[str, SourceType] = {
    ".txt": SourceType.TEXT,
    ".text": SourceType.TEXT,
    ".md": SourceType.MARKDOWN,
    ".markdown": SourceType.MARKDOWN,
    ".csv": SourceType.CSV,
    ".tsv": SourceType.CSV,
    ".json": SourceType.STRUCTURED,
    ".yaml": SourceType.STRUCTURED,
    ".yml": SourceType.STRUCTURED,
    ".xml": SourceType.STRUCTURED,
    ".py": SourceType.CODE,
    ".js": SourceType.CODE,
    ".ts": SourceType.CODE,
    ".java": SourceType.CODE,
    ".pdf": SourceType.PDF,
    ".docx": SourceType.DOCX,
    ".png": SourceType.OCR,
    ".jpg": SourceType.OCR,
    ".jpeg": SourceType.OCR,
}


def infer_source_type(filename: str) -> SourceType:
    """Guess the extraction source of a file from its suffix."""
    return _SUFFIX_SOURCE_TYPES.get(PurePath(filename).suffix.lower(), SourceType.UNKNOWN)


class IngestionPipeline:
    """Chunk, embed and store documents.

    Parameters
    ----------
    store : ChunkStore
        Destination store.
    chunker : TextChunker
        Splits document text into chunk drafts.
    embedding_client : EmbeddingClient or None
        Embeds chunk text. ``None`` stores every chunk without a vector.
    repository : InMemoryChunkRepository or None, optional
        Persistence collaborator mirrored on every write.
    """

    def __init__(
            self,
            store: ChunkStore,
            chunker: TextChunker,
            embedding_client: Optional[EmbeddingClient],
            repository: Optional[InMemoryChunkRepository] = None,
        ):
        self.store = store
        self.chunker = chunker
        self.embedding_client = embedding_client
        self.repository = repository

    def ingest_text(
            self,
            filename: str,
            text: str,
            document_type: Optional[str] = None,
            visibility: Visibility | str = Visibility.PRIVATE,
            source_type: SourceType | str | None = None,
        ) -> Document:
        """Ingest extracted text as a new document.

        Parameters
        ----------
        filename : str
            Display name of the document.
        text : str
            Extracted text.
        document_type : str or None, optional
            Type label. Defaults to the filename suffix.
        visibility : Visibility or str, optional
            Defaults to ``PRIVATE``.
        source_type : SourceType or str or None, optional
            Extraction source. Inferred from ``filename`` when omitted.

        Returns
        -------
        Document
            The stored document with its final ``chunk_count``.

        Raises
        ------
        ValueError
            If ``filename`` or ``text`` is empty.
        ChunkEmbeddingDimensionMismatch
            If the embedder returns vectors of a different dimension than the
            store holds. Nothing is stored.

        Notes
        -----
        Every chunk is embedded before the store is touched; the document
        and its chunks are then published together, so concurrent
        retrievals see either none or all of them. Any error raised while
        embedding leaves the store unchanged.
        """
        if not filename or not filename.strip():
            raise ValueError("filename must be non-empty")
        if not text or not text.strip():
            raise ValueError(f"No text extracted from {filename}")

        source = SourceType.coerce(source_type) if source_type else infer_source_type(filename)
        document = Document(
            filename=filename,
            type=document_type or PurePath(filename).suffix.lstrip(".").lower() or "txt",
            size_bytes=len(text.encode("utf-8")),
            visibility=Visibility(visibility),
        )

        drafts = self.chunker.chunk_document(document.id, text, source)
        embeddings = [self._embed(draft.text) for draft in drafts]
        failed = sum(1 for e in embeddings if e is None)

        try:
            stored, chunks = self.store.ingest_document(document, drafts, embeddings)
        except DocChatError:
            logger.exception("Ingestion of %s rejected", filename)
            raise

        if self.repository is not None:
            try:
                self.repository.save_document(stored)
                self.repository.save_chunks(chunks)
            except BaseException:
                logger.exception("Persisting %s failed; rolling back", filename)
                self.store.delete_document(stored.id)
                self.repository.delete_document(stored.id)
                raise

        if failed:
            logger.warning("%d of %d chunks of %s stored without embeddings", failed, len(chunks), filename)
        logger.info("Ingested %s as %s: %d chunks", filename, stored.id, stored.chunk_count)
        return stored

    def delete_document(self, document_id: str) -> int:
        """Delete a document and its chunks from the store and repository.

        Raises
        ------
        UnknownDocument
            If the document is not in the store.
        """
        removed = self.store.delete_document(document_id)
        if self.repository is not None:
            self.repository.delete_document(document_id)
        return removed

    def set_visibility(self, document_id: str, visibility: Visibility | str) -> Document:
        document = self.store.set_visibility(document_id, Visibility(visibility))
        if self.repository is not None:
            self.repository.save_document(document)
        return document

    def _embed(self, text: str) -> Optional[tuple[float, ...]]:
        if self.embedding_client is None:
            return None
        try:
            return self.embedding_client.embed(text)
        except EmbeddingUnavailable as exc:
            logger.warning("Embedding failed for chunk; storing without vector: %s", exc)
            return None


__all__ = ["IngestionPipeline", "infer_source_type"]
