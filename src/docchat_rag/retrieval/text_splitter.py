"""docchat_rag.retrieval.text_splitter

Overlapping window chunking for extracted document text.

Text is split into windows of whitespace-delimited tokens. Consecutive
windows share exactly ``overlap`` tokens, splits only ever happen at
whitespace, and the result depends on nothing but ``(text, size, overlap)``.

Classes
-------
ChunkDraft
    A chunk produced for a document before it is embedded and stored.
TextChunker
    Chunker bound to a size/overlap configuration.

Functions
---------
chunk_text
    Split text into overlapping windows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from docchat_rag.common.schemas import ChunkMetadata, SourceType

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50

# Extraction confidence recorded on chunks at ingestion time.
_SOURCE_QUALITY_HINTS: dict[SourceType, float] = {
    SourceType.OCR: 0.6,
    SourceType.UNKNOWN: 0.8,
}


def chunk_text(
        text: str,
        size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> list[str]:
    """Split ``text`` into overlapping windows of whitespace tokens.

    Parameters
    ----------
    text : str
        Raw extracted text.
    size : int, optional
        Maximum number of tokens per window. Defaults to ``500``.
    overlap : int, optional
        Number of tokens shared by consecutive windows. Defaults to ``50``.

    Returns
    -------
    list[str]
        Window texts in document order, each a single-space join of its
        tokens. Empty when ``text`` holds no tokens.

    Raises
    ------
    ValueError
        If ``size`` is not positive or ``overlap`` is not in ``[0, size)``.

    Notes
    -----
    The window stride is ``size - overlap``. The last window always ends at
    the final token, so no trailing window consists solely of overlap.
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    if overlap < 0 or overlap >= size:
        raise ValueError(f"overlap must satisfy 0 <= overlap < size, got overlap={overlap}, size={size}")

    tokens = (text or "").split()
    if not tokens:
        return []

    stride = size - overlap
    windows: list[str] = []
    start = 0
    while True:
        end = min(start + size, len(tokens))
        windows.append(" ".join(tokens[start:end]))
        if end >= len(tokens):
            break
        start += stride

    return windows


@dataclass(frozen=True)
class ChunkDraft:
    """A chunk awaiting embedding.

    Attributes
    ----------
    index : int
        0-based position within the document.
    text : str
        Chunk text.
    metadata : ChunkMetadata
        Metadata recorded with the stored chunk.
    """

    index: int
    text: str
    metadata: ChunkMetadata


class TextChunker:
    """Chunk extracted document text into :class:`ChunkDraft` records.

    Parameters
    ----------
    size : int, optional
        Tokens per window. Defaults to ``500``.
    overlap : int, optional
        Tokens shared by consecutive windows. Defaults to ``50``.
    """

    def __init__(
            self,
            size: int = DEFAULT_CHUNK_SIZE,
            overlap: int = DEFAULT_CHUNK_OVERLAP,
        ):
        if size <= 0 or overlap < 0 or overlap >= size:
            raise ValueError(f"Invalid chunking configuration: size={size}, overlap={overlap}")
        self.size = int(size)
        self.overlap = int(overlap)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "TextChunker":
        """Create a chunker from the ``chunking`` configuration section."""
        cfg = dict(config or {})
        return cls(
            size=int(cfg.get("size", DEFAULT_CHUNK_SIZE)),
            overlap=int(cfg.get("overlap", DEFAULT_CHUNK_OVERLAP)),
        )

    def chunk(self, text: str) -> list[str]:
        """Split ``text`` with this chunker's configuration."""
        return chunk_text(text, size=self.size, overlap=self.overlap)

    def chunk_document(
            self,
            document_id: str,
            text: str,
            source_type: SourceType | str = SourceType.TEXT,
        ) -> list[ChunkDraft]:
        """Chunk a document's text and attach per-chunk metadata.

        Parameters
        ----------
        document_id : str
            Owning document id (used for logging only).
        text : str
            Extracted document text.
        source_type : SourceType or str, optional
            Extraction source. OCR text receives a lower quality hint.

        Returns
        -------
        list[ChunkDraft]
            Drafts indexed from ``0`` in document order.
        """
        source = SourceType.coerce(source_type)
        quality_hint = _SOURCE_QUALITY_HINTS.get(source, 1.0)
        metadata = ChunkMetadata(source_type=source, quality_hint=quality_hint)

        drafts = [
            ChunkDraft(index=i, text=window, metadata=metadata)
            for i, window in enumerate(self.chunk(text))
        ]
        logger.debug("Chunked document %s into %d chunks", document_id, len(drafts))
        return drafts


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_CHUNK_OVERLAP",
    "chunk_text",
    "ChunkDraft",
    "TextChunker",
]
