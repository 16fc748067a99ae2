"""docchat_rag.common.schemas

Core data schemas shared across the retrieval engine.

These dataclasses describe the canonical shapes passed between ingestion,
chunking, embedding, scoring, context assembly and generation. They are
frozen: a stored :class:`Chunk` is never mutated after insertion, and the few
mutable :class:`Document` fields are updated by replacing the instance inside
the owning store.

Classes
-------
Visibility
    Who may see a document (owner only or everyone).
SourceType
    Closed set of extraction sources a chunk can originate from.
ResponseLength
    Desired answer shape inferred from query phrasing.
Document
    An ingested document.
ChunkMetadata
    Typed per-chunk metadata.
Chunk
    A stored, embedded slice of a document's text.
Message
    One conversation turn.
Query
    Per-call query state.
ScoredChunk
    A chunk together with its six relevance signals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple
from uuid import uuid4


class Visibility(str, Enum):
    """Document visibility."""

    PRIVATE = "private"
    PUBLIC = "public"


class SourceType(str, Enum):
    """Extraction source of a chunk's text.

    The value drives the static quality signal: text produced by native
    parsers is trusted more than text recovered through OCR.
    """

    TEXT = "text"
    MARKDOWN = "markdown"
    STRUCTURED = "structured"
    CSV = "csv"
    CODE = "code"
    PDF = "pdf"
    DOCX = "docx"
    OCR = "ocr"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: "SourceType | str | None") -> "SourceType":
        """Return ``value`` as a :class:`SourceType`, mapping unknown strings to ``UNKNOWN``."""
        if isinstance(value, SourceType):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class ResponseLength(str, Enum):
    """Desired answer shape."""

    BRIEF = "brief"
    LIST = "list"
    DETAILED = "detailed"
    BALANCED = "balanced"


@dataclass(frozen=True)
class Document:
    """An ingested document.

    Attributes
    ----------
    filename : str
        Display name of the document, used to tag context excerpts.
    type : str
        Coarse document type label (e.g. ``"pdf"``, ``"txt"``).
    size_bytes : int
        Size of the extracted text in bytes.
    id : str
        Unique identifier. Defaults to a random UUID4 string.
    chunk_count : int
        Number of chunks stored for the document.
    visibility : Visibility
        Owner-private or public.
    """

    filename: str
    type: str
    size_bytes: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    chunk_count: int = 0
    visibility: Visibility = Visibility.PRIVATE


@dataclass(frozen=True)
class ChunkMetadata:
    """Typed chunk metadata.

    Attributes
    ----------
    source_type : SourceType
        Extraction source of the chunk text.
    quality_hint : float
        Extraction confidence in ``[0, 1]``. Defaults to ``1.0``.
    """

    source_type: SourceType = SourceType.UNKNOWN
    quality_hint: float = 1.0

    def __post_init__(self):
        if not 0.0 <= float(self.quality_hint) <= 1.0:
            raise ValueError(f"quality_hint must be within [0, 1], got {self.quality_hint!r}")


@dataclass(frozen=True)
class Chunk:
    """A stored slice of a document's extracted text.

    Attributes
    ----------
    id : int
        Store-assigned identifier; the ranking tie-breaker.
    document_id : str
        Identifier of the owning :class:`Document`.
    index : int
        0-based position of the chunk within its document.
    text : str
        Non-empty chunk text.
    embedding : tuple[float, ...] or None
        Embedding vector, or ``None`` if the embedding collaborator failed
        while the chunk was ingested.
    metadata : ChunkMetadata
        Typed metadata.
    """

    id: int
    document_id: str
    index: int
    text: str
    embedding: Optional[Tuple[float, ...]] = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass(frozen=True)
class Message:
    """One conversation turn (``role`` is ``"user"`` or ``"assistant"``)."""

    role: str
    content: str


@dataclass(frozen=True)
class Query:
    """Per-call query state.

    Attributes
    ----------
    raw_text : str
        Text as typed by the user.
    normalized_text : str
        Lower-cased, whitespace-collapsed text.
    embedding : tuple[float, ...] or None
        Query vector; ``None`` signals degraded mode.
    length_hint : ResponseLength
        Desired answer shape.
    """

    raw_text: str
    normalized_text: str
    embedding: Optional[Tuple[float, ...]] = None
    length_hint: ResponseLength = ResponseLength.BALANCED

    @property
    def degraded(self) -> bool:
        return self.embedding is None


@dataclass(frozen=True)
class ScoredChunk:
    """A chunk with its six relevance signals and their weighted combination."""

    chunk: Chunk
    semantic_score: float
    keyword_score: float
    exact_phrase_score: float
    proximity_score: float
    qa_score: float
    quality_score: float
    combined_score: float

    def signals(self) -> dict[str, float]:
        """Return the six signals keyed by name."""
        return {
            "semantic": self.semantic_score,
            "keyword": self.keyword_score,
            "exact_phrase": self.exact_phrase_score,
            "proximity": self.proximity_score,
            "qa": self.qa_score,
            "quality": self.quality_score,
        }


ConversationMemory = Sequence[Message]


__all__ = [
    "Visibility",
    "SourceType",
    "ResponseLength",
    "Document",
    "ChunkMetadata",
    "Chunk",
    "Message",
    "Query",
    "ScoredChunk",
    "ConversationMemory",
]
