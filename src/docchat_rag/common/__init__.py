"""
Common building blocks shared across the retrieval engine.

This package provides the typed schemas, the exception hierarchy and the
token counters imported by every other layer.

Classes
-------
Document
    An ingested document.
Chunk
    A stored, embedded slice of a document.
ChunkMetadata
    Typed per-chunk metadata.
ScoredChunk
    A chunk with its six relevance signals.
Message
    One conversation turn.
Query
    Per-call query state.

See Also
--------
docchat_rag.common.schemas
docchat_rag.common.errors
docchat_rag.common.tokenisation
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    Chunk,
    ChunkMetadata,
    ConversationMemory,
    Document,
    Message,
    Query,
    ResponseLength,
    ScoredChunk,
    SourceType,
    Visibility,
)

DocId: TypeAlias = str
ChunkId: TypeAlias = int

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "ConversationMemory",
    "Document",
    "Message",
    "Query",
    "ResponseLength",
    "ScoredChunk",
    "SourceType",
    "Visibility",
    "DocId",
    "ChunkId",
]
