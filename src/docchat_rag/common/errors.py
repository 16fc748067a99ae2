"""docchat_rag.common.errors

Exception hierarchy for the retrieval engine.

Only :class:`InvalidQuery` is surfaced to callers of the query path as a hard
error. The other conditions are either handled by degrading the result
(:class:`EmbeddingUnavailable`) or belong to the write path and to
configuration loading.
"""

from __future__ import annotations


class DocChatError(Exception):
    """Base class for all errors raised by ``docchat_rag``."""


class InvalidQuery(DocChatError, ValueError):
    """The query text is empty or whitespace only."""


class EmbeddingUnavailable(DocChatError):
    """The embedding collaborator failed or timed out."""


class ChunkEmbeddingDimensionMismatch(DocChatError, ValueError):
    """A chunk vector does not match the store dimension.

    Parameters
    ----------
    expected : int
        Store dimension.
    actual : int
        Dimension of the offending vector.
    """

    def __init__(self, expected: int, actual: int, message: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Embedding dimension {actual} does not match store dimension {expected}."
        )


class DuplicateChunkIndex(DocChatError, ValueError):
    """A chunk with the same ``(document_id, index)`` pair is already stored."""


class UnknownDocument(DocChatError, KeyError):
    """The referenced document id is not registered in the store."""


class RetrievalCancelled(DocChatError):
    """The retrieval cycle was superseded by a newer query for the same session."""


class ConfigurationError(DocChatError, ValueError):
    """A configuration section or value is invalid."""


__all__ = [
    "DocChatError",
    "InvalidQuery",
    "EmbeddingUnavailable",
    "ChunkEmbeddingDimensionMismatch",
    "DuplicateChunkIndex",
    "UnknownDocument",
    "RetrievalCancelled",
    "ConfigurationError",
]
