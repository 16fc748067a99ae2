"""docchat_rag.retrieval.types

Shared type definitions for the retrieval layer.

This module defines the protocols through which the engine talks to its
collaborators (persistence and conversation history) and the cancellation
token used to abandon superseded retrieval cycles.

Classes
-------
Retriever
    Protocol defining the minimal retriever interface.
ChunkRepository
    Persistence collaborator used to rehydrate the chunk store.
ConversationHistory
    Access to recent conversation turns.
CancellationToken
    Thread-safe flag signalling that a retrieval cycle was superseded.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterable, List, Protocol, Sequence

from docchat_rag.common.errors import RetrievalCancelled
from docchat_rag.common.schemas import Chunk, Document, Message

if TYPE_CHECKING:
    from docchat_rag.retrieval.retriever import RetrievalResult


class Retriever(Protocol):
    """Protocol defining the retriever interface.

    Methods
    -------
    retrieve
        Rank the accessible chunks for a query.
    """
    def retrieve(
            self,
            query: str,
            accessible_document_ids: Iterable[str],
            conversation_memory: Sequence[Message] = (),
            **kwargs,
        ) -> "RetrievalResult":
        """Retrieve ranked chunks for a query.

        Parameters
        ----------
        query : str
            Natural-language query string.
        accessible_document_ids : Iterable[str]
            Documents the caller may read.
        conversation_memory : Sequence[Message], optional
            Recent conversation turns.

        Returns
        -------
        RetrievalResult
            Ranked chunks plus query metadata.
        """
        ...


class ChunkRepository(Protocol):
    """Persistence collaborator used to rehydrate a chunk store on start-up."""

    def load_documents(self, accessible_document_ids: Iterable[str] | None = None) -> List[Document]:
        """Return stored documents, optionally restricted to ``accessible_document_ids``."""
        ...

    def load_chunks(self, accessible_document_ids: Iterable[str] | None = None) -> List[Chunk]:
        """Return stored chunks, optionally restricted to ``accessible_document_ids``."""
        ...


class ConversationHistory(Protocol):
    """Access to the recent turns of a session."""

    def recent_messages(self, session_id: str, limit: int = 6) -> List[Message]:
        """Return at most ``limit`` messages, oldest first."""
        ...

    def append(self, session_id: str, role: str, content: str) -> Message:
        """Record a turn for ``session_id``."""
        ...

    def clear(self, session_id: str) -> None:
        """Forget every turn of ``session_id``."""
        ...


class CancellationToken:
    """Thread-safe cancellation flag for one retrieval cycle."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`RetrievalCancelled` if the token was cancelled."""
        if self._event.is_set():
            raise RetrievalCancelled("Retrieval cycle was superseded by a newer query.")


__all__ = [
    "Retriever",
    "ChunkRepository",
    "ConversationHistory",
    "CancellationToken",
]
