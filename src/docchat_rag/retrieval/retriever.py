"""docchat_rag.retrieval.retriever

Brute-force contextual retrieval over a :class:`ChunkStore`.

A retrieval cycle classifies the requested response length, embeds the
query (falling back to lexical-only scoring when the embedding is
unavailable), restricts the store snapshot to the caller's accessible
documents, scores every surviving chunk and returns the top results.

Classes
-------
RetrievalResult
    Ranked chunks plus query metadata.
ContextualRetriever
    Six-signal retriever over an in-memory chunk store.
SessionRetrievalCoordinator
    Cancels a session's in-flight retrieval when a newer query arrives.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from docchat_rag.common.errors import EmbeddingUnavailable, InvalidQuery
from docchat_rag.common.schemas import Chunk, Message, Query, ResponseLength, ScoredChunk
from docchat_rag.retrieval import query_analysis as qa
from docchat_rag.retrieval.chunk_store import ChunkStore
from docchat_rag.retrieval.embedder import EmbeddingClient
from docchat_rag.retrieval.response_length import ResponseLengthClassifier
from docchat_rag.retrieval.scorer import QueryFeatures, Scorer
from docchat_rag.retrieval.types import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_MIN_SCORE = 0.1
DEFAULT_PARALLEL_THRESHOLD = 2000
DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of one retrieval cycle.

    Attributes
    ----------
    ranked_chunks : tuple[ScoredChunk, ...]
        At most ``top_k`` chunks ordered by descending combined score, ties
        broken by ascending chunk id.
    length_hint : ResponseLength
        Response length inferred from the query phrasing.
    degraded : bool
        ``True`` when the query embedding was unavailable and semantic
        scoring was skipped.
    query : Query
        The analysed query.
    """

    ranked_chunks: tuple[ScoredChunk, ...]
    length_hint: ResponseLength
    degraded: bool
    query: Query

    def __len__(self) -> int:
        return len(self.ranked_chunks)

    def __iter__(self):
        return iter(self.ranked_chunks)


def _rank_key(scored: ScoredChunk) -> tuple[float, int]:
    return (-scored.combined_score, scored.chunk.id)


class ContextualRetriever:
    """Score and rank every accessible chunk for a query.

    Parameters
    ----------
    store : ChunkStore
        Store holding the corpus.
    embedding_client : EmbeddingClient or None
        Query embedder. ``None`` makes every retrieval lexical-only.
    scorer : Scorer or None, optional
        Signal scorer. Defaults to ``Scorer()``.
    classifier : ResponseLengthClassifier or None, optional
        Response-length classifier. Defaults to ``ResponseLengthClassifier()``.
    top_k : int, optional
        Default result limit. Defaults to ``5``.
    min_score : float, optional
        Default combined-score floor. Defaults to ``0.1``.
    parallel_threshold : int, optional
        Candidate count above which scoring is spread over worker threads.
        Defaults to ``2000``.
    max_workers : int, optional
        Worker threads used for parallel scoring. Defaults to ``4``.
    """

    def __init__(
            self,
            store: ChunkStore,
            embedding_client: Optional[EmbeddingClient],
            scorer: Optional[Scorer] = None,
            classifier: Optional[ResponseLengthClassifier] = None,
            top_k: int = DEFAULT_TOP_K,
            min_score: float = DEFAULT_MIN_SCORE,
            parallel_threshold: int = DEFAULT_PARALLEL_THRESHOLD,
            max_workers: int = DEFAULT_MAX_WORKERS,
        ):
        self.store = store
        self.embedding_client = embedding_client
        self.scorer = scorer or Scorer()
        self.classifier = classifier or ResponseLengthClassifier()
        self.top_k = int(top_k)
        self.min_score = float(min_score)
        self.parallel_threshold = int(parallel_threshold)
        self.max_workers = max(1, int(max_workers))

    @classmethod
    def from_config_dict(
            cls,
            store: ChunkStore,
            embedding_client: Optional[EmbeddingClient],
            scorer: Optional[Scorer],
            config: Mapping[str, Any] | None,
        ) -> "ContextualRetriever":
        """Create a retriever from the ``retriever`` configuration section."""
        cfg = dict(config or {})
        return cls(
            store=store,
            embedding_client=embedding_client,
            scorer=scorer,
            top_k=int(cfg.get("top_k", DEFAULT_TOP_K)),
            min_score=float(cfg.get("min_score", DEFAULT_MIN_SCORE)),
            parallel_threshold=int(cfg.get("parallel_threshold", DEFAULT_PARALLEL_THRESHOLD)),
            max_workers=int(cfg.get("max_workers", DEFAULT_MAX_WORKERS)),
        )

    def retrieve(
            self,
            query: str,
            accessible_document_ids: Iterable[str],
            conversation_memory: Sequence[Message] = (),
            top_k: Optional[int] = None,
            min_score: Optional[float] = None,
            cancel: Optional[CancellationToken] = None,
        ) -> RetrievalResult:
        """Rank the accessible chunks for ``query``.

        Parameters
        ----------
        query : str
            User query. Must contain non-whitespace text.
        accessible_document_ids : Iterable[str]
            Documents the caller may read. Chunks of any other document are
            never returned.
        conversation_memory : Sequence[Message], optional
            Recent turns. Retrieval ranks on the current query only; memory is
            accepted so retrievers share one call signature.
        top_k : int or None, optional
            Result limit. Defaults to the retriever's ``top_k``.
        min_score : float or None, optional
            Combined-score floor. Defaults to the retriever's ``min_score``.
        cancel : CancellationToken or None, optional
            Token checked between stages.

        Returns
        -------
        RetrievalResult
            Possibly empty ranked result.

        Raises
        ------
        InvalidQuery
            If ``query`` is empty or whitespace.
        RetrievalCancelled
            If ``cancel`` fires before the cycle completes.
        """
        if query is None or not str(query).strip():
            raise InvalidQuery("Query must not be empty")

        raw_text = str(query)
        k = self.top_k if top_k is None else int(top_k)
        floor = self.min_score if min_score is None else float(min_score)
        length_hint = self.classifier.classify(raw_text)
        normalized = qa.normalize(raw_text)

        accessible = set(accessible_document_ids or ())
        if not accessible or k <= 0:
            return RetrievalResult(
                ranked_chunks=(),
                length_hint=length_hint,
                degraded=False,
                query=Query(raw_text=raw_text, normalized_text=normalized, length_hint=length_hint),
            )

        embedding = self._embed_query(raw_text, cancel)
        analysed = Query(
            raw_text=raw_text,
            normalized_text=normalized,
            embedding=embedding,
            length_hint=length_hint,
        )

        if cancel is not None:
            cancel.raise_if_cancelled()
        candidates = self.store.snapshot(accessible)

        features = self.scorer.prepare(analysed)
        scored = self._score(features, candidates)

        if cancel is not None:
            cancel.raise_if_cancelled()
        scored.sort(key=_rank_key)
        ranked = tuple(s for s in scored if s.combined_score >= floor)[:k]

        logger.debug(
            "Retrieved %d of %d candidates (degraded=%s, hint=%s)",
            len(ranked), len(candidates), analysed.degraded, length_hint.value,
        )
        return RetrievalResult(
            ranked_chunks=ranked,
            length_hint=length_hint,
            degraded=analysed.degraded,
            query=analysed,
        )

    __call__ = retrieve

    def _embed_query(self, text: str, cancel: Optional[CancellationToken]) -> Optional[tuple[float, ...]]:
        if self.embedding_client is None:
            return None
        try:
            vector = self.embedding_client.embed_query(text, cancel=cancel)
            dimension = self.store.dimension
            if dimension is not None and len(vector) != dimension:
                raise EmbeddingUnavailable(
                    f"query embedding has dimension {len(vector)} but the store holds dimension {dimension}"
                )
            return vector
        except EmbeddingUnavailable as exc:
            logger.warning("Query embedding unavailable, falling back to lexical scoring: %s", exc)
            return None

    def _score(self, features: QueryFeatures, candidates: Sequence[Chunk]) -> list[ScoredChunk]:
        if len(candidates) <= self.parallel_threshold or self.max_workers == 1:
            return self.scorer.score_many(features, candidates)

        size = -(-len(candidates) // self.max_workers)
        parts = [candidates[i:i + size] for i in range(0, len(candidates), size)]
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="docchat-score") as pool:
            results = pool.map(lambda part: self.scorer.score_many(features, part), parts)
            return [scored for part in results for scored in part]


class SessionRetrievalCoordinator:
    """Run retrievals so that each session has at most one live cycle.

    Starting a retrieval for a session cancels the token of that session's
    previous cycle. The superseded cycle raises
    :class:`~docchat_rag.common.errors.RetrievalCancelled` to its own caller
    and never affects the new one.
    """

    def __init__(self, retriever: ContextualRetriever):
        self.retriever = retriever
        self._lock = threading.Lock()
        self._tokens: dict[str, CancellationToken] = {}

    def retrieve(
            self,
            session_id: str,
            query: str,
            accessible_document_ids: Iterable[str],
            conversation_memory: Sequence[Message] = (),
            **kwargs,
        ) -> RetrievalResult:
        token = self._begin(session_id)
        try:
            return self.retriever.retrieve(
                query,
                accessible_document_ids,
                conversation_memory,
                cancel=token,
                **kwargs,
            )
        finally:
            self._end(session_id, token)

    def cancel(self, session_id: str) -> bool:
        """Cancel the live cycle of ``session_id``, if any."""
        with self._lock:
            token = self._tokens.pop(session_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def _begin(self, session_id: str) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            previous = self._tokens.get(session_id)
            self._tokens[session_id] = token
        if previous is not None:
            logger.debug("Superseding in-flight retrieval for session %s", session_id)
            previous.cancel()
        return token

    def _end(self, session_id: str, token: CancellationToken) -> None:
        with self._lock:
            if self._tokens.get(session_id) is token:
                del self._tokens[session_id]


__all__ = [
    "RetrievalResult",
    "ContextualRetriever",
    "SessionRetrievalCoordinator",
]
