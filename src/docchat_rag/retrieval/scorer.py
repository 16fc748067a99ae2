"""docchat_rag.retrieval.scorer

Six-signal relevance scoring for query/chunk pairs.

Every chunk is scored on semantic similarity, keyword overlap, exact
phrase containment, keyword proximity, question-answer shape and a static
quality prior. The combined score is the weighted sum of the six signals
under a :class:`ScoringWeights` vector that always sums to one.

Classes
-------
ScoringWeights
    Immutable, validated weight vector.
QueryFeatures
    Query-side terms computed once per retrieval and reused for every chunk.
Scorer
    Computes :class:`~docchat_rag.common.schemas.ScoredChunk` records.

Functions
---------
cosine_similarity
    Cosine similarity of two vectors; ``0.0`` on mismatch or zero norm.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import asdict, dataclass, fields
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np

from docchat_rag.common.errors import ConfigurationError
from docchat_rag.common.schemas import Chunk, Query, ScoredChunk, SourceType
from docchat_rag.retrieval import query_analysis as qa

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6
DEFAULT_MIN_CHUNK_LENGTH = 100
MIN_PHRASE_TOKENS = 3

SOURCE_CONFIDENCE: dict[SourceType, float] = {
    SourceType.TEXT: 1.0,
    SourceType.MARKDOWN: 1.0,
    SourceType.STRUCTURED: 1.0,
    SourceType.CSV: 1.0,
    SourceType.CODE: 1.0,
    SourceType.DOCX: 0.9,
    SourceType.PDF: 0.9,
    SourceType.OCR: 0.6,
    SourceType.UNKNOWN: 0.8,
}

QA_SHAPE_CREDIT = 0.6
QA_KEYWORD_CREDIT = 0.4


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the six relevance signals.

    The vector is validated on construction: every weight must be
    non-negative and the weights must sum to ``1`` within ``1e-6``.

    Raises
    ------
    ConfigurationError
        If the weights are negative or do not sum to one.
    """

    semantic: float = 0.40
    keyword: float = 0.20
    exact_phrase: float = 0.15
    proximity: float = 0.10
    qa: float = 0.10
    quality: float = 0.05

    def __post_init__(self):
        values = self.as_dict()
        negative = [name for name, value in values.items() if value < 0 or not math.isfinite(value)]
        if negative:
            raise ConfigurationError(f"Scoring weights must be finite and non-negative: {negative}")
        total = sum(values.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Scoring weights must sum to 1, got {total:.6f}")

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "ScoringWeights":
        """Build weights from a mapping that names all six signals.

        An empty or missing mapping yields the defaults. Weights are replaced
        as a whole, so a partial mapping is rejected.
        """
        if not config:
            return cls()

        names = [f.name for f in fields(cls)]
        missing = [n for n in names if n not in config]
        unknown = [k for k in config if k not in names]
        if missing or unknown:
            raise ConfigurationError(
                f"Scoring weights must name exactly {names}; missing={missing}, unknown={unknown}"
            )
        try:
            return cls(**{n: float(config[n]) for n in names})
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid scoring weight: {exc}") from exc

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    def without_semantic(self) -> "ScoringWeights":
        """Return weights with the semantic share spread over the other five.

        Each remaining weight is scaled by ``1 / (1 - semantic)`` so the
        result again sums to one.

        Raises
        ------
        ConfigurationError
            If every weight is on the semantic signal.
        """
        remaining = 1.0 - self.semantic
        if remaining <= WEIGHT_TOLERANCE:
            raise ConfigurationError("Cannot renormalise weights: all weight is on the semantic signal")
        return ScoringWeights(
            semantic=0.0,
            keyword=self.keyword / remaining,
            exact_phrase=self.exact_phrase / remaining,
            proximity=self.proximity / remaining,
            qa=self.qa / remaining,
            quality=self.quality / remaining,
        )


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity of ``a`` and ``b`` in ``[-1, 1]``.

    Returns ``0.0`` when either vector is missing, the lengths differ, or
    either vector has zero norm.
    """
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    cos = float(np.dot(va, vb)) / (na * nb)
    return max(-1.0, min(1.0, cos))


@dataclass(frozen=True)
class QueryFeatures:
    """Per-query terms shared across all chunks of one retrieval.

    Attributes
    ----------
    query : Query
        The query being scored.
    keywords : tuple[str, ...]
        Distinct content tokens of the query.
    keyword_stems : tuple[str, ...]
        Distinct stems of ``keywords`` in first-seen order; the keyword
        denominator. ``"invoice"`` and ``"invoices"`` count once.
    phrases : tuple[str, ...]
        Space-joined token phrases checked for exact containment, longest
        first: the whole query, then every sub-phrase of at least three
        tokens containing a keyword.
    interrogative : bool
        Whether the query is a question.
    question_type : str
        Expected answer shape, see :func:`query_analysis.question_type`.
    vector : numpy.ndarray or None
        Query embedding, or ``None`` in degraded mode.
    """

    query: Query
    keywords: tuple[str, ...]
    keyword_stems: tuple[str, ...]
    phrases: tuple[str, ...]
    interrogative: bool
    question_type: str
    vector: Optional[np.ndarray]


def _query_phrases(tokens: Sequence[str], keywords: Iterable[str]) -> tuple[str, ...]:
    if not tokens:
        return ()
    keyword_set = set(keywords)
    phrases = [" ".join(tokens)]
    for length in range(len(tokens) - 1, MIN_PHRASE_TOKENS - 1, -1):
        for start in range(0, len(tokens) - length + 1):
            window = tokens[start:start + length]
            if keyword_set.intersection(window):
                phrases.append(" ".join(window))
    return tuple(dict.fromkeys(phrases))


def _minimal_window(positions: Sequence[tuple[int, str]], required: int) -> int:
    """Length of the shortest span of ``positions`` covering ``required`` distinct terms."""
    best = math.inf
    counts: dict[str, int] = {}
    left = 0
    for pos, term in positions:
        counts[term] = counts.get(term, 0) + 1
        while len(counts) == required:
            start, left_term = positions[left]
            best = min(best, pos - start + 1)
            counts[left_term] -= 1
            if counts[left_term] == 0:
                del counts[left_term]
            left += 1
    return int(best)


class Scorer:
    """Score chunks against a query.

    Parameters
    ----------
    weights : ScoringWeights or None, optional
        Weight vector. Defaults to ``ScoringWeights()``.
    min_chunk_length : int, optional
        Chunks shorter than this many characters receive a proportionally
        reduced quality score. Defaults to ``100``.

    Notes
    -----
    Scoring is a pure function of the query, the chunk and the weights. The
    only state the scorer keeps is the set of chunk ids whose embedding
    dimension mismatch has already been logged.
    """

    def __init__(
            self,
            weights: Optional[ScoringWeights] = None,
            min_chunk_length: int = DEFAULT_MIN_CHUNK_LENGTH,
        ):
        if min_chunk_length <= 0:
            raise ConfigurationError(f"min_chunk_length must be positive, got {min_chunk_length}")
        self.weights = weights or ScoringWeights()
        self.degraded_weights = self.weights.without_semantic()
        self.min_chunk_length = int(min_chunk_length)
        self._mismatch_logged: set[int] = set()
        self._log_lock = threading.Lock()

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "Scorer":
        """Create a scorer from the ``scoring`` configuration section."""
        cfg = dict(config or {})
        return cls(
            weights=ScoringWeights.from_config_dict(cfg.get("weights")),
            min_chunk_length=int(cfg.get("min_chunk_length", DEFAULT_MIN_CHUNK_LENGTH)),
        )

    def prepare(self, query: Query) -> QueryFeatures:
        """Compute the query-side terms used by every signal."""
        tokens = qa.tokenize(query.normalized_text)
        keywords = tuple(qa.content_tokens(query.normalized_text))
        vector = None
        if query.embedding is not None:
            vector = np.asarray(query.embedding, dtype=np.float64)
        return QueryFeatures(
            query=query,
            keywords=keywords,
            keyword_stems=tuple(dict.fromkeys(qa.stem(k) for k in keywords)),
            phrases=_query_phrases(tokens, keywords),
            interrogative=qa.is_interrogative(query.raw_text),
            question_type=qa.question_type(query.normalized_text),
            vector=vector,
        )

    def score(self, query: Query | QueryFeatures, chunk: Chunk) -> ScoredChunk:
        """Score a single chunk.

        Parameters
        ----------
        query : Query or QueryFeatures
            The query, or features already computed by :meth:`prepare`.
        chunk : Chunk
            Candidate chunk.

        Returns
        -------
        ScoredChunk
            All six signals plus the combined score.
        """
        features = query if isinstance(query, QueryFeatures) else self.prepare(query)

        chunk_tokens = qa.tokenize(chunk.text)
        chunk_stems = [qa.stem(t) for t in chunk_tokens]
        stem_set = set(chunk_stems)
        matched = {s for s in features.keyword_stems if s in stem_set}

        semantic = self._semantic(features, chunk)
        keyword = len(matched) / len(features.keyword_stems) if features.keyword_stems else 0.0
        exact_phrase = self._exact_phrase(features, chunk_tokens)
        proximity = self._proximity(matched, chunk_stems)
        qa_score = self._qa(features, chunk, bool(matched))
        quality = self.quality(chunk)

        weights = self.degraded_weights if features.vector is None else self.weights
        combined = (
            weights.semantic * semantic
            + weights.keyword * keyword
            + weights.exact_phrase * exact_phrase
            + weights.proximity * proximity
            + weights.qa * qa_score
            + weights.quality * quality
        )

        return ScoredChunk(
            chunk=chunk,
            semantic_score=semantic,
            keyword_score=keyword,
            exact_phrase_score=exact_phrase,
            proximity_score=proximity,
            qa_score=qa_score,
            quality_score=quality,
            combined_score=combined,
        )

    def score_many(self, query: Query | QueryFeatures, chunks: Iterable[Chunk]) -> list[ScoredChunk]:
        features = query if isinstance(query, QueryFeatures) else self.prepare(query)
        return [self.score(features, chunk) for chunk in chunks]

    # ----------------- signals -----------------

    def _semantic(self, features: QueryFeatures, chunk: Chunk) -> float:
        if features.vector is None or chunk.embedding is None:
            return 0.0
        if len(chunk.embedding) != len(features.vector):
            self._log_mismatch(chunk, len(features.vector))
            return 0.0
        return (cosine_similarity(features.vector, chunk.embedding) + 1.0) / 2.0

    @staticmethod
    def _exact_phrase(features: QueryFeatures, chunk_tokens: Sequence[str]) -> float:
        if not features.phrases or not chunk_tokens:
            return 0.0
        haystack = f" {' '.join(chunk_tokens)} "
        for phrase in features.phrases:
            if f" {phrase} " in haystack:
                return 1.0
        return 0.0

    @staticmethod
    def _proximity(matched: set[str], chunk_stems: Sequence[str]) -> float:
        if len(matched) < 2:
            return 0.0
        positions = [(i, s) for i, s in enumerate(chunk_stems) if s in matched]
        window = _minimal_window(positions, len(matched))
        return min(1.0, len(matched) / window)

    @staticmethod
    def _qa(features: QueryFeatures, chunk: Chunk, shares_keyword: bool) -> float:
        """Question-answer signal.

        Only questions answered by content of the expected shape score: the
        shape match earns ``0.6`` and sharing at least one query keyword adds
        ``0.4`` on top. Anything else scores ``0``.
        """
        if not features.interrogative:
            return 0.0
        if not qa.matches_answer_shape(features.question_type, chunk.text):
            return 0.0
        score = QA_SHAPE_CREDIT
        if shares_keyword:
            score += QA_KEYWORD_CREDIT
        return min(1.0, score)

    def quality(self, chunk: Chunk) -> float:
        """Static quality prior of ``chunk`` in ``[0, 1]``."""
        confidence = SOURCE_CONFIDENCE.get(chunk.metadata.source_type, SOURCE_CONFIDENCE[SourceType.UNKNOWN])
        length = len(chunk.text.strip())
        length_factor = min(1.0, length / self.min_chunk_length)
        return max(0.0, min(1.0, chunk.metadata.quality_hint * confidence * length_factor))

    def _log_mismatch(self, chunk: Chunk, expected: int) -> None:
        with self._log_lock:
            if chunk.id in self._mismatch_logged:
                return
            self._mismatch_logged.add(chunk.id)
        logger.warning(
            "Chunk %s has embedding dimension %d but the query has %d; semantic score set to 0",
            chunk.id, len(chunk.embedding or ()), expected,
        )


__all__ = [
    "ScoringWeights",
    "QueryFeatures",
    "Scorer",
    "cosine_similarity",
    "SOURCE_CONFIDENCE",
]
