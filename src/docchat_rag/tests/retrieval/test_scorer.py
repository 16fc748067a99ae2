import math

import pytest

from docchat_rag.common.errors import ConfigurationError
from docchat_rag.common.schemas import Chunk, ChunkMetadata, Query, SourceType
from docchat_rag.retrieval import query_analysis as qa
from docchat_rag.retrieval.scorer import Scorer, ScoringWeights, cosine_similarity


def _make_query(text: str, embedding=None) -> Query:
    return Query(raw_text=text, normalized_text=qa.normalize(text), embedding=embedding)


def _make_chunk(text: str, chunk_id: int = 1, embedding=None, source_type=SourceType.TEXT) -> Chunk:
    return Chunk(
        id=chunk_id,
        document_id="doc-1",
        index=chunk_id - 1,
        text=text,
        embedding=embedding,
        metadata=ChunkMetadata(source_type=source_type),
    )


# ----------------- cosine -----------------


def test_cosine_similarity_identity_and_symmetry():
    """
    cos(v, v) is 1 and cos(a, b) == cos(b, a).
    """
    a = [0.3, -1.2, 2.0]
    b = [1.0, 0.5, -0.25]

    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0


@pytest.mark.parametrize(
    "a, b",
    [
        ([1.0, 2.0], [1.0, 2.0, 3.0]),
        ([0.0, 0.0], [1.0, 1.0]),
        (None, [1.0]),
        ([], []),
    ],
)
def test_cosine_similarity_degenerate_inputs_return_zero(a, b):
    """
    Mismatched lengths, zero vectors and missing vectors score 0 instead of
    raising.
    """
    assert cosine_similarity(a, b) == 0.0


# ----------------- weights -----------------


def test_default_weights_sum_to_one():
    """
    The default weight vector is valid and sums to 1.
    """
    weights = ScoringWeights()
    assert sum(weights.as_dict().values()) == pytest.approx(1.0)
    assert weights.semantic == pytest.approx(0.40)


def test_weights_that_do_not_sum_to_one_are_rejected():
    """
    Weight vectors must sum to 1 within tolerance.
    """
    with pytest.raises(ConfigurationError):
        ScoringWeights(semantic=0.5, keyword=0.5, exact_phrase=0.1, proximity=0.0, qa=0.0, quality=0.0)


def test_negative_weight_is_rejected():
    """
    Negative weights are invalid even if the total is 1.
    """
    with pytest.raises(ConfigurationError):
        ScoringWeights(semantic=0.6, keyword=0.5, exact_phrase=-0.1, proximity=0.0, qa=0.0, quality=0.0)


def test_weights_from_config_requires_all_six_names():
    """
    A partial mapping is rejected and an empty one yields the defaults.
    """
    assert ScoringWeights.from_config_dict({}) == ScoringWeights()
    with pytest.raises(ConfigurationError):
        ScoringWeights.from_config_dict({"semantic": 1.0})


def test_without_semantic_renormalises_remaining_weights():
    """
    Dropping the semantic signal rescales the other five so they sum to 1
    and keep their relative proportions.
    """
    degraded = ScoringWeights().without_semantic()

    assert degraded.semantic == 0.0
    assert sum(degraded.as_dict().values()) == pytest.approx(1.0)
    assert degraded.keyword == pytest.approx(0.20 / 0.60)
    assert degraded.keyword / degraded.quality == pytest.approx(0.20 / 0.05)


# ----------------- signals -----------------


def test_scores_are_bounded_and_combined_is_weighted_sum():
    """
    Every signal lies in [0, 1] and the combined score is the weighted sum
    under the active weights.
    """
    scorer = Scorer()
    query = _make_query("What is the invoice total?", embedding=(1.0, 0.0))
    chunk = _make_chunk("The invoice total is $450, due on March 3.", embedding=(0.6, 0.8))

    scored = scorer.score(query, chunk)
    signals = scored.signals()

    for name in ("semantic", "keyword", "exact_phrase", "proximity", "qa", "quality"):
        assert 0.0 <= signals[name] <= 1.0

    w = scorer.weights
    expected = (
        w.semantic * scored.semantic_score
        + w.keyword * scored.keyword_score
        + w.exact_phrase * scored.exact_phrase_score
        + w.proximity * scored.proximity_score
        + w.qa * scored.qa_score
        + w.quality * scored.quality_score
    )
    assert scored.combined_score == pytest.approx(expected)
    assert scored.semantic_score == pytest.approx((0.6 + 1.0) / 2.0)


def test_degraded_query_has_zero_semantic_and_uses_renormalised_weights():
    """
    Without a query embedding the semantic signal is 0 and the combined score
    uses the renormalised weights.
    """
    scorer = Scorer()
    chunk = _make_chunk("The invoice total is $450.", embedding=(1.0, 0.0))
    scored = scorer.score(_make_query("What is the invoice total?"), chunk)

    d = scorer.degraded_weights
    expected = (
        d.keyword * scored.keyword_score
        + d.exact_phrase * scored.exact_phrase_score
        + d.proximity * scored.proximity_score
        + d.qa * scored.qa_score
        + d.quality * scored.quality_score
    )
    assert scored.semantic_score == 0.0
    assert scored.combined_score == pytest.approx(expected)


def test_dimension_mismatch_scores_zero_semantic(caplog):
    """
    A chunk vector of a different dimension contributes 0 semantic score and
    the mismatch is logged once per chunk.
    """
    scorer = Scorer()
    query = _make_query("invoice", embedding=(1.0, 0.0, 0.0))
    chunk = _make_chunk("invoice details", embedding=(1.0, 0.0))

    with caplog.at_level("WARNING"):
        first = scorer.score(query, chunk)
        scorer.score(query, chunk)

    assert first.semantic_score == 0.0
    assert sum("embedding dimension" in r.getMessage() for r in caplog.records) == 1


def test_keyword_score_is_fraction_of_query_keywords_matched():
    """
    Keyword score counts distinct non-stopword query terms found in the
    chunk; plural forms match their singular.
    """
    scorer = Scorer()
    scored = scorer.score(_make_query("What is the invoice total?"), _make_chunk("Invoices are processed monthly."))

    assert scored.keyword_score == pytest.approx(0.5)
    assert scored.exact_phrase_score == 0.0
    assert scored.proximity_score == 0.0


def test_keyword_score_counts_shared_stems_once():
    """
    Query terms that reduce to the same stem count once, so a chunk holding
    every distinct stem reaches a keyword score of 1.
    """
    scorer = Scorer()
    query = _make_query("invoice invoices total")

    features = scorer.prepare(query)
    scored = scorer.score(features, _make_chunk("invoice total"))

    assert features.keyword_stems == ("invoice", "total")
    assert scored.keyword_score == pytest.approx(1.0)
    assert scored.proximity_score == pytest.approx(1.0)


def test_exact_phrase_matches_query_subphrase():
    """
    A chunk containing a three-token sub-phrase with a keyword scores 1 on
    the exact-phrase signal.
    """
    scorer = Scorer()
    query = _make_query("What is the invoice total?")

    hit = scorer.score(query, _make_chunk("Please check the invoice total before paying."))
    miss = scorer.score(query, _make_chunk("The total of the invoice is pending."))

    assert hit.exact_phrase_score == 1.0
    assert miss.exact_phrase_score == 0.0


def test_proximity_rewards_adjacent_keywords():
    """
    Keywords appearing next to each other score higher than keywords far
    apart; a single matched keyword scores 0.
    """
    scorer = Scorer()
    query = _make_query("invoice total")

    near = scorer.score(query, _make_chunk("invoice total"))
    far = scorer.score(query, _make_chunk("invoice " + "filler " * 8 + "total"))
    single = scorer.score(query, _make_chunk("invoice only"))

    assert near.proximity_score == pytest.approx(1.0)
    assert far.proximity_score == pytest.approx(2 / 10)
    assert single.proximity_score == 0.0


def test_qa_signal_only_for_questions():
    """
    The question-answer signal credits answer-shaped content for questions
    and is 0 for statements and for chunks lacking the expected shape, even
    when they share keywords.
    """
    scorer = Scorer()
    chunk = _make_chunk("The invoice total is $450.")

    question = scorer.score(_make_query("What is the invoice total?"), chunk)
    statement = scorer.score(_make_query("invoice total summary"), chunk)

    assert question.qa_score == pytest.approx(1.0)
    assert statement.qa_score == 0.0
    shape_only = scorer.score(_make_query("How many seats are left?"), _make_chunk("Tickets cost 12 euros."))
    no_date = scorer.score(
        _make_query("When was the contract signed?"),
        _make_chunk("The contract was reviewed by legal."),
    )
    dated = scorer.score(
        _make_query("When was the contract signed?"),
        _make_chunk("The contract was signed on 4 March 2024."),
    )

    assert shape_only.qa_score == pytest.approx(0.6)
    assert no_date.keyword_score > 0.0
    assert no_date.qa_score == 0.0
    assert dated.qa_score == pytest.approx(1.0)


def test_quality_prefers_longer_and_cleaner_sources():
    """
    Short chunks and OCR-derived chunks receive a lower quality prior.
    """
    scorer = Scorer(min_chunk_length=100)
    long_text = "x" * 150

    assert scorer.quality(_make_chunk(long_text)) == pytest.approx(1.0)
    assert scorer.quality(_make_chunk("x" * 50)) == pytest.approx(0.5)
    assert scorer.quality(_make_chunk(long_text, source_type=SourceType.OCR)) < 1.0


def test_scoring_is_deterministic():
    """
    Scoring the same query and chunk twice yields identical results.
    """
    scorer = Scorer()
    query = _make_query("How many invoices were paid in 2023?", embedding=(0.2, 0.9))
    chunk = _make_chunk("In 2023, 14 invoices were paid on time.", embedding=(0.1, 1.0))

    assert scorer.score(query, chunk) == scorer.score(query, chunk)
    assert math.isfinite(scorer.score(query, chunk).combined_score)
