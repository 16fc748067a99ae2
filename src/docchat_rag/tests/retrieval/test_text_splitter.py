import pytest

from docchat_rag.common.schemas import SourceType
from docchat_rag.retrieval.text_splitter import TextChunker, chunk_text


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def test_chunk_text_empty_input_returns_no_windows():
    """
    Whitespace-only text has no tokens, so no chunks are produced.
    """
    assert chunk_text("   \n\t ") == []
    assert chunk_text("") == []


def test_chunk_text_short_text_is_single_window():
    """
    Text shorter than the window size comes back as one normalised window.
    """
    assert chunk_text("alpha   beta\ngamma", size=10, overlap=2) == ["alpha beta gamma"]


def test_chunk_text_consecutive_windows_share_exact_overlap():
    """
    Each window shares exactly ``overlap`` tokens with the next one, and the
    stride is ``size - overlap``.
    """
    windows = chunk_text(_words(25), size=10, overlap=3)

    for prev, nxt in zip(windows, windows[1:]):
        assert prev.split()[-3:] == nxt.split()[:3]

    assert windows[0].split()[0] == "w0"
    assert windows[1].split()[0] == "w7"


def test_chunk_text_last_window_ends_at_final_token():
    """
    The last window always ends at the final token and is never pure overlap.
    """
    windows = chunk_text(_words(20), size=10, overlap=5)

    assert windows[-1].split()[-1] == "w19"
    assert windows == [
        " ".join(f"w{i}" for i in range(0, 10)),
        " ".join(f"w{i}" for i in range(5, 15)),
        " ".join(f"w{i}" for i in range(10, 20)),
    ]


def test_chunk_text_is_idempotent():
    """
    Chunking the same text twice yields identical windows.
    """
    text = _words(123)
    assert chunk_text(text, size=20, overlap=4) == chunk_text(text, size=20, overlap=4)


@pytest.mark.parametrize(
    "size, overlap",
    [(0, 0), (-5, 0), (10, 10), (10, 12), (10, -1)],
)
def test_chunk_text_rejects_invalid_parameters(size, overlap):
    """
    ``size`` must be positive and ``overlap`` must lie in ``[0, size)``.
    """
    with pytest.raises(ValueError):
        chunk_text("some text here", size=size, overlap=overlap)


def test_text_chunker_from_config_dict_and_chunk_document_metadata():
    """
    The chunker reads ``size``/``overlap`` from config and attaches per-source
    metadata with a lower quality hint for OCR text.
    """
    chunker = TextChunker.from_config_dict({"size": 4, "overlap": 1})
    drafts = chunker.chunk_document("doc-1", _words(10), SourceType.OCR)

    assert [d.index for d in drafts] == list(range(len(drafts)))
    assert all(d.metadata.source_type is SourceType.OCR for d in drafts)
    assert all(d.metadata.quality_hint == pytest.approx(0.6) for d in drafts)

    text_drafts = chunker.chunk_document("doc-2", _words(3), SourceType.TEXT)
    assert len(text_drafts) == 1
    assert text_drafts[0].metadata.quality_hint == pytest.approx(1.0)
