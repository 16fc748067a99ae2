import asyncio
import threading
from types import SimpleNamespace

import pytest

from docchat_rag.common.errors import ConfigurationError, EmbeddingUnavailable, RetrievalCancelled
from docchat_rag.retrieval.embedder import BaseEmbedder, EmbeddingClient, create_embedder
from docchat_rag.retrieval.types import CancellationToken


class DummyEmbedder(BaseEmbedder):
    """
    Embedder stub whose LlamaIndex-style model calls ``embed_fn``.
    """

    def __init__(self, embed_fn):
        self.embed_fn = embed_fn
        self.seen = []

    def get_embedder(self):
        def _embed(text):
            self.seen.append(text)
            return self.embed_fn(text)

        return SimpleNamespace(get_query_embedding=_embed, get_text_embedding=_embed)

    @classmethod
    def from_config_dict(cls, config, callback_manager=None):
        return cls(lambda text: [1.0])


@pytest.fixture
def make_client():
    clients = []

    def _make(embed_fn, **kwargs):
        client = EmbeddingClient(DummyEmbedder(embed_fn), **kwargs)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


def test_embed_truncates_input_and_returns_float_tuple(make_client):
    """
    Input beyond ``max_input_length`` characters is cut before embedding and
    the vector comes back as a tuple of floats.
    """
    client = make_client(lambda text: [1, 2, 3], max_input_length=5)

    vector = client.embed("abcdefghij")

    assert vector == (1.0, 2.0, 3.0)
    assert client.embedder.seen == ["abcde"]

    client.embed_query("abcdefghij", max_input_length=3)
    assert client.embedder.seen[-1] == "abc"


@pytest.mark.parametrize(
    "result",
    [[], ["x", "y"], [float("nan"), 1.0], "not a vector"],
)
def test_malformed_vectors_are_unavailable(make_client, result):
    """
    Empty, non-numeric and non-finite vectors are reported as unavailable.
    """
    client = make_client(lambda text: result)

    with pytest.raises(EmbeddingUnavailable):
        client.embed("text")


def test_provider_error_is_normalised(make_client):
    """
    Any provider exception surfaces as ``EmbeddingUnavailable`` with no retry.
    """
    calls = []

    def _fail(text):
        calls.append(text)
        raise ConnectionError("refused")

    client = make_client(_fail)

    with pytest.raises(EmbeddingUnavailable, match="ConnectionError"):
        client.embed_query("hello")
    assert len(calls) == 1


def test_timeout_raises_unavailable(make_client):
    """
    A provider call that outlives the timeout is abandoned.
    """
    release = threading.Event()
    client = make_client(lambda text: release.wait(5) and [1.0], timeout=0.05)

    try:
        with pytest.raises(EmbeddingUnavailable, match="timed out"):
            client.embed_query("slow")
    finally:
        release.set()


def test_cancelled_token_raises_retrieval_cancelled(make_client):
    """
    A token cancelled before the call starts stops it immediately.
    """
    client = make_client(lambda text: [1.0])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(RetrievalCancelled):
        client.embed_query("anything", cancel=token)
    assert client.embedder.seen == []


def test_async_variants(make_client):
    """
    ``aembed``/``aembed_query`` return the same vectors and normalise errors.
    """
    client = make_client(lambda text: [0.5, 0.5])

    assert asyncio.run(client.aembed("chunk")) == (0.5, 0.5)
    assert asyncio.run(client.aembed_query("query")) == (0.5, 0.5)

    def _fail(text):
        raise RuntimeError("down")

    failing = make_client(_fail)
    with pytest.raises(EmbeddingUnavailable):
        asyncio.run(failing.aembed_query("query"))


def test_closed_client_is_unavailable(make_client):
    """
    Calls after ``close`` fail as unavailable rather than hanging.
    """
    client = make_client(lambda text: [1.0])
    client.close()

    with pytest.raises(EmbeddingUnavailable):
        client.embed("text")


def test_from_config_dict_reads_timeout_and_length():
    """
    Timeout and truncation length come from the ``embedder`` section.
    """
    client = EmbeddingClient.from_config_dict(
        DummyEmbedder(lambda text: [1.0]),
        {"timeout": 1.5, "max_input_length": 100},
    )
    try:
        assert client.timeout == pytest.approx(1.5)
        assert client.max_input_length == 100
    finally:
        client.close()


def test_create_embedder_rejects_unknown_kind():
    """
    Unsupported provider kinds are configuration errors.
    """
    with pytest.raises(ConfigurationError):
        create_embedder({"kind": "word2vec"})
