"""docchat_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, concrete implementations backed by LlamaIndex
embedding wrappers, and the :class:`EmbeddingClient` the engine calls at
ingestion and query time. The client truncates input, bounds each call with
a timeout, honours a cancellation token and turns every provider failure
into :class:`~docchat_rag.common.errors.EmbeddingUnavailable`. It never
retries.

Classes
-------
BaseEmbedder
    Abstract interface over a LlamaIndex embedding model.
HuggingFaceEmbedder
    Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.
OllamaEmbedder
    Embedder backed by a local Ollama server via LlamaIndex.
EmbeddingClient
    Timeout-bounded, failure-normalising embedding client.

Functions
---------
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from typing import Any, Dict, Mapping, Optional, Sequence

from langchain_core.callbacks import BaseCallbackHandler
from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding

from docchat_rag.common.errors import ConfigurationError, EmbeddingUnavailable
from docchat_rag.retrieval.types import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_LENGTH = 2000
DEFAULT_TIMEOUT_SECONDS = 3.0
_CANCEL_POLL_SECONDS = 0.05


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a provider-specific LlamaIndex embedding and
    expose the two calls the engine needs.
    """

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """Return the underlying LlamaIndex embedding instance."""
        pass

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration mapping.
        callback_manager : BaseCallbackHandler, optional
            Optional callback handler for logging/telemetry.

        Returns
        -------
        BaseEmbedder
            An initialised embedder implementation.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """
        pass

    def embed_query(self, query: str) -> list[float]:
        """Embed a query string.

        Uses ``get_query_embedding`` when the underlying model distinguishes
        queries from documents, otherwise ``get_text_embedding``.
        """
        embedder = self.get_embedder()
        for method in ("get_query_embedding", "get_text_embedding", "embed_query"):
            if hasattr(embedder, method):
                return getattr(embedder, method)(query)

        raise AttributeError(f"No embedding method found on {embedder!r}")

    def embed_document(self, text: str) -> list[float]:
        """Embed a chunk of document text."""
        embedder = self.get_embedder()
        for method in ("get_text_embedding", "embed_documents"):
            if hasattr(embedder, method):
                fn = getattr(embedder, method)
                if method == "embed_documents":
                    return fn([text])[0]
                return fn(text)

        raise AttributeError(f"No embedding method found on {embedder!r}")


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by :class:`llama_index.embeddings.huggingface.HuggingFaceEmbedding`.

    Parameters
    ----------
    model_name : str
        Name or path of the embedding model.
    device : str or None, optional
        Device identifier (e.g., ``"cuda"``, ``"cpu"``).
    trust_remote_code : bool, optional
        Whether to allow custom model code from the Hugging Face Hub.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: Optional[str] = None,
            trust_remote_code: bool = False,
            callback_manager: BaseCallbackHandler = None,
        ):
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            callback_manager=callback_manager,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "HuggingFaceEmbedder":
        return cls(
            model_name=config["model_name"],
            device=config.get("device"),
            trust_remote_code=_as_bool(config.get("trust_remote_code"), False),
            callback_manager=callback_manager,
        )


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.

    Provider-level retries are disabled (``max_retries=0``); a failed call
    surfaces immediately so the engine can fall back to degraded scoring.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL for the OpenAI-compatible embedding API endpoint.
    api_key : str or None, optional
        API key value.
    timeout : float, optional
        HTTP timeout in seconds.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: str = None,
            callback_manager: BaseCallbackHandler = None,
            timeout: float = DEFAULT_TIMEOUT_SECONDS,
            embed_batch_size: int = 10,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key or "fake",
            callback_manager=callback_manager,
            timeout=timeout,
            max_retries=0,
            embed_batch_size=embed_batch_size,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "OpenAILikeEmbedder":
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT_SECONDS)),
            embed_batch_size=int(config.get("embed_batch_size", 10)),
        )


class OllamaEmbedder(BaseEmbedder):
    """Embedder backed by :class:`llama_index.embeddings.ollama.OllamaEmbedding`.

    Parameters
    ----------
    model_name : str, optional
        Ollama model tag. Defaults to ``"nomic-embed-text"``.
    base_url : str, optional
        Ollama server URL. Defaults to ``"http://localhost:11434"``.
    """

    def __init__(
            self,
            model_name: str = "nomic-embed-text",
            *,
            base_url: str = "http://localhost:11434",
            callback_manager: BaseCallbackHandler = None,
        ):
        from llama_index.embeddings.ollama import OllamaEmbedding

        self.embedder = OllamaEmbedding(
            model_name=model_name,
            base_url=base_url,
            callback_manager=callback_manager,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "OllamaEmbedder":
        return cls(
            model_name=config.get("model_name", "nomic-embed-text"),
            base_url=config.get("base_url") or config.get("api_base") or "http://localhost:11434",
            callback_manager=callback_manager,
        )


class EmbeddingClient:
    """Embedding collaborator used by the engine.

    Each call truncates its input to ``max_input_length`` characters, runs
    the provider call on a worker thread and waits at most ``timeout``
    seconds. Errors, timeouts and malformed vectors all raise
    :class:`EmbeddingUnavailable`; cancellation raises
    :class:`~docchat_rag.common.errors.RetrievalCancelled`.

    Parameters
    ----------
    embedder : BaseEmbedder
        Provider implementation.
    timeout : float or None, optional
        Per-call timeout in seconds. ``None`` waits indefinitely. Defaults to
        ``3.0``.
    max_input_length : int, optional
        Default truncation length in characters. Defaults to ``2000``.
    max_workers : int, optional
        Size of the worker pool running provider calls. Defaults to ``4``.
    """

    def __init__(
            self,
            embedder: BaseEmbedder,
            *,
            timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
            max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
            max_workers: int = 4,
        ):
        self.embedder = embedder
        self.timeout = timeout
        self.max_input_length = int(max_input_length)
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="embed")

    @classmethod
    def from_config_dict(cls, embedder: BaseEmbedder, config: Mapping[str, Any] | None) -> "EmbeddingClient":
        """Create a client around ``embedder`` from the ``embedder`` config section."""
        cfg = dict(config or {})
        timeout = cfg.get("timeout", DEFAULT_TIMEOUT_SECONDS)
        return cls(
            embedder,
            timeout=None if timeout is None else float(timeout),
            max_input_length=int(cfg.get("max_input_length", DEFAULT_MAX_INPUT_LENGTH)),
            max_workers=int(cfg.get("max_workers", 4)),
        )

    def embed(
            self,
            text: str,
            max_input_length: Optional[int] = None,
            *,
            cancel: Optional[CancellationToken] = None,
        ) -> tuple[float, ...]:
        """Embed chunk text.

        Parameters
        ----------
        text : str
            Text to embed; truncated beyond ``max_input_length``.
        max_input_length : int or None, optional
            Overrides the client default.
        cancel : CancellationToken or None, optional
            Token checked while waiting for the provider.

        Returns
        -------
        tuple[float, ...]
            Embedding vector.

        Raises
        ------
        EmbeddingUnavailable
            On any provider error, timeout or malformed result.
        """
        return self._call(self.embedder.embed_document, text, max_input_length, cancel)

    def embed_query(
            self,
            text: str,
            max_input_length: Optional[int] = None,
            *,
            cancel: Optional[CancellationToken] = None,
        ) -> tuple[float, ...]:
        """Embed query text. Same contract as :meth:`embed`."""
        return self._call(self.embedder.embed_query, text, max_input_length, cancel)

    async def aembed(
            self,
            text: str,
            max_input_length: Optional[int] = None,
        ) -> tuple[float, ...]:
        """Asynchronously embed chunk text.

        The provider call runs in the client's executor under
        :func:`asyncio.wait_for`; cancelling the awaiting task abandons it.
        """
        return await self._acall(self.embedder.embed_document, text, max_input_length)

    async def aembed_query(
            self,
            text: str,
            max_input_length: Optional[int] = None,
        ) -> tuple[float, ...]:
        """Asynchronously embed query text. Same contract as :meth:`aembed`."""
        return await self._acall(self.embedder.embed_query, text, max_input_length)

    async def _acall(self, fn, text: str, max_input_length: Optional[int]) -> tuple[float, ...]:
        loop = asyncio.get_running_loop()
        truncated = self._truncate(text, max_input_length)
        try:
            vector = await asyncio.wait_for(
                loop.run_in_executor(self._executor, fn, truncated),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise EmbeddingUnavailable(f"{type(e).__name__}: {e}") from e
        return _validate_vector(vector)

    def close(self) -> None:
        """Shut down the worker pool without waiting for abandoned calls."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _truncate(self, text: str, max_input_length: Optional[int]) -> str:
        limit = self.max_input_length if max_input_length is None else int(max_input_length)
        text = text or ""
        return text[:limit] if limit > 0 else text

    def _call(self, fn, text: str, max_input_length: Optional[int], cancel: Optional[CancellationToken]):
        truncated = self._truncate(text, max_input_length)
        if cancel is not None:
            cancel.raise_if_cancelled()

        try:
            future = self._executor.submit(fn, truncated)
        except RuntimeError as e:
            raise EmbeddingUnavailable("Embedding client is closed") from e

        vector = self._wait(future, cancel)
        return _validate_vector(vector)

    def _wait(self, future: Future, cancel: Optional[CancellationToken]):
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        while True:
            if cancel is not None and cancel.cancelled:
                future.cancel()
                cancel.raise_if_cancelled()

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                future.cancel()
                raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout}s")

            step = _CANCEL_POLL_SECONDS if cancel is not None else remaining
            if step is not None and remaining is not None:
                step = min(step, remaining)
            done, _ = wait([future], timeout=step)
            if done:
                break

        try:
            return future.result(timeout=0)
        except FutureTimeoutError as e:
            raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingUnavailable(f"{type(e).__name__}: {e}") from e


def _validate_vector(vector: Any) -> tuple[float, ...]:
    """Return ``vector`` as a tuple of finite floats, or raise :class:`EmbeddingUnavailable`."""
    if not isinstance(vector, Sequence) and not hasattr(vector, "tolist"):
        raise EmbeddingUnavailable(f"Embedding provider returned {type(vector).__name__}, expected a vector")
    if hasattr(vector, "tolist"):
        vector = vector.tolist()
    try:
        values = tuple(float(v) for v in vector)
    except (TypeError, ValueError) as e:
        raise EmbeddingUnavailable("Embedding provider returned non-numeric values") from e
    if not values:
        raise EmbeddingUnavailable("Embedding provider returned an empty vector")
    if not all(math.isfinite(v) for v in values):
        raise EmbeddingUnavailable("Embedding provider returned non-finite values")
    return values


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider`` discriminator."""
    for key in ("kind", "type", "provider"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind string to a registry key.

    CamelCase is converted to snake_case, hyphens and spaces become
    underscores, and the OpenAI-like spellings collapse to ``openai_like``.
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    return k2


def create_embedder(
    config: Mapping[str, Any],
    callback_manager: Optional[BaseCallbackHandler] = None,
) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any]
        The ``embedder`` configuration section. The implementation is chosen
        by ``kind``/``type``/``provider``; Ollama is the default.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.

    Returns
    -------
    BaseEmbedder
        An initialised embedder implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ConfigurationError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry = {
        "ollama": OllamaEmbedder,
        "huggingface": HuggingFaceEmbedder,
        "hf": HuggingFaceEmbedder,
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
    }

    cls = registry.get(kind) if kind else OllamaEmbedder
    if cls is None:
        raise ConfigurationError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "DEFAULT_MAX_INPUT_LENGTH",
    "DEFAULT_TIMEOUT_SECONDS",
    "BaseEmbedder",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "OllamaEmbedder",
    "EmbeddingClient",
    "create_embedder",
]
