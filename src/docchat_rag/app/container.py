"""docchat_rag.app.container

Composition root for docchat-rag.

This module is the single place where concrete implementations are wired
together from configuration: token counter, embedder, chunk store,
scorer, retriever, context assembler, LLM and both pipelines. Components are
constructed lazily and cached on first access.

Notes
-----
- Importing this module performs no network calls and reads no files.
- The chunk store is rehydrated from the configured repository the first
  time it is accessed.

Examples
--------
>>> from docchat_rag.config import GlobalConfig
>>> from docchat_rag.app.container import build_container
>>> c = build_container(GlobalConfig.load("config.yaml"))
>>> c.rag_pipeline.retrieve("What is the invoice total?", ["doc-1"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping, Optional

from docchat_rag.common.tokenisation import TokenCounter, create_token_counter

logger = logging.getLogger(__name__)

_DISABLED_EMBEDDER_KINDS = {"none", "disabled", "off"}


@dataclass(frozen=True)
class DocChatContainer:
    """Holds the configured, cached runtime components.

    Parameters
    ----------
    config : Any
        Loaded configuration, typically :class:`docchat_rag.config.GlobalConfig`.
    """

    config: Any

    @cached_property
    def token_counter(self) -> TokenCounter:
        return create_token_counter(_as_mapping(getattr(self.config, "tokenization", {})))

    @cached_property
    def prompt_builder(self):
        """Return the prompt builder with packaged templates plus ``config.prompts``."""
        from docchat_rag.generation.prompt_builder import PromptBuilder

        return PromptBuilder.from_sources(
            getattr(self.config, "prompts", None) or [],
            base_dir=getattr(self.config, "base_dir", None),
        )

    @cached_property
    def embedder(self):
        """Return the embedding provider, or ``None`` when embeddings are disabled."""
        from docchat_rag.retrieval.embedder import create_embedder

        section = _as_mapping(getattr(self.config, "embedder", {}))
        if str(section.get("kind", "")).strip().lower() in _DISABLED_EMBEDDER_KINDS:
            logger.warning("Embeddings disabled; retrieval will use lexical signals only")
            return None
        return create_embedder(section)

    @cached_property
    def embedding_client(self):
        from docchat_rag.retrieval.embedder import EmbeddingClient

        if self.embedder is None:
            return None
        return EmbeddingClient.from_config_dict(self.embedder, _as_mapping(getattr(self.config, "embedder", {})))

    @cached_property
    def chunk_repository(self):
        from docchat_rag.retrieval.document_store import create_chunk_repository

        return create_chunk_repository(_as_mapping(getattr(self.config, "storage", {})))

    @cached_property
    def chunk_store(self):
        """Return the chunk store, rehydrated from :attr:`chunk_repository`."""
        from docchat_rag.retrieval.chunk_store import ChunkStore

        section = _as_mapping(getattr(self.config, "storage", {}))
        dimension = section.get("dimension")
        store = ChunkStore(dimension=int(dimension) if dimension else None)
        store.rehydrate(self.chunk_repository)
        return store

    @cached_property
    def chunker(self):
        from docchat_rag.retrieval.text_splitter import TextChunker

        return TextChunker.from_config_dict(_as_mapping(getattr(self.config, "chunking", {})))

    @cached_property
    def scorer(self):
        from docchat_rag.retrieval.scorer import Scorer

        return Scorer.from_config_dict(_as_mapping(getattr(self.config, "scoring", {})))

    @cached_property
    def retriever(self):
        from docchat_rag.retrieval.retriever import ContextualRetriever

        return ContextualRetriever.from_config_dict(
            self.chunk_store,
            self.embedding_client,
            self.scorer,
            _as_mapping(getattr(self.config, "retriever", {})),
        )

    @cached_property
    def coordinator(self):
        from docchat_rag.retrieval.retriever import SessionRetrievalCoordinator

        return SessionRetrievalCoordinator(self.retriever)

    @cached_property
    def assembler(self):
        from docchat_rag.generation.context_assembler import ContextAssembler

        return ContextAssembler.from_config_dict(
            _as_mapping(getattr(self.config, "context", {})),
            prompt_builder=self.prompt_builder,
            token_counter=self.token_counter,
        )

    @cached_property
    def conversation_history(self):
        from docchat_rag.retrieval.document_store import InMemoryConversationHistory

        section = _as_mapping(getattr(self.config, "raw", {})).get("history")
        return InMemoryConversationHistory.from_config_dict(_as_mapping(section or {}))

    @cached_property
    def generator_llm(self):
        """Return the answer-generation LLM, or ``None`` if not configured."""
        from docchat_rag.generation.llm_interface import create_llm

        section = _as_mapping(getattr(self.config, "raw", {})).get("generator_llm")
        if not section:
            return None
        return create_llm(_as_mapping(section))

    @cached_property
    def rag_pipeline(self):
        from docchat_rag.pipelines.rag_pipeline import RAGPipeline

        context = _as_mapping(getattr(self.config, "context", {}))
        return RAGPipeline(
            retriever=self.retriever,
            assembler=self.assembler,
            store=self.chunk_store,
            prompt_builder=self.prompt_builder,
            llm=self.generator_llm,
            history=self.conversation_history,
            coordinator=self.coordinator,
            memory_window=int(context.get("memory_window", 6)),
        )

    @cached_property
    def ingestion_pipeline(self):
        from docchat_rag.pipelines.ingestion_pipeline import IngestionPipeline

        return IngestionPipeline(
            store=self.chunk_store,
            chunker=self.chunker,
            embedding_client=self.embedding_client,
            repository=self.chunk_repository,
        )

    def close(self) -> None:
        """Release the embedding worker pool, if one was created."""
        client: Optional[Any] = self.__dict__.get("embedding_client")
        if client is not None:
            client.close()


def build_container(config: Any) -> DocChatContainer:
    """Create a :class:`DocChatContainer` for ``config``.

    Single entry point for the FastAPI startup hook, CLI scripts and tests.
    """
    return DocChatContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce ``obj`` into a mapping.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return obj
    if hasattr(obj, "__dict__"):
        return dict(vars(obj))
    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["DocChatContainer", "build_container"]
