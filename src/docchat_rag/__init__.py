"""docchat_rag

Retrieval engine for chatting with uploaded documents.

This package ranks document chunks for a user query with six relevance
signals, assembles a size-budgeted context from the best chunks and recent
conversation turns, and hands it to an LLM for answer generation.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Configuration loader and cached accessors.
app
    Composition root and FastAPI application.
pipelines
    Query-time chat pipeline and write-path ingestion pipeline.
retrieval
    Chunking, embedding, chunk store, scoring and retrieval.
generation
    Context assembly, prompt templates and LLM interfaces.

Exports
-------
GlobalConfig
    Configuration loader and accessor.
DocChatContainer
    Cached runtime component container.
build_container
    Factory for :class:`~docchat_rag.app.container.DocChatContainer`.
RAGPipeline
    Retrieval, context assembly and generation.
IngestionPipeline
    Chunk, embed and store documents.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("docchat-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import DocChatContainer, build_container
from .pipelines.rag_pipeline import RAGPipeline
from .pipelines.ingestion_pipeline import IngestionPipeline
from .common import Chunk, Document, Message, ScoredChunk

__all__ = [
    "__version__",
    "GlobalConfig",
    "DocChatContainer",
    "build_container",
    "RAGPipeline",
    "IngestionPipeline",
    "Chunk",
    "Document",
    "Message",
    "ScoredChunk",
]
