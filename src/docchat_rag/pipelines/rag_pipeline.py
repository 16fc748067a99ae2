"""docchat_rag.pipelines.rag_pipeline

Query-time orchestration: retrieval, context assembly and generation.

Classes
-------
PipelineResult
    Ranked chunks together with the assembled context.
ChatResponse
    Generated answer plus the retrieval it was grounded on.
RAGPipeline
    Retrieval → context assembly → prompt rendering → generation.

Functions
---------
should_skip_retrieval
    Detect greetings and small talk that need no document context.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from docchat_rag.common.errors import InvalidQuery
from docchat_rag.common.schemas import Message, ResponseLength, ScoredChunk
from docchat_rag.generation.context_assembler import AssembledContext, ContextAssembler
from docchat_rag.generation.llm_interface import BaseLLM
from docchat_rag.generation.prompt_builder import PromptBuilder
from docchat_rag.retrieval import query_analysis as qa
from docchat_rag.retrieval.chunk_store import ChunkStore
from docchat_rag.retrieval.retriever import ContextualRetriever, SessionRetrievalCoordinator
from docchat_rag.retrieval.types import ConversationHistory

logger = logging.getLogger(__name__)

ANSWER_PROMPT = "chat.answer"
SMALLTALK_PROMPT = "chat.smalltalk"

SMALLTALK = frozenset({
    "hi", "hello", "hey", "good morning", "good afternoon", "good evening",
    "how are you", "whats up", "what's up", "thanks", "thank you", "ok",
    "okay", "bye", "goodbye",
})
_INTENT_WORDS_RE = re.compile(r"\b(?:what|when|where|who|how|why|which|list|show|tell|find)\b")


def should_skip_retrieval(query: str) -> bool:
    """Return ``True`` for greetings and short statements without a question word.

    Examples
    --------
    >>> should_skip_retrieval("Thanks")
    True
    >>> should_skip_retrieval("What is the invoice total?")
    False
    """
    lower = (query or "").strip().lower()
    if lower.rstrip("!.?") in SMALLTALK:
        return True
    if len(lower.split()) < 3 and not _INTENT_WORDS_RE.search(lower):
        return True
    return False


def _question_type(query: str) -> str:
    if not qa.is_interrogative(query):
        return "general"
    return qa.question_type(query)


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of :meth:`RAGPipeline.retrieve`.

    Attributes
    ----------
    ranked_chunks : tuple[ScoredChunk, ...]
        Ranked retrieval results.
    assembled_context : AssembledContext
        Context rendered from ``ranked_chunks`` and conversation memory.
    length_hint : ResponseLength
        Requested answer length.
    degraded : bool
        Whether semantic scoring was unavailable.
    """

    ranked_chunks: tuple[ScoredChunk, ...]
    assembled_context: AssembledContext
    length_hint: ResponseLength
    degraded: bool


@dataclass(frozen=True)
class ChatResponse:
    """Outcome of :meth:`RAGPipeline.chat`.

    Attributes
    ----------
    answer : str
        Text returned by the LLM.
    prompt : str
        Rendered prompt sent to the LLM.
    result : PipelineResult or None
        Retrieval the answer is grounded on; ``None`` for small talk.
    skipped_retrieval : bool
        Whether retrieval was skipped for small talk.
    """

    answer: str
    prompt: str
    result: Optional[PipelineResult]
    skipped_retrieval: bool


class RAGPipeline:
    """Retrieval-augmented chat orchestrator.

    Parameters
    ----------
    retriever : ContextualRetriever
        Ranks accessible chunks for a query.
    assembler : ContextAssembler
        Renders ranked chunks and memory into a context block.
    store : ChunkStore
        Source of document names for chunk headers.
    prompt_builder : PromptBuilder
        Holds the ``chat.*`` templates.
    llm : BaseLLM or None, optional
        Generator used by :meth:`chat`. Retrieval works without one.
    history : ConversationHistory or None, optional
        Conversation log read and appended by :meth:`chat`.
    coordinator : SessionRetrievalCoordinator or None, optional
        Cancels superseded retrievals per session. Created around
        ``retriever`` when omitted.
    memory_window : int, optional
        Messages of history passed to retrieval and assembly. Defaults to ``6``.
    llm_generate_defaults : dict or None, optional
        Keyword arguments forwarded to ``llm.generate``.
    """

    def __init__(
            self,
            retriever: ContextualRetriever,
            assembler: ContextAssembler,
            store: ChunkStore,
            prompt_builder: PromptBuilder,
            llm: Optional[BaseLLM] = None,
            history: Optional[ConversationHistory] = None,
            coordinator: Optional[SessionRetrievalCoordinator] = None,
            memory_window: int = 6,
            llm_generate_defaults: dict | None = None,
        ):
        self.retriever = retriever
        self.assembler = assembler
        self.store = store
        self.prompt_builder = prompt_builder
        self.llm = llm
        self.history = history
        self.coordinator = coordinator or SessionRetrievalCoordinator(retriever)
        self.memory_window = int(memory_window)
        self.llm_generate_defaults = llm_generate_defaults or {
            "stop": ["\nUser:", "\n\nUser:"],
            "temperature": 0.1,
            "max_tokens": 1024,
        }

    def retrieve(
            self,
            query: str,
            accessible_document_ids: Iterable[str],
            conversation_memory: Sequence[Message] = (),
            session_id: Optional[str] = None,
            **kwargs: Any,
        ) -> PipelineResult:
        """Rank chunks for ``query`` and assemble the generator context.

        Parameters
        ----------
        query : str
            User query.
        accessible_document_ids : Iterable[str]
            Documents the caller may read.
        conversation_memory : Sequence[Message], optional
            Recent turns, oldest first.
        session_id : str or None, optional
            When given, a newer retrieval for the same session cancels this
            one.
        **kwargs : Any
            ``top_k``, ``min_score`` and ``max_budget_units`` overrides.

        Returns
        -------
        PipelineResult

        Raises
        ------
        InvalidQuery
            If ``query`` is empty.
        RetrievalCancelled
            If a newer retrieval for ``session_id`` superseded this one.
        """
        max_budget_units = kwargs.pop("max_budget_units", None)
        ids = list(accessible_document_ids or ())

        if session_id is not None:
            result = self.coordinator.retrieve(session_id, query, ids, conversation_memory, **kwargs)
        else:
            result = self.retriever.retrieve(query, ids, conversation_memory, **kwargs)

        names = self.store.document_names({s.chunk.document_id for s in result.ranked_chunks})
        context = self.assembler.assemble(
            result.ranked_chunks,
            conversation_memory,
            result.length_hint,
            max_budget_units=max_budget_units,
            document_names=names,
            question_type=_question_type(result.query.raw_text),
        )
        return PipelineResult(
            ranked_chunks=result.ranked_chunks,
            assembled_context=context,
            length_hint=result.length_hint,
            degraded=result.degraded,
        )

    def chat(
            self,
            session_id: str,
            query: str,
            accessible_document_ids: Iterable[str],
            **kwargs: Any,
        ) -> ChatResponse:
        """Answer ``query`` for a session and record both turns in history.

        Greetings and small talk are answered without retrieval. The special
        key ``llm_generate`` overrides generation parameters for this call.

        Raises
        ------
        InvalidQuery
            If ``query`` is empty.
        RuntimeError
            If the pipeline has no LLM.
        """
        if query is None or not str(query).strip():
            raise InvalidQuery("Query must not be empty")
        if self.llm is None:
            raise RuntimeError("RAGPipeline.chat requires an LLM")

        overrides = kwargs.pop("llm_generate", None) or {}
        gen_kwargs = {**self.llm_generate_defaults, **overrides}

        memory = self.history.recent_messages(session_id, self.memory_window) if self.history else []

        if should_skip_retrieval(query):
            logger.debug("Skipping retrieval for small talk: %r", query)
            result = None
            prompt = self.prompt_builder.build(SMALLTALK_PROMPT, question=query)
        else:
            result = self.retrieve(query, accessible_document_ids, memory, session_id=session_id, **kwargs)
            prompt = self.prompt_builder.build(
                ANSWER_PROMPT,
                context=result.assembled_context.text,
                question=query,
                length_hint=result.length_hint.value,
            )

        answer = self.llm.generate(prompt, **gen_kwargs)

        if self.history is not None:
            self.history.append(session_id, "user", query)
            self.history.append(session_id, "assistant", answer)

        return ChatResponse(
            answer=answer,
            prompt=prompt,
            result=result,
            skipped_retrieval=result is None,
        )

    def end_session(self, session_id: str) -> None:
        """Cancel any live retrieval of ``session_id`` and forget its history."""
        self.coordinator.cancel(session_id)
        if self.history is not None:
            self.history.clear(session_id)

    def __call__(self, session_id: str, query: str, accessible_document_ids: Iterable[str], **kwargs: Any) -> ChatResponse:
        return self.chat(session_id, query, accessible_document_ids, **kwargs)


__all__ = [
    "PipelineResult",
    "ChatResponse",
    "RAGPipeline",
    "should_skip_retrieval",
]
