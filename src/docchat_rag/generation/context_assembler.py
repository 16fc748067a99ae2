"""docchat_rag.generation.context_assembler

Budgeted assembly of ranked chunks and conversation memory into a single
context block for the generator.

Chunks are appended in rank order, each under a header naming its source
document. Each chunk costs its estimated token count plus a fixed header
overhead; the first chunk that would overflow the budget ends the source
list, so a higher-ranked chunk is never dropped while a lower-ranked one is
kept. The trailing window of conversation memory and an instruction for
the requested response length complete the block, preceded by an answer
instruction for the question type when one is given.

Classes
-------
AssembledContext
    Rendered context plus the chunks it includes and drops.
ContextAssembler
    Renders contexts through a :class:`PromptBuilder`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from docchat_rag.common.schemas import Message, ResponseLength, ScoredChunk
from docchat_rag.common.tokenisation import HeuristicTokenCounter, TokenCounter
from docchat_rag.generation.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUDGET_UNITS = 2000
DEFAULT_SOURCE_OVERHEAD = 100
DEFAULT_MEMORY_WINDOW = 6

SOURCE_TEMPLATE = "context.source"
MEMORY_TEMPLATE = "context.memory"
DOCUMENT_TEMPLATE = "context.document"
LENGTH_TEMPLATE_PREFIX = "length."
QUESTION_TYPE_TEMPLATE_PREFIX = "qtype."
GENERAL_QUESTION_TYPE = "general"


@dataclass(frozen=True)
class AssembledContext:
    """Context handed to the generation collaborator.

    Attributes
    ----------
    text : str
        Rendered context block.
    included_chunks : tuple[ScoredChunk, ...]
        Chunks rendered into ``text``, in rank order.
    dropped_chunks : tuple[ScoredChunk, ...]
        Lower-ranked chunks left out to respect the budget.
    budget_used : int
        Units consumed by the included chunks and their headers.
    """

    text: str
    included_chunks: tuple[ScoredChunk, ...]
    dropped_chunks: tuple[ScoredChunk, ...]
    budget_used: int


class ContextAssembler:
    """Assemble generator context within a size budget.

    Parameters
    ----------
    prompt_builder : PromptBuilder or None, optional
        Registry holding the ``context.*`` and ``length.*`` templates.
        Defaults to the packaged templates.
    token_counter : TokenCounter or None, optional
        Estimates the size of chunk text. Defaults to four characters per
        unit.
    source_overhead : int, optional
        Units charged per included chunk for its header. Defaults to ``100``.
    memory_window : int, optional
        Maximum number of memory messages rendered. Defaults to ``6``.
    max_budget_units : int, optional
        Default budget when :meth:`assemble` is not given one.
    """

    def __init__(
            self,
            prompt_builder: Optional[PromptBuilder] = None,
            token_counter: Optional[TokenCounter] = None,
            source_overhead: int = DEFAULT_SOURCE_OVERHEAD,
            memory_window: int = DEFAULT_MEMORY_WINDOW,
            max_budget_units: int = DEFAULT_MAX_BUDGET_UNITS,
        ):
        self.prompt_builder = prompt_builder or PromptBuilder.from_sources()
        self.token_counter = token_counter or HeuristicTokenCounter()
        self.source_overhead = int(source_overhead)
        self.memory_window = max(0, int(memory_window))
        self.max_budget_units = int(max_budget_units)

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any] | None,
            prompt_builder: Optional[PromptBuilder] = None,
            token_counter: Optional[TokenCounter] = None,
        ) -> "ContextAssembler":
        """Create an assembler from the ``context`` configuration section."""
        cfg = dict(config or {})
        return cls(
            prompt_builder=prompt_builder,
            token_counter=token_counter,
            source_overhead=int(cfg.get("source_overhead", DEFAULT_SOURCE_OVERHEAD)),
            memory_window=int(cfg.get("memory_window", DEFAULT_MEMORY_WINDOW)),
            max_budget_units=int(cfg.get("max_budget_units", DEFAULT_MAX_BUDGET_UNITS)),
        )

    def assemble(
            self,
            ranked_chunks: Sequence[ScoredChunk],
            conversation_memory: Sequence[Message] = (),
            length_hint: ResponseLength = ResponseLength.BALANCED,
            max_budget_units: Optional[int] = None,
            document_names: Optional[Mapping[str, str]] = None,
            question_type: Optional[str] = None,
        ) -> AssembledContext:
        """Build the context block.

        Parameters
        ----------
        ranked_chunks : Sequence[ScoredChunk]
            Chunks in rank order, best first.
        conversation_memory : Sequence[Message], optional
            Prior turns, oldest first. Only the last ``memory_window`` are
            rendered.
        length_hint : ResponseLength, optional
            Selects the trailing length instruction.
        max_budget_units : int or None, optional
            Budget for chunks and headers. Defaults to the assembler's
            ``max_budget_units``.
        document_names : Mapping[str, str] or None, optional
            Document id to display name. Unknown ids render as the id.
        question_type : str or None, optional
            Expected answer shape from :func:`query_analysis.question_type`.
            Adds the matching ``qtype.*`` instruction; unknown types use
            ``qtype.general``. ``None`` adds no instruction.

        Returns
        -------
        AssembledContext
            Deterministic for identical inputs.
        """
        budget = self.max_budget_units if max_budget_units is None else int(max_budget_units)
        names = document_names or {}

        included: list[ScoredChunk] = []
        used = 0
        for scored in ranked_chunks:
            cost = self.token_counter.count(scored.chunk.text) + self.source_overhead
            if used + cost > budget:
                break
            included.append(scored)
            used += cost
        dropped = tuple(ranked_chunks[len(included):])
        if dropped:
            logger.debug("Context budget %d reached; dropped %d lower-ranked chunks", budget, len(dropped))

        build = self.prompt_builder.build
        sources = [
            build(
                SOURCE_TEMPLATE,
                index=i,
                document_name=names.get(s.chunk.document_id, s.chunk.document_id),
                score=s.combined_score,
                text=s.chunk.text,
            )
            for i, s in enumerate(included, start=1)
        ]

        window = list(conversation_memory)[-self.memory_window:] if self.memory_window else []
        memory = build(MEMORY_TEMPLATE, messages=window) if window else ""

        text = build(
            DOCUMENT_TEMPLATE,
            sources=sources,
            memory=memory,
            instruction=self.length_instruction(length_hint),
            query_instruction=self.question_instruction(question_type) if question_type else "",
        )
        return AssembledContext(
            text=text,
            included_chunks=tuple(included),
            dropped_chunks=dropped,
            budget_used=used,
        )

    __call__ = assemble

    def length_instruction(self, length_hint: ResponseLength | str) -> str:
        """Render the instruction text for ``length_hint``."""
        return self.prompt_builder.build(LENGTH_TEMPLATE_PREFIX + ResponseLength(length_hint).value)

    def question_instruction(self, question_type: str) -> str:
        """Render the answer instruction for ``question_type``."""
        name = QUESTION_TYPE_TEMPLATE_PREFIX + question_type
        if not self.prompt_builder.has_prompt(name):
            name = QUESTION_TYPE_TEMPLATE_PREFIX + GENERAL_QUESTION_TYPE
        return self.prompt_builder.build(name)


__all__ = ["AssembledContext", "ContextAssembler"]
