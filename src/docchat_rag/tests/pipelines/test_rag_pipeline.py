import pytest

from docchat_rag.common.errors import InvalidQuery
from docchat_rag.common.schemas import Document, Message, ResponseLength
from docchat_rag.generation.context_assembler import ContextAssembler
from docchat_rag.generation.prompt_builder import PromptBuilder
from docchat_rag.pipelines.rag_pipeline import RAGPipeline, should_skip_retrieval
from docchat_rag.retrieval.chunk_store import ChunkStore
from docchat_rag.retrieval.document_store import InMemoryConversationHistory
from docchat_rag.retrieval.retriever import ContextualRetriever


class DummyLLM:
    """Records prompts and generation kwargs; answers with a fixed string."""

    def __init__(self, answer: str = "The invoice total is $450."):
        self.answer = answer
        self.calls = []

    def generate(self, prompt: str, **kwargs) -> str:
        self.calls.append((prompt, kwargs))
        return self.answer


def _make_pipeline(llm=None, history=None):
    store = ChunkStore()
    doc = store.add_document(Document(filename="invoices.txt", type="txt"))
    store.ingest_chunk("The invoice total is $450, due on March 3.", doc.id, 0)
    store.ingest_chunk("Invoices are processed monthly.", doc.id, 1)

    builder = PromptBuilder.from_sources()
    pipeline = RAGPipeline(
        retriever=ContextualRetriever(store, embedding_client=None),
        assembler=ContextAssembler(prompt_builder=builder),
        store=store,
        prompt_builder=builder,
        llm=llm,
        history=history,
    )
    return pipeline, doc


@pytest.mark.parametrize(
    "query, expected",
    [
        ("Hello!", True),
        ("thanks", True),
        ("ok cool", True),
        ("What is the invoice total?", False),
        ("list invoices", False),
        ("Summarise the quarterly report please", False),
    ],
)
def test_should_skip_retrieval(query, expected):
    """
    Greetings and short statements without an intent word skip retrieval.
    """
    assert should_skip_retrieval(query) is expected


def test_retrieve_returns_ranked_chunks_and_named_context():
    """
    ``retrieve`` ranks chunks and renders them with the document filename.
    """
    pipeline, doc = _make_pipeline()

    result = pipeline.retrieve("What is the invoice total?", [doc.id])

    assert len(result.ranked_chunks) == 2
    assert result.degraded is True
    assert result.length_hint is ResponseLength.BALANCED
    assert "--- Source 1: invoices.txt" in result.assembled_context.text
    assert result.assembled_context.included_chunks == result.ranked_chunks


def test_retrieve_passes_budget_override_to_assembler():
    """
    ``max_budget_units`` limits the assembled context, not the ranking.
    """
    pipeline, doc = _make_pipeline()

    result = pipeline.retrieve("What is the invoice total?", [doc.id], max_budget_units=0)

    assert len(result.ranked_chunks) == 2
    assert result.assembled_context.included_chunks == ()
    assert "(No specific document context found)" in result.assembled_context.text


def test_chat_answers_with_context_and_records_history():
    """
    ``chat`` builds the answer prompt from the ranked context, calls the LLM
    and appends both turns to the session history.
    """
    llm = DummyLLM()
    history = InMemoryConversationHistory()
    pipeline, doc = _make_pipeline(llm=llm, history=history)

    response = pipeline.chat("s1", "What is the invoice total?", [doc.id])

    prompt, kwargs = llm.calls[0]
    assert response.answer == "The invoice total is $450."
    assert response.skipped_retrieval is False
    assert "DOCUMENT CONTEXT:" in prompt
    assert "CURRENT USER QUESTION: What is the invoice total?" in prompt
    assert kwargs["temperature"] == 0.1
    assert history.recent_messages("s1") == [
        Message(role="user", content="What is the invoice total?"),
        Message(role="assistant", content="The invoice total is $450."),
    ]


@pytest.mark.parametrize(
    "query, marker",
    [
        ("What is the invoice total?", "exact fact or value"),
        ("When is the invoice due?", "exact dates"),
        ("How many invoices are there?", "Count accurately"),
        ("invoice total summary", "Answer using the document information"),
    ],
)
def test_retrieve_adds_question_type_instruction(query, marker):
    """
    The assembled context carries the answer instruction for the kind of
    question asked; statements get the general one.
    """
    pipeline, doc = _make_pipeline()

    result = pipeline.retrieve(query, [doc.id])

    assert marker in result.assembled_context.text

def test_chat_feeds_previous_turns_into_prompt():
    """
    Earlier turns from history appear in the next prompt's memory block.
    """
    llm = DummyLLM()
    history = InMemoryConversationHistory()
    history.append("s1", "user", "Which invoice are we discussing?")
    history.append("s1", "assistant", "The March invoice.")
    pipeline, doc = _make_pipeline(llm=llm, history=history)

    pipeline.chat("s1", "What is the invoice total?", [doc.id])

    prompt = llm.calls[0][0]
    assert "PREVIOUS CONVERSATION:\nUser: Which invoice are we discussing?\nAssistant: The March invoice." in prompt


def test_chat_small_talk_skips_retrieval():
    """
    Greetings are answered with the small-talk prompt and no retrieval.
    """
    llm = DummyLLM(answer="Hi there!")
    pipeline, doc = _make_pipeline(llm=llm)

    response = pipeline("s1", "Hello!", [doc.id])

    assert response.skipped_retrieval is True
    assert response.result is None
    assert "USER MESSAGE: Hello!" in llm.calls[0][0]


def test_chat_brief_request_marks_prompt_and_overrides_generation():
    """
    Brief requests are flagged in the prompt and ``llm_generate`` overrides
    the default generation parameters.
    """
    llm = DummyLLM()
    pipeline, doc = _make_pipeline(llm=llm)

    pipeline.chat("s1", "Briefly, what is the invoice total?", [doc.id], llm_generate={"max_tokens": 64})

    prompt, kwargs = llm.calls[0]
    assert "(WANTS ONE LINE ANSWER)" in prompt
    assert kwargs["max_tokens"] == 64
    assert kwargs["stop"] == ["\nUser:", "\n\nUser:"]


def test_chat_rejects_empty_query_and_missing_llm():
    """
    Empty queries are invalid; chatting without an LLM is a runtime error.
    """
    pipeline, doc = _make_pipeline(llm=DummyLLM())
    with pytest.raises(InvalidQuery):
        pipeline.chat("s1", "  ", [doc.id])

    no_llm, doc = _make_pipeline()
    with pytest.raises(RuntimeError):
        no_llm.chat("s1", "What is the invoice total?", [doc.id])


def test_end_session_forgets_history():
    """
    Ending a session clears its turns while other sessions keep theirs.
    """
    history = InMemoryConversationHistory()
    pipeline, doc = _make_pipeline(llm=DummyLLM(), history=history)
    pipeline.chat("s1", "What is the invoice total?", [doc.id])
    pipeline.chat("s2", "What is the invoice total?", [doc.id])

    pipeline.end_session("s1")

    assert history.recent_messages("s1") == []
    assert len(history.recent_messages("s2")) == 2
