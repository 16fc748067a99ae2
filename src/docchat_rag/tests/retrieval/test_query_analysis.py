import pytest

from docchat_rag.retrieval import query_analysis as qa


def test_content_tokens_drop_stopwords_and_short_tokens():
    """
    Keywords are distinct tokens of three or more characters that are not
    stopwords, in first-seen order.
    """
    assert qa.content_tokens("What is the invoice total for the invoice of Q4?") == ["invoice", "total"]


def test_stem_strips_plural_s_only():
    """
    A trailing ``s`` is removed from longer words, but not from ``ss``.
    """
    assert qa.stem("invoices") == "invoice"
    assert qa.stem("process") == "process"
    assert qa.stem("bus") == "bus"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("What is the invoice total?", True),
        ("who signed it", True),
        ("The invoice total", False),
        ("Invoice total?", True),
    ],
)
def test_is_interrogative(text, expected):
    """
    Questions start with a question word or contain a question mark.
    """
    assert qa.is_interrogative(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("How many invoices were paid?", "count"),
        ("How much is the invoice?", "quantity"),
        ("When is the payment due?", "temporal"),
        ("Who approved the budget?", "person"),
        ("Where is the office?", "location"),
        ("Why was the invoice rejected?", "reason"),
        ("How do I submit an expense?", "process"),
        ("What is the invoice total?", "factual"),
        ("Invoice total", "general"),
    ],
)
def test_question_type(text, expected):
    """
    The expected answer shape is derived from the question word.
    """
    assert qa.question_type(text) == expected


def test_answer_shape_detection():
    """
    Number, date and proper-name checks recognise typical answer content.
    """
    assert qa.has_number("The total is $1,250.00")
    assert qa.has_date("Payment is due on 3 March 2024")
    assert qa.has_date("Due 2024-03-03")
    assert not qa.has_date("No dates here")
    assert qa.has_proper_name("The budget was approved by Alice.")
    assert not qa.has_proper_name("Budget approved. Nothing else.")
    assert qa.matches_answer_shape("reason", "It failed because the card expired.")
    assert not qa.matches_answer_shape("general", "anything")
