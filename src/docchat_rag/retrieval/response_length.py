"""docchat_rag.retrieval.response_length

Classify how long an answer the user is asking for.

Classes
-------
ResponseLengthClassifier
    Ordered regex classifier mapping query text to a :class:`ResponseLength`.
"""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from docchat_rag.common.schemas import ResponseLength

BRIEF_PATTERNS = (
    "in one line", "one sentence", "briefly", "short answer", "in short",
    "tldr", "quick answer", "just tell me",
)
LIST_PATTERNS = ("list", "enumerate", "bullet points")
DETAILED_PATTERNS = ("in detail", "detailed", "comprehensive", "thorough", "elaborate")


def _compile(phrases: Iterable[str]) -> re.Pattern:
    alternation = "|".join(re.escape(p).replace(r"\ ", r"\s+") for p in phrases)
    return re.compile(rf"\b(?:{alternation})\b")


class ResponseLengthClassifier:
    """Map a query to a response-length hint.

    Pattern groups are tried in a fixed order (brief, list, detailed) and the
    first group with a whole-word match wins. Queries matching nothing are
    ``BALANCED``.

    Examples
    --------
    >>> ResponseLengthClassifier().classify("Summarize briefly")
    <ResponseLength.BRIEF: 'brief'>
    """

    def __init__(
            self,
            rules: Sequence[tuple[ResponseLength, Iterable[str]]] | None = None,
        ):
        rules = rules or (
            (ResponseLength.BRIEF, BRIEF_PATTERNS),
            (ResponseLength.LIST, LIST_PATTERNS),
            (ResponseLength.DETAILED, DETAILED_PATTERNS),
        )
        self._rules = [(ResponseLength(hint), _compile(phrases)) for hint, phrases in rules]

    def classify(self, query_text: str) -> ResponseLength:
        text = (query_text or "").lower()
        for hint, pattern in self._rules:
            if pattern.search(text):
                return hint
        return ResponseLength.BALANCED

    __call__ = classify


__all__ = [
    "BRIEF_PATTERNS",
    "LIST_PATTERNS",
    "DETAILED_PATTERNS",
    "ResponseLengthClassifier",
]
