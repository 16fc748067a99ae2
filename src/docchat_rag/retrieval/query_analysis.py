"""docchat_rag.retrieval.query_analysis

Lexical analysis shared by the scorer and the response-length classifier.

Functions here are pure: normalisation, tokenisation, stopword filtering,
interrogative detection and the answer-shape checks (numbers, dates,
names) used by the question-answer signal.
"""

from __future__ import annotations

import re
from typing import Iterable

STOPWORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but", "in",
    "with", "to", "for", "of", "as", "by", "that", "this", "it", "from",
    "are", "was", "were", "been", "be", "have", "has", "had", "do", "does",
    "did", "will", "would", "could", "should", "may", "might", "can", "what",
    "when", "where", "who", "how", "why", "about", "there", "their", "they",
    "them", "these", "those", "then", "than", "such", "some", "into", "just",
    "so", "if", "out", "up", "down", "only", "no", "yes", "not", "now",
    "all", "any", "both", "each", "few", "more", "most", "other", "same",
    "very", "too", "also", "well", "even", "here", "get", "got", "make",
    "made", "see", "saw", "know", "knew", "think", "thought",
})

QUESTION_WORDS = ("who", "what", "when", "where", "why", "how", "which")

MIN_KEYWORD_LENGTH = 3

_WORD_RE = re.compile(r"[a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")

_NUMBER_RE = re.compile(r"(?<![\w.])[$€£]?\d+(?:[.,]\d+)*%?")
_MONTHS = (
    "jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec|january|february|march|april|"
    "june|july|august|september|october|november|december"
)
_DATE_RES = (
    re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS})\b\.?(?:\s+\d{{4}})?", re.IGNORECASE),
    re.compile(rf"\b(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?\b", re.IGNORECASE),
    re.compile(rf"\b(?:{_MONTHS})\s+\d{{4}}\b", re.IGNORECASE),
    re.compile(r"\b(?:19|20)\d{2}\b"),
    re.compile(r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|today|tomorrow|yesterday)\b", re.IGNORECASE),
)
_CAPITALISED_RE = re.compile(r"[A-Z][a-z]+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?:])\s+")
_LOCATION_RE = re.compile(
    r"\b(?:in|at|near|located|address|street|city|country|office|building|room|floor)\b",
    re.IGNORECASE,
)
_REASON_RE = re.compile(r"\b(?:because|due to|since|therefore|as a result|reason|caused by|so that)\b", re.IGNORECASE)
_PROCESS_RE = re.compile(
    r"\b(?:step|steps|first|then|next|finally|by|using|via|process|method|procedure)\b",
    re.IGNORECASE,
)
_DEFINITION_RE = re.compile(r"\b(?:is|are|was|were|means|refers to|defined as|consists of)\b", re.IGNORECASE)


def normalize(text: str) -> str:
    """Lower-case ``text`` and collapse runs of whitespace."""
    return _WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


def tokenize(text: str) -> list[str]:
    """Split ``text`` into lower-case word tokens, in order.

    Tokens are runs of letters and digits; punctuation separates tokens, so
    ``"$450"`` yields ``["450"]`` and ``"invoice's"`` yields
    ``["invoice", "s"]``.
    """
    return _WORD_RE.findall((text or "").lower())


def content_tokens(text: str) -> list[str]:
    """Return the distinct keyword tokens of ``text`` in first-seen order.

    Keywords are tokens of at least three characters that are not
    stopwords.
    """
    seen: dict[str, None] = {}
    for token in tokenize(text):
        if len(token) < MIN_KEYWORD_LENGTH or token in STOPWORDS:
            continue
        seen.setdefault(token, None)
    return list(seen)


def stem(token: str) -> str:
    """Strip a plural ``s`` so ``"invoices"`` and ``"invoice"`` compare equal."""
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def stems(tokens: Iterable[str]) -> set[str]:
    return {stem(t) for t in tokens}


def is_interrogative(text: str) -> bool:
    """Return ``True`` if ``text`` starts with a question word or contains ``?``."""
    normalized = normalize(text)
    if "?" in normalized:
        return True
    words = tokenize(normalized)
    return bool(words) and words[0] in QUESTION_WORDS


def question_type(text: str) -> str:
    """Classify the expected answer shape of a question.

    Returns one of ``"count"``, ``"quantity"``, ``"temporal"``, ``"person"``,
    ``"location"``, ``"reason"``, ``"process"``, ``"factual"`` or
    ``"general"``.
    """
    normalized = normalize(text)
    if re.search(r"\bhow\s+many\b", normalized):
        return "count"
    if re.search(r"\bhow\s+(?:much|long|old|far|big)\b", normalized):
        return "quantity"
    if re.search(r"\bwhen\b", normalized) or re.search(r"\bwhat\s+(?:date|time|day|year)\b", normalized):
        return "temporal"
    if re.search(r"\bwho(?:m|se)?\b", normalized):
        return "person"
    if re.search(r"\bwhere\b", normalized):
        return "location"
    if re.search(r"\bwhy\b", normalized):
        return "reason"
    if re.search(r"\bhow\b", normalized):
        return "process"
    if re.search(r"\b(?:what|which)\b", normalized):
        return "factual"
    return "general"


def has_number(text: str) -> bool:
    return _NUMBER_RE.search(text or "") is not None


def has_date(text: str) -> bool:
    return any(p.search(text or "") for p in _DATE_RES)


def has_proper_name(text: str) -> bool:
    """Return ``True`` if ``text`` contains a capitalised word that does not start a sentence."""
    for sentence in _SENTENCE_SPLIT_RE.split(text or ""):
        words = sentence.split()
        if any(_CAPITALISED_RE.match(w) for w in words[1:]):
            return True
    return False


def matches_answer_shape(kind: str, text: str) -> bool:
    """Return ``True`` if ``text`` contains content of the answer shape ``kind``."""
    if kind in {"count", "quantity"}:
        return has_number(text)
    if kind == "temporal":
        return has_date(text)
    if kind == "person":
        return has_proper_name(text)
    if kind == "location":
        return _LOCATION_RE.search(text) is not None or has_proper_name(text)
    if kind == "reason":
        return _REASON_RE.search(text) is not None
    if kind == "process":
        return _PROCESS_RE.search(text) is not None
    if kind == "factual":
        return has_number(text) or _DEFINITION_RE.search(text) is not None
    return False


__all__ = [
    "STOPWORDS",
    "QUESTION_WORDS",
    "normalize",
    "tokenize",
    "content_tokens",
    "stem",
    "stems",
    "is_interrogative",
    "question_type",
    "has_number",
    "has_date",
    "has_proper_name",
    "matches_answer_shape",
]
