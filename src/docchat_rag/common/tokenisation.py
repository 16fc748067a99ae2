"""docchat_rag.common.tokenisation

Token counting for context budgets.

The context assembler measures its budget in *units* produced by a token
counter, so the budget can follow a real tokenizer when one is configured
and a cheap estimate otherwise.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
HeuristicTokenCounter
    Dependency-free estimate (characters / ``chars_per_token``, rounded up).
TiktokenTokenCounter
    Exact token counter backed by the ``tiktoken`` library.

Functions
---------
create_token_counter
    Build a token counter from the ``tokenization`` configuration section.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from docchat_rag.common.errors import ConfigurationError


class TokenCounter(Protocol):
    """Count tokens in a string."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""


@dataclass(frozen=True)
class HeuristicTokenCounter:
    """Approximate token counter.

    Estimates ``ceil(len(text) / chars_per_token)``, which is close enough for
    English prose to size a prompt budget.

    Attributes
    ----------
    chars_per_token : int
        Approximate number of characters per token. Defaults to ``4``.
    """

    chars_per_token: int = 4

    def count(self, text: str) -> int:
        if not text:
            return 0
        cpt = max(1, int(self.chars_per_token))
        return math.ceil(len(text) / cpt)


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Token counter backed by ``tiktoken``.

    Attributes
    ----------
    encoding_name : str
        Name of the ``tiktoken`` encoding.
    _enc : Any
        Loaded encoding object.
    """

    encoding_name: str
    _enc: Any

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        """Construct a token counter for ``encoding_name``."""
        import tiktoken  # type: ignore

        enc = tiktoken.get_encoding(encoding_name)
        return cls(encoding_name=encoding_name, _enc=enc)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text))


def create_token_counter(config: Mapping[str, Any] | None = None) -> TokenCounter:
    """Create a token counter from a ``tokenization`` configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any] or None, optional
        Mapping with a ``type`` key (``"heuristic"`` or ``"tiktoken"``) and
        type-specific options (``chars_per_token``, ``encoding``). ``None``
        selects the heuristic counter.

    Returns
    -------
    TokenCounter
        Configured counter.

    Raises
    ------
    ConfigurationError
        If the type is unknown or ``chars_per_token`` is not a positive integer.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type") or "heuristic").lower().replace("-", "_")

    if kind in {"heuristic", "char", "chars"}:
        try:
            cpt = int(cfg.get("chars_per_token", 4))
        except (TypeError, ValueError) as e:
            raise ConfigurationError("tokenization.chars_per_token must be an integer") from e
        if cpt <= 0:
            raise ConfigurationError("tokenization.chars_per_token must be positive")
        return HeuristicTokenCounter(chars_per_token=cpt)

    if kind in {"tiktoken", "openai"}:
        enc = cfg.get("encoding") or "cl100k_base"
        return TiktokenTokenCounter.from_encoding_name(str(enc))

    raise ConfigurationError(f"Unknown tokenization type: {kind!r}")


__all__ = [
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenTokenCounter",
    "create_token_counter",
]
