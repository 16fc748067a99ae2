"""docchat_rag.generation.llm_interface

Generator backends used by the chat pipeline.

This module defines a small, provider-agnostic abstraction for answer
generation and two implementations backed by LangChain's OpenAI wrappers.
Any OpenAI-compatible server works, including a local Ollama instance
exposing its ``/v1`` endpoint.

Classes
-------
BaseLLM
    Abstract interface used by :class:`~docchat_rag.pipelines.rag_pipeline.RAGPipeline`.
OpenAILikeLLM
    Text completion through an OpenAI-compatible API.
OpenAIChatLikeLLM
    Chat completion through an OpenAI-compatible API.

Functions
---------
create_llm
    Construct an LLM implementation from a configuration mapping.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI, OpenAI

from docchat_rag.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_STOP = ["User:"]


def _clean_top_p(value: Any) -> Optional[float]:
    """Return ``value`` as a float in ``(0, 1)``, or ``None``."""
    if value is None:
        return None
    try:
        top_p = float(value)
    except (TypeError, ValueError):
        return None
    return top_p if 0.0 < top_p < 1.0 else None


class BaseLLM(ABC):
    """Abstract interface for answer generation."""

    default_stop_list: Optional[list[str]] = None

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            callback_manager: BaseCallbackHandler = None,
        ) -> "BaseLLM":
        """Create an instance from the ``generator_llm`` configuration section.

        Raises
        ------
        ConfigurationError
            If required keys are missing.
        """

    @abstractmethod
    def get_llm(self) -> Any:
        """Return the wrapped LangChain model."""

    @abstractmethod
    def generate(self, prompt: str, **kwargs) -> str:
        """Generate a completion for ``prompt``.

        Parameters
        ----------
        prompt : str
            Rendered prompt.
        **kwargs
            Forwarded to the LangChain model. ``stop`` overrides the default
            stop sequences.

        Returns
        -------
        str
            Generated text.
        """

    async def agenerate(self, prompt: str, **kwargs) -> str:
        """Asynchronously generate a completion; runs :meth:`generate` in an executor by default."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.generate(prompt, **kwargs))

    def _stop(self, kwargs: dict[str, Any]) -> list[str]:
        return kwargs.pop("stop", None) or self.default_stop_list or DEFAULT_STOP

    @staticmethod
    def _required(config: Mapping[str, Any], *keys: str) -> None:
        missing = [k for k in keys if not config.get(k)]
        if missing:
            raise ConfigurationError(f"generator_llm config is missing required keys: {missing}")


class OpenAILikeLLM(BaseLLM):
    """Text completion through :class:`langchain_openai.OpenAI`.

    Parameters
    ----------
    model_name : str
        Model identifier.
    api_base : str
        Base URL of the OpenAI-compatible endpoint.
    api_key : str, optional
        API key. Defaults to ``"fake"`` for local servers.
    callback_manager : BaseCallbackHandler, optional
        LangChain callback handler.
    **model_kwargs : Any
        Forwarded to the LangChain wrapper (``temperature``, ``top_p``,
        ``stop_list``...).
    """

    def __init__(
            self,
            model_name: str,
            api_base: str,
            api_key: str = "fake",
            callback_manager: BaseCallbackHandler = None,
            **model_kwargs: Any,
        ):
        self.api_base = api_base
        model_kwargs = dict(model_kwargs)
        self.default_stop_list = model_kwargs.pop("stop_list", None)
        top_p = _clean_top_p(model_kwargs.pop("top_p", None))

        self.llm = OpenAI(
            model_name=model_name,
            openai_api_base=api_base,
            openai_api_key=api_key or "fake",
            top_p=top_p or 1,
            callbacks=[callback_manager] if callback_manager else None,
            **model_kwargs,
        )

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            callback_manager: BaseCallbackHandler = None,
        ) -> "OpenAILikeLLM":
        cls._required(config, "model_name", "api_base")
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key") or "fake",
            callback_manager=callback_manager,
            **dict(config.get("model_kwargs") or {}),
        )

    def get_llm(self) -> OpenAI:
        return self.llm

    def generate(self, prompt: str, **kwargs) -> str:
        run_kwargs = dict(kwargs)
        stop = self._stop(run_kwargs)
        response = self.llm.generate([prompt], stop=stop, **run_kwargs)
        return response.generations[0][0].text


class OpenAIChatLikeLLM(BaseLLM):
    """Chat completion through :class:`langchain_openai.ChatOpenAI`.

    The prompt is sent as a single human message.
    """

    def __init__(
            self,
            model_name: str,
            api_base: str,
            api_key: str = "fake",
            callback_manager: BaseCallbackHandler = None,
            **model_kwargs: Any,
        ):
        self.api_base = api_base
        model_kwargs = dict(model_kwargs)
        self.default_stop_list = model_kwargs.pop("stop_list", None)
        top_p = _clean_top_p(model_kwargs.pop("top_p", None))
        if top_p is not None:
            model_kwargs["top_p"] = top_p

        self.llm = ChatOpenAI(
            model=model_name,
            base_url=api_base,
            api_key=api_key or "fake",
            callbacks=[callback_manager] if callback_manager else None,
            **model_kwargs,
        )

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            callback_manager: BaseCallbackHandler = None,
        ) -> "OpenAIChatLikeLLM":
        cls._required(config, "model_name", "api_base")
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key") or "fake",
            callback_manager=callback_manager,
            **dict(config.get("model_kwargs") or {}),
        )

    def get_llm(self) -> ChatOpenAI:
        return self.llm

    def generate(self, prompt: str, **kwargs) -> str:
        run_kwargs = dict(kwargs)
        stop = self._stop(run_kwargs)
        response = self.llm.invoke([HumanMessage(content=prompt)], stop=stop, **run_kwargs)
        return response.content if hasattr(response, "content") else str(response)

    async def agenerate(self, prompt: str, **kwargs) -> str:
        run_kwargs = dict(kwargs)
        stop = self._stop(run_kwargs)
        response = await self.llm.ainvoke([HumanMessage(content=prompt)], stop=stop, **run_kwargs)
        return response.content if hasattr(response, "content") else str(response)


def _get_llm_kind(cfg: Mapping[str, Any]) -> str:
    for key in ("kind", "type", "provider", "backend", "impl"):
        value = cfg.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _normalize_llm_kind(kind: str) -> str:
    """Normalise a user-facing kind string to a registry key."""
    k = kind.strip().lower().replace("-", "_").replace(" ", "_")
    aliases = {
        "openai": "openai_like",
        "openailike": "openai_like",
        "open_ai_like": "openai_like",
        "chatopenai": "openai_chat",
        "chat_openai": "openai_chat",
        "openai_chat_like": "openai_chat",
        "openaichatlike": "openai_chat",
        "ollama": "openai_chat",
    }
    return aliases.get(k, k)


def create_llm(config: Mapping[str, Any], callback_manager: Optional[BaseCallbackHandler] = None) -> BaseLLM:
    """Create an LLM implementation from the ``generator_llm`` configuration section.

    The implementation is selected by ``kind`` (or ``type``/``provider``/
    ``backend``/``impl``): ``openai_like`` for completions, ``openai_chat``
    (alias ``ollama``) for chat completions.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ConfigurationError
        If the kind is missing or unsupported.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_llm expected a mapping/dict, got {type(config)}")

    kind_raw = _get_llm_kind(config)
    if not kind_raw:
        raise ConfigurationError("generator_llm config is missing a 'kind' field, e.g. kind: openai_chat")

    registry: dict[str, type[BaseLLM]] = {
        "openai_like": OpenAILikeLLM,
        "openai_chat": OpenAIChatLikeLLM,
    }
    kind = _normalize_llm_kind(kind_raw)
    cls = registry.get(kind)
    if cls is None:
        raise ConfigurationError(
            f"Unknown LLM kind '{kind_raw}' (normalized to '{kind}'). Supported kinds: {sorted(registry)}."
        )

    logger.info("Creating %s for model %s", cls.__name__, config.get("model_name"))
    return cls.from_config_dict(config, callback_manager=callback_manager)


__all__ = [
    "BaseLLM",
    "OpenAILikeLLM",
    "OpenAIChatLikeLLM",
    "create_llm",
]
