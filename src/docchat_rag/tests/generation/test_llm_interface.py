from types import SimpleNamespace

import pytest

from docchat_rag.common.errors import ConfigurationError
from docchat_rag.generation.llm_interface import OpenAIChatLikeLLM, create_llm


class DummyChatModel:
    """Records ``invoke`` calls and returns a message-like object."""

    def __init__(self, reply: str = "The total is $450."):
        self.reply = reply
        self.calls = []

    def invoke(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        return SimpleNamespace(content=self.reply)


def _make_config(**overrides):
    cfg = {"kind": "ollama", "model_name": "llama3.2:3b", "api_base": "http://localhost:11434/v1"}
    cfg.update(overrides)
    return cfg


def test_create_llm_maps_ollama_to_chat_wrapper():
    """
    ``kind: ollama`` uses the OpenAI-compatible chat wrapper.
    """
    llm = create_llm(_make_config())

    assert isinstance(llm, OpenAIChatLikeLLM)
    assert llm.api_base == "http://localhost:11434/v1"


@pytest.mark.parametrize(
    "cfg",
    [
        {"model_name": "m", "api_base": "http://x"},
        {"kind": "unknown-backend", "model_name": "m", "api_base": "http://x"},
        {"kind": "openai_chat", "model_name": "m"},
    ],
)
def test_create_llm_rejects_bad_config(cfg):
    """
    Missing kind, unknown kind and missing required keys are configuration
    errors.
    """
    with pytest.raises(ConfigurationError):
        create_llm(cfg)


def test_generate_sends_single_message_with_stop_list():
    """
    The prompt goes out as one human message; the configured stop list is
    used unless the call overrides it.
    """
    llm = create_llm(_make_config(model_kwargs={"stop_list": ["\nUser:"], "temperature": 0.1}))
    dummy = DummyChatModel()
    llm.llm = dummy

    answer = llm.generate("PROMPT", max_tokens=16)
    llm.generate("PROMPT", stop=["END"])

    messages, kwargs = dummy.calls[0]
    assert answer == "The total is $450."
    assert len(messages) == 1 and messages[0].content == "PROMPT"
    assert kwargs == {"stop": ["\nUser:"], "max_tokens": 16}
    assert dummy.calls[1][1]["stop"] == ["END"]
