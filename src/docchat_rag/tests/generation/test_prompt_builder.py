import json

import pytest
from jinja2 import UndefinedError

from docchat_rag.generation.prompt_builder import PromptBuilder


def test_packaged_defaults_are_registered():
    """
    ``from_sources`` always loads the packaged chat and context templates.
    """
    builder = PromptBuilder.from_sources()

    for name in ("context.source", "context.memory", "context.document", "chat.answer", "chat.smalltalk"):
        assert builder.has_prompt(name)
    for hint in ("brief", "list", "detailed", "balanced"):
        assert builder.has_prompt(f"length.{hint}")


def test_chat_answer_flags_one_line_requests():
    """
    The answer prompt marks brief requests and embeds the context block.
    """
    builder = PromptBuilder.from_sources()

    brief = builder.build("chat.answer", context="CTX", question="What is AI?", length_hint="brief")
    balanced = builder.build("chat.answer", context="CTX", question="What is AI?", length_hint="balanced")

    assert "(WANTS ONE LINE ANSWER): What is AI?" in brief
    assert "WANTS ONE LINE" not in balanced
    assert "CTX" in balanced
    assert balanced.rstrip().endswith("YOUR ANSWER:")


def test_missing_variable_raises():
    """
    Rendering with a missing variable fails loudly.
    """
    builder = PromptBuilder.from_sources()

    with pytest.raises(UndefinedError):
        builder.build("chat.smalltalk")


def test_file_source_overrides_default(tmp_path):
    """
    A ``file:`` source registered later replaces a packaged template of the
    same name, with a warning.
    """
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps([{"name": "chat.smalltalk", "user": "Hi! {{ question }}"}]), encoding="utf-8")

    with pytest.warns(UserWarning):
        builder = PromptBuilder.from_sources(["file:prompts.json"], base_dir=tmp_path)

    assert builder.build("chat.smalltalk", question="hello") == "Hi! hello"


def test_register_from_dict_validates_name():
    """
    Templates need a non-empty string name.
    """
    builder = PromptBuilder()

    with pytest.raises(KeyError):
        builder.register_from_dict({"user": "x"})
    with pytest.raises(ValueError):
        builder.register_from_dict({"name": "  ", "user": "x"})
    with pytest.raises(TypeError):
        builder.register_from_dict({"name": 3, "user": "x"})


def test_system_few_shot_and_user_are_joined():
    """
    System text, few-shot examples and the user part render in that order.
    """
    builder = PromptBuilder()
    builder.register_from_dict(
        {
            "name": "t",
            "system": "SYS",
            "few_shot": [{"content": "EX1"}, {"content": "EX2"}],
            "user": "Q={{ q }}",
        }
    )

    assert builder.build("t", q=1) == "SYS\nEX1\nEX2\nQ=1"


def test_unknown_template_and_bad_sources():
    """
    Unknown names raise ``KeyError``; unsupported sources are rejected.
    """
    builder = PromptBuilder()

    with pytest.raises(KeyError):
        builder.get_template("missing")
    with pytest.raises(ValueError):
        builder.register_from_source("pkg:docchat_rag.prompts")
    with pytest.raises(FileNotFoundError):
        builder.register_from_source("pkg:docchat_rag.prompts:missing.json")
