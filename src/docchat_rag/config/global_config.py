"""docchat_rag.config.global_config

Global configuration loader and accessors.

This module wraps the raw YAML configuration dictionary and exposes cached,
validated access to each section. Every section except ``generator_llm`` is
optional and falls back to an empty mapping, letting components apply their
own defaults.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for project configuration.

Functions
---------
configure_logging
    Configure root logging from a level name.
"""

from __future__ import annotations

import logging
import os
from functools import cached_property
from pathlib import Path
from typing import Any, Mapping

import yaml

from docchat_rag.common.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _expand_env(obj):
    """Recursively expand ``${VAR}`` patterns in nested dicts, lists and strings."""
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def configure_logging(level: str | int | None = None) -> None:
    """Configure root logging.

    Parameters
    ----------
    level : str or int or None, optional
        Level name or number. Defaults to ``$DOCCHAT_LOG_LEVEL`` or ``INFO``.

    Raises
    ------
    ConfigurationError
        If ``level`` is not a known level name.
    """
    level = level or os.environ.get("DOCCHAT_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ConfigurationError(f"Unknown log level: {level!r}")
        level = resolved
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("docchat_rag").setLevel(level)


class GlobalConfig:
    """Loader and accessor for project configuration.

    Parameters
    ----------
    raw : dict
        Raw configuration data, typically loaded from YAML.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict | None,
            config_path: Path | None = None,
        ):
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Configuration root must be a mapping, got {type(raw).__name__}")
        self.raw = dict(raw)
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        ConfigurationError
            If the file is not valid YAML or its root is not a mapping.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {cfg_path}: {e}") from e
        return cls(_expand_env(data), config_path=cfg_path)

    @property
    def base_dir(self) -> Path | None:
        return self.config_path.parent if self.config_path else None

    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` relative to the config file directory."""
        p = Path(value).expanduser()
        if not p.is_absolute() and self.base_dir is not None:
            p = self.base_dir / p
        return p.resolve()

    def _section(self, name: str) -> dict[str, Any]:
        value = self.raw.get(name)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"'{name}' must be a mapping, got {type(value).__name__}")
        return dict(value)

    @cached_property
    def generator_llm(self) -> dict:
        """Return the ``generator_llm`` section.

        Raises
        ------
        ConfigurationError
            If the section is missing.
        """
        section = self._section("generator_llm")
        if not section:
            raise ConfigurationError("Missing 'generator_llm' in configuration.")
        return section

    @cached_property
    def embedder(self) -> dict:
        """Return the ``embedder`` section (kind, model_name, api_base, timeout, max_input_length)."""
        return self._section("embedder")

    @cached_property
    def chunking(self) -> dict:
        return self._section("chunking")

    @cached_property
    def scoring(self) -> dict:
        """Return the ``scoring`` section (weights, min_chunk_length)."""
        return self._section("scoring")

    @cached_property
    def retriever(self) -> dict:
        """Return the ``retriever`` section (top_k, min_score, parallel_threshold, max_workers)."""
        return self._section("retriever")

    @cached_property
    def context(self) -> dict:
        """Return the ``context`` section (max_budget_units, memory_window, source_overhead)."""
        return self._section("context")

    @cached_property
    def tokenization(self) -> dict:
        return self._section("tokenization")

    @cached_property
    def storage(self) -> dict:
        """Return the ``storage`` section with ``path`` resolved against the config directory."""
        section = self._section("storage")
        if section.get("path"):
            section["path"] = str(self.resolve_path(section["path"]))
        return section

    @cached_property
    def prompts(self) -> list[str]:
        """Return extra prompt sources as a list.

        Raises
        ------
        ConfigurationError
            If ``prompts`` is neither a string nor a list of strings.
        """
        prompts = self.raw.get("prompts")
        if prompts is None:
            return []
        if isinstance(prompts, str):
            return [prompts]
        if isinstance(prompts, (list, tuple)) and all(isinstance(p, str) for p in prompts):
            return list(prompts)
        raise ConfigurationError(f"'prompts' must be a str or list[str], got {type(prompts).__name__}")

    @cached_property
    def logging(self) -> dict:
        return self._section("logging")


__all__ = ["GlobalConfig", "configure_logging"]
