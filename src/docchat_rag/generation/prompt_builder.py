"""docchat_rag.generation.prompt_builder

Named prompt templates rendered with Jinja2.

Templates are plain JSON objects with a ``name`` plus optional ``system``,
``few_shot`` and ``user`` parts. They are registered from files, package
resources or dictionaries, and rendered by name. The context assembler and
the chat pipeline both render through a shared :class:`PromptBuilder`.

Classes
-------
PromptTemplate
    A single named template.
PromptBuilder
    Registry and renderer for templates.
"""

from __future__ import annotations

import json
import warnings
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from jinja2 import Environment, StrictUndefined, Template

DEFAULT_PROMPTS_SOURCE = "pkg:docchat_rag.prompts:default.json"

_ENV = Environment(undefined=StrictUndefined, keep_trailing_newline=False, autoescape=False)


class PromptTemplate:
    """A single named prompt template.

    The system message, few-shot examples (in order) and user part are
    joined with newlines and compiled once. Rendering with a missing
    variable raises :class:`jinja2.UndefinedError`.

    Parameters
    ----------
    name : str
        Template name.
    system : str or None, optional
        System-level instructions.
    few_shot : list[dict[str, str]] or None, optional
        Examples, each with a ``"content"`` key.
    user : str, optional
        User part of the template.
    """

    def __init__(
            self,
            name: str,
            system: Optional[str] = None,
            few_shot: Optional[List[Dict[str, str]]] = None,
            user: Optional[str] = "",
        ):
        self.name = name
        self.system = system
        self.few_shot = few_shot or []
        self.user = user or ""
        self._compiled: Optional[Template] = None

    @property
    def source(self) -> str:
        parts = []
        if self.system:
            parts.append(self.system)
        parts.extend(example.get("content", "") for example in self.few_shot)
        if self.user:
            parts.append(self.user)
        return "\n".join(parts)

    def render(self, **kwargs: Any) -> str:
        if self._compiled is None:
            self._compiled = _ENV.from_string(self.source)
        return self._compiled.render(**kwargs)


class PromptBuilder:
    """Registry and renderer for :class:`PromptTemplate` instances."""

    def __init__(self):
        self.templates: Dict[str, PromptTemplate] = {}

    @classmethod
    def from_sources(
            cls,
            sources: Iterable[str] | None = None,
            base_dir: Optional[Path] = None,
        ) -> "PromptBuilder":
        """Create a builder with the packaged defaults plus ``sources``.

        Later sources override templates of the same name.
        """
        builder = cls()
        builder.register_from_source(DEFAULT_PROMPTS_SOURCE)
        for source in sources or ():
            builder.register_from_source(source, base_dir=base_dir)
        return builder

    def register_from_dict(self, data: Dict[str, Any]) -> str:
        """Register a template from a dictionary and return its name.

        Raises
        ------
        KeyError
            If ``"name"`` is missing.
        TypeError
            If a field has the wrong type.
        ValueError
            If ``"name"`` is empty.
        """
        if "name" not in data:
            raise KeyError("Template definition missing required key: 'name'")
        name = data["name"]
        if not isinstance(name, str):
            raise TypeError(f"Template 'name' must be a str, got {type(name)!r}")
        if not name.strip():
            raise ValueError("Template 'name' must be a non-empty string")

        few_shot = data.get("few_shot")
        if few_shot is not None and not isinstance(few_shot, list):
            raise TypeError(f"Template 'few_shot' must be a list or None, got {type(few_shot)!r}")

        template = PromptTemplate(
            name=name,
            system=data.get("system"),
            few_shot=few_shot,
            user=data.get("user") or "",
        )
        if name in self.templates:
            warnings.warn(f"Overwriting existing prompt template: {name}")
        self.templates[name] = template
        return name

    def register_from_file(self, path: Union[Path, str], base_dir: Optional[Path] = None) -> List[str]:
        """Register every template in a JSON file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        ValueError
            If the file is not ``.json``.
        """
        p = Path(path)
        if not p.is_absolute() and base_dir is not None:
            p = base_dir / p
        p = p.resolve()
        if not p.exists():
            raise FileNotFoundError(f"Prompt file not found: {p}")
        if p.suffix.lower() != ".json":
            raise ValueError(f"Unsupported file type: {p.suffix}")

        return self._register_payload(json.loads(p.read_text(encoding="utf-8")), origin=str(p))

    def register_from_package(self, package: str, resource_path: str) -> List[str]:
        """Register every template in a JSON resource bundled with ``package``."""
        if not resource_path.lower().endswith(".json"):
            raise ValueError(f"Unsupported resource type: {resource_path}")

        try:
            res = resources.files(package).joinpath(resource_path)
        except ModuleNotFoundError as e:
            raise FileNotFoundError(f"Could not locate resource '{resource_path}' in package '{package}'") from e
        if not res.is_file():
            raise FileNotFoundError(f"Prompt resource not found: pkg:{package}:{resource_path}")

        return self._register_payload(
            json.loads(res.read_text(encoding="utf-8")),
            origin=f"pkg:{package}:{resource_path}",
        )

    def register_from_source(self, source: str, base_dir: Optional[Path] = None) -> List[str]:
        """Register templates from ``pkg:<package>:<path>``, ``file:<path>`` or a plain path."""
        if not isinstance(source, str):
            raise TypeError(f"source must be a str, got {type(source)!r}")

        if source.startswith("pkg:"):
            rest = source[len("pkg:"):]
            if ":" not in rest:
                raise ValueError("pkg: sources must be of the form 'pkg:<package>:<resource_path>'")
            package, resource_path = rest.split(":", 1)
            return self.register_from_package(package.strip(), resource_path.strip())

        if source.startswith("file:"):
            return self.register_from_file(Path(source[len("file:"):].strip()), base_dir=base_dir)

        return self.register_from_file(Path(source), base_dir=base_dir)

    def _register_payload(self, data: Any, origin: str) -> List[str]:
        if isinstance(data, dict):
            return [self.register_from_dict(data)]
        if isinstance(data, list):
            registered = []
            for item in data:
                if not isinstance(item, dict):
                    raise TypeError(f"Template list items in {origin} must be dicts, got {type(item)!r}")
                registered.append(self.register_from_dict(item))
            return registered
        raise TypeError(f"{origin} must contain an object or list of objects, got {type(data)!r}")

    def list_prompts(self) -> List[str]:
        return sorted(self.templates)

    def has_prompt(self, name: str) -> bool:
        return name in self.templates

    def get_template(self, name: str) -> PromptTemplate:
        """Return the template registered under ``name``.

        Raises
        ------
        KeyError
            If no template is registered under ``name``.
        """
        if name not in self.templates:
            available = ", ".join(self.list_prompts())
            raise KeyError(f"No template registered under name: {name}. Available: [{available}]")
        return self.templates[name]

    def build(self, name: str, **kwargs: Any) -> str:
        """Render the template ``name`` with ``kwargs``."""
        return self.get_template(name).render(**kwargs)


__all__ = ["DEFAULT_PROMPTS_SOURCE", "PromptTemplate", "PromptBuilder"]
