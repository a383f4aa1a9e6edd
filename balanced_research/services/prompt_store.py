"""Prompt text lives in prompts/prompts.json, addressed by dotted keys.

Entries are strings or lists of lines; ``$name`` placeholders are filled with
``string.Template`` so prompt files need no escaping for braces.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """JSON prompt file reloaded whenever its mtime changes."""

    def __init__(self, path: Path):
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._loaded_mtime_ns: int | None = None

    def entries(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._loaded_mtime_ns != mtime_ns:
            loaded = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(loaded, dict):
                raise ValueError(f"{self.path.name} must hold a JSON object at the top level.")
            self._entries, self._loaded_mtime_ns = loaded, mtime_ns
        return self._entries

    def text(self, key: str) -> str:
        entry: Any = self.entries()
        for part in key.split("."):
            try:
                entry = entry[part]
            except (KeyError, TypeError):
                raise KeyError(f"Prompt key not found: {key}") from None

        if isinstance(entry, str):
            return entry
        if isinstance(entry, list) and all(isinstance(line, str) for line in entry):
            return "\n".join(entry)
        raise TypeError(f"Prompt '{key}' is neither a string nor a list of lines")

    def render(self, key: str, **values: Any) -> str:
        try:
            return Template(self.text(key)).substitute(values)
        except KeyError as exc:
            name = exc.args[0]
            if isinstance(name, str) and name.startswith("Prompt key not found"):
                raise
            raise KeyError(f"Missing template value '{name}' for prompt '{key}'") from exc

    def reset(self) -> None:
        self._entries = None
        self._loaded_mtime_ns = None


_catalog = PromptCatalog(PROMPTS_PATH)


def get_prompt(key: str) -> str:
    return _catalog.text(key)


def render_prompt(key: str, **values: Any) -> str:
    return _catalog.render(key, **values)


def clear_prompt_cache() -> None:
    _catalog.reset()
