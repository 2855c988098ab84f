"""Prompt templating: ``{{token}}`` substitution, one ``{{#if context}}`` block, named macros."""

from __future__ import annotations

import re
from typing import Callable, Mapping

_IF_CONTEXT = re.compile(r"\{\{#if context\}\}(.*?)\{\{/if\}\}", re.DOTALL)
_TOKEN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_template(template: str, values: Mapping[str, object]) -> str:
    """Fill a template.

    The ``{{#if context}}...{{/if}}`` block is unwrapped when ``values["context"]``
    is non-empty and removed otherwise. Unknown tokens are left in place so the
    host can resolve its own macros later.
    """
    has_context = bool(str(values.get("context") or "").strip())
    text = _IF_CONTEXT.sub(lambda m: m.group(1) if has_context else "", template)

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        return "" if value is None else str(value)

    return _TOKEN.sub(_sub, text)


class MacroRegistry:
    """Named placeholders resolved at prompt-assembly time."""

    def __init__(self) -> None:
        self._macros: dict[str, Callable[[], str]] = {}

    def register(self, name: str, provider: Callable[[], str]) -> None:
        self._macros[name] = provider

    def unregister(self, name: str) -> None:
        self._macros.pop(name, None)

    def value(self, name: str) -> str | None:
        provider = self._macros.get(name)
        return provider() if provider is not None else None

    def resolve(self, text: str) -> str:
        """Replace every registered ``{{name}}`` in ``text``; leave the rest."""

        def _sub(match: re.Match[str]) -> str:
            provider = self._macros.get(match.group(1))
            return provider() if provider is not None else match.group(0)

        return _TOKEN.sub(_sub, text)

    def __contains__(self, name: object) -> bool:
        return name in self._macros
