"""Completion provider port."""

from __future__ import annotations

from typing import Protocol


class CompletionProvider(Protocol):
    """Text-generation backend used by the summarizer."""

    async def complete(self, prompt: str) -> str:
        """Return the model's completion for ``prompt``."""
