"""Host settings persistence holding the extension blob and its memory map."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from scribe.config.defaults import MEMORIES_KEY, SETTINGS_KEY
from scribe.config.loader import get_settings_path, read_settings_file, write_settings_file


class SettingsStore(Protocol):
    """Read/write contract of the host application's settings persistence."""

    def memories(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Mutable ``collectionId -> hash -> record`` mapping."""

    def save(self) -> None:
        """Flush the current state to durable storage."""


class JsonSettingsStore:
    """Settings document on disk; every ``save`` rewrites the file atomically."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or get_settings_path()
        self._document: dict[str, Any] = read_settings_file(self.path)

    def section(self) -> dict[str, Any]:
        section = self._document.get(SETTINGS_KEY)
        if not isinstance(section, dict):
            section = {}
            self._document[SETTINGS_KEY] = section
        return section

    def memories(self) -> dict[str, dict[str, dict[str, Any]]]:
        section = self.section()
        memories = section.get(MEMORIES_KEY)
        if not isinstance(memories, dict):
            memories = {}
            section[MEMORIES_KEY] = memories
        return memories

    def save(self) -> None:
        write_settings_file(self.path, self._document)


class InMemorySettingsStore:
    """Volatile settings store for embedding in tests or ephemeral hosts."""

    def __init__(self, memories: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self._memories: dict[str, dict[str, dict[str, Any]]] = memories if memories is not None else {}
        self.saves = 0

    def memories(self) -> dict[str, dict[str, dict[str, Any]]]:
        return self._memories

    def save(self) -> None:
        self.saves += 1
