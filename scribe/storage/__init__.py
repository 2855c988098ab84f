"""Durable settings persistence."""

from scribe.storage.settings_store import InMemorySettingsStore, JsonSettingsStore, SettingsStore

__all__ = ["InMemorySettingsStore", "JsonSettingsStore", "SettingsStore"]
