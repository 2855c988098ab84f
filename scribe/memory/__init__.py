"""Summarized chat memory: models, storage, orchestration and retrieval."""

from scribe.memory.models import (
    ChatContext,
    ChatMessage,
    MemoryRecord,
    QueryHit,
    Turn,
    VectorItem,
    memory_hash,
)

__all__ = [
    "ChatContext",
    "ChatMessage",
    "MemoryRecord",
    "QueryHit",
    "Turn",
    "VectorItem",
    "memory_hash",
]
