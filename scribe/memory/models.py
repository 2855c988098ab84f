"""Typed models for summarized chat memory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from scribe.utils.helpers import now_ms

MEMORY_HASH_PREFIX = "mem_"


def memory_hash(msg_id: str) -> str:
    """Synthetic storage key for the memory of one message."""
    return f"{MEMORY_HASH_PREFIX}{msg_id}"


def msg_id_from_hash(hash_: str) -> str:
    if hash_.startswith(MEMORY_HASH_PREFIX):
        return hash_[len(MEMORY_HASH_PREFIX):]
    return hash_


@dataclass(slots=True)
class MemoryRecord:
    """Persisted summary of one chat turn."""

    msg_id: str
    content_hash: str
    turn_index: int
    chat_id: str
    character_id: str
    summary: str
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    needs_regeneration: bool = False

    @property
    def hash(self) -> str:
        return memory_hash(self.msg_id)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "msgId": self.msg_id,
            "contentHash": self.content_hash,
            "turnIndex": self.turn_index,
            "chatId": self.chat_id,
            "characterId": self.character_id,
            "summary": self.summary,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.needs_regeneration:
            payload["needsRegeneration"] = True
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, hash_: str | None = None) -> "MemoryRecord":
        """Build a record from its stored form; tolerates missing fields."""
        msg_id = data.get("msgId")
        if msg_id is None and hash_:
            msg_id = msg_id_from_hash(hash_)
        created = _as_int(data.get("createdAt"), default=now_ms())
        return cls(
            msg_id=str(msg_id or ""),
            content_hash=str(data.get("contentHash") or ""),
            turn_index=_as_int(data.get("turnIndex"), default=0),
            chat_id=str(data.get("chatId") or ""),
            character_id=str(data.get("characterId") or ""),
            summary=str(data.get("summary") or ""),
            created_at=created,
            updated_at=_as_int(data.get("updatedAt"), default=created),
            needs_regeneration=bool(data.get("needsRegeneration", False)),
        )

    @staticmethod
    def looks_like_record(data: Any) -> bool:
        return isinstance(data, dict) and "msgId" in data and "summary" in data


def _as_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class ChatMessage:
    """One message of the host chat, as the memory engine sees it."""

    text: str
    is_user: bool = False
    is_system: bool = False
    name: str = ""
    send_date: int | float | str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        """Accept the host chat's message shape (``mes``/``is_user``/``send_date``)."""
        return cls(
            text=str(data.get("mes", data.get("text", "")) or ""),
            is_user=bool(data.get("is_user", False)),
            is_system=bool(data.get("is_system", False)),
            name=str(data.get("name") or ""),
            send_date=data.get("send_date"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mes": self.text,
            "is_user": self.is_user,
            "is_system": self.is_system,
            "name": self.name,
            "send_date": self.send_date,
        }


@dataclass(slots=True)
class ChatContext:
    """Snapshot of the active chat handed over by the host application."""

    chat_id: str
    messages: list[ChatMessage] = field(default_factory=list)
    character_id: str | None = None
    group_id: str | None = None
    user_name: str = "User"
    character_name: str = "Assistant"

    @property
    def scope_id(self) -> str:
        return str(self.group_id if self.group_id is not None else self.character_id or "")


@dataclass(slots=True)
class Turn:
    """A summarizable chat message with its position and identity."""

    chat_index: int
    turn_number: int
    msg_id: str
    message: ChatMessage


@dataclass(slots=True)
class VectorItem:
    """One entry written to a vector backend."""

    hash: str
    text: str
    index: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "text": self.text,
            "index": self.index,
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "VectorItem":
        return cls(
            hash=str(data.get("hash") or ""),
            text=str(data.get("text") or ""),
            index=_as_int(data.get("index"), default=0),
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
        )


@dataclass(slots=True)
class QueryHit:
    """One scored similarity result."""

    hash: str
    text: str
    index: int
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "QueryHit":
        try:
            score = float(data.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        return cls(
            hash=str(data.get("hash") or ""),
            text=str(data.get("text") or ""),
            index=_as_int(data.get("index"), default=0),
            score=max(0.0, min(1.0, score)),
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
        )


@dataclass(slots=True)
class InsertResult:
    success: bool
    inserted: int


@dataclass(slots=True)
class DeleteResult:
    success: bool
    deleted: int


@dataclass(slots=True)
class HealthStatus:
    healthy: bool
    message: str = ""


@dataclass(slots=True)
class HydrationReport:
    """What one hydration pass loaded and repaired."""

    loaded: int = 0
    recovered: int = 0
    placeholders: int = 0
    skipped: bool = False


@dataclass(slots=True)
class BatchResult:
    """Aggregate outcome of a batch run."""

    total: int = 0
    processed: int = 0
    success: int = 0
    failed: int = 0
    stopped: bool = False


@dataclass(slots=True)
class MemoryPage:
    """One page of stored memories for management views."""

    records: list[MemoryRecord]
    page: int
    page_size: int
    total: int

    @property
    def page_count(self) -> int:
        if self.page_size <= 0:
            return 1
        return max(1, -(-self.total // self.page_size))


@dataclass(slots=True)
class MemoryStats:
    total_memories: int = 0
    needs_regeneration: int = 0
    pending: int = 0
    cache_size: int = 0
    backend: str = "unknown"
    backend_healthy: bool = False
    backend_message: str = ""
