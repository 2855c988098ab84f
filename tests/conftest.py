from __future__ import annotations

import asyncio
import math
import re
from collections import Counter
from typing import Any, Callable

import pytest

from scribe.backends.base import BackendError, VectorBackend
from scribe.config.schema import (
    Config,
    RetrievalConfig,
    RetryConfig,
    StorageConfig,
    SummarizationConfig,
)
from scribe.memory.models import (
    ChatContext,
    ChatMessage,
    DeleteResult,
    HealthStatus,
    InsertResult,
    MemoryRecord,
    QueryHit,
    VectorItem,
    memory_hash,
)
from scribe.storage.settings_store import InMemorySettingsStore

_WORD = re.compile(r"[a-z0-9]+")


def bag_of_words_cosine(a: str, b: str) -> float:
    va = Counter(_WORD.findall(a.lower()))
    vb = Counter(_WORD.findall(b.lower()))
    dot = sum(va[w] * vb[w] for w in va)
    norm = math.sqrt(sum(v * v for v in va.values())) * math.sqrt(sum(v * v for v in vb.values()))
    return dot / norm if norm else 0.0


class FakeBackend(VectorBackend):
    """In-memory vector backend scoring by bag-of-words cosine."""

    name = "fake"

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, VectorItem]] = {}
        self.fail_on: set[str] = set()
        self.calls: list[str] = []
        self.closed = False

    def _enter(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise BackendError(f"{op} failed", backend=self.name, status_code=500)

    def hashes(self, collection_id: str) -> set[str]:
        return set(self.collections.get(collection_id, {}))

    def seed(self, collection_id: str, items: list[VectorItem]) -> None:
        bucket = self.collections.setdefault(collection_id, {})
        for item in items:
            bucket[item.hash] = item

    async def insert(self, collection_id: str, items: list[VectorItem]) -> InsertResult:
        self._enter("insert")
        self.seed(collection_id, items)
        return InsertResult(success=True, inserted=len(items))

    async def query(
        self, collection_id: str, query_text: str, top_k: int, threshold: float = 0.0
    ) -> list[QueryHit]:
        self._enter("query")
        hits = []
        for item in self.collections.get(collection_id, {}).values():
            score = bag_of_words_cosine(query_text, item.text)
            if score < threshold:
                continue
            hits.append(QueryHit(item.hash, item.text, item.index, score, dict(item.metadata)))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    async def delete(self, collection_id: str, hashes: list[str]) -> DeleteResult:
        self._enter("delete")
        bucket = self.collections.get(collection_id, {})
        deleted = sum(1 for h in hashes if bucket.pop(h, None) is not None)
        return DeleteResult(success=True, deleted=deleted)

    async def list(self, collection_id: str) -> list[str]:
        self._enter("list")
        return sorted(self.collections.get(collection_id, {}))

    async def get_by_hashes(self, collection_id: str, hashes: list[str]) -> list[VectorItem]:
        self._enter("get_by_hashes")
        bucket = self.collections.get(collection_id, {})
        return [bucket[h] for h in hashes if h in bucket]

    async def purge(self, collection_id: str) -> bool:
        self._enter("purge")
        self.collections.pop(collection_id, None)
        return True

    async def health_check(self) -> HealthStatus:
        if "health" in self.fail_on:
            return HealthStatus(healthy=False, message="down")
        return HealthStatus(healthy=True, message="OK (fake)")

    async def close(self) -> None:
        self.closed = True


class ScriptedProvider:
    """Completion provider answering through a callable; counts calls."""

    def __init__(self, respond: Callable[[str], str] | None = None) -> None:
        self.respond = respond or (lambda prompt: "A short summary.")
        self.prompts: list[str] = []
        self.gate: asyncio.Event | None = None

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        return self.respond(prompt)


def make_messages(count: int, *, start_date: int = 1_000, system_at: tuple[int, ...] = ()) -> list[ChatMessage]:
    """Alternating user/assistant messages with timestamps ``start_date + i``."""
    messages = []
    for i in range(count):
        is_user = i % 2 == 0
        messages.append(
            ChatMessage(
                text=f"message {i} from {'user' if is_user else 'bot'}",
                is_user=is_user,
                is_system=i in system_at,
                name="Alice" if is_user else "Bot",
                send_date=start_date + i,
            )
        )
    return messages


def make_context(messages: list[ChatMessage] | None = None, *, chat_id: str = "chat-1") -> ChatContext:
    return ChatContext(
        chat_id=chat_id,
        messages=messages if messages is not None else make_messages(6),
        character_id="3",
        user_name="Alice",
        character_name="Bot",
    )


def make_config(**sections: Any) -> Config:
    summarization = {
        "keep_recent_messages": 2,
        "batch_size": 2,
        "batch_delay_ms": 0,
        "debounce_ms": 0,
        "retry": RetryConfig(max_attempts=1, delay_ms=0, max_delay_ms=0),
        **sections.pop("summarization", {}),
    }
    retrieval = {"score_threshold": 0.1, **sections.pop("retrieval", {})}
    storage = {"collection_prefix": "test_", **sections.pop("storage", {})}
    return Config(
        summarization=SummarizationConfig(**summarization),
        retrieval=RetrievalConfig(**retrieval),
        storage=StorageConfig(**storage),
        **sections,
    )


def make_record(msg_id: str, turn: int, summary: str | None = None, **fields: Any) -> MemoryRecord:
    return MemoryRecord(
        msg_id=msg_id,
        content_hash=fields.pop("content_hash", "abc"),
        turn_index=turn,
        chat_id=fields.pop("chat_id", "chat-1"),
        character_id=fields.pop("character_id", "3"),
        summary=summary if summary is not None else f"summary of turn {turn}",
        **fields,
    )


def record_item(record: MemoryRecord) -> VectorItem:
    return VectorItem(
        hash=memory_hash(record.msg_id),
        text=record.summary,
        index=record.turn_index,
        metadata=record.to_dict(),
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()
