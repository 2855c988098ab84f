"""Session facade wiring the memory engine to host events and management actions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from scribe.backends.base import BackendError, HeadersProvider, VectorBackend, create_backend
from scribe.memory.batch import ProgressCallback
from scribe.memory.composer import MemoryComposer
from scribe.memory.models import (
    BatchResult,
    ChatContext,
    ChatMessage,
    HealthStatus,
    HydrationReport,
    MemoryPage,
    MemoryRecord,
    MemoryStats,
    memory_hash,
)
from scribe.memory.orchestrator import SummarizationOrchestrator, to_vector_item
from scribe.memory.store import MetadataStore
from scribe.memory.summarizer import TurnSummarizer
from scribe.memory.templating import MacroRegistry
from scribe.providers.base import CompletionProvider
from scribe.storage.settings_store import JsonSettingsStore, SettingsStore
from scribe.utils.async_utils import debounce, wait_until
from scribe.utils.hashing import HashCache
from scribe.utils.helpers import now_ms

if TYPE_CHECKING:
    from scribe.config.schema import Config

USER_HEADER = "X-Scribe-User"


class NoActiveChatError(RuntimeError):
    """An operation needed the active chat but none was set."""


class MemoryService:
    """One memory session: owns the store, the pending set and both engines.

    Host event handlers (``on_*``) never raise on backend or generation
    failures. Management operations raise ``BackendError`` so that callers
    can report the failure.
    """

    def __init__(
        self,
        config: "Config",
        *,
        backend: VectorBackend | None = None,
        settings: SettingsStore | None = None,
        provider: CompletionProvider | None = None,
        get_headers: HeadersProvider | None = None,
        macros: MacroRegistry | None = None,
    ) -> None:
        self.config = config
        if backend is None:
            backend = create_backend(config.backend, get_headers=get_headers or self._default_headers)
        self.backend = backend
        self.settings = settings if settings is not None else JsonSettingsStore()
        if provider is None:
            from scribe.providers.litellm_provider import LiteLLMCompletionProvider

            provider = LiteLLMCompletionProvider.from_config(config.model)

        self.hash_cache = HashCache(config.storage.hash_cache_size)
        self.pending: set[str] = set()
        self.store = MetadataStore(self.settings, self.backend)
        self.context: ChatContext | None = None

        self.orchestrator = SummarizationOrchestrator(
            config=config,
            store=self.store,
            backend=self.backend,
            summarizer=TurnSummarizer(provider, config.summarization),
            context_provider=self._current_context,
            hash_cache=self.hash_cache,
            pending=self.pending,
        )
        self.composer = MemoryComposer(
            config=config,
            store=self.store,
            backend=self.backend,
            context_provider=self._current_context,
            pending=self.pending,
            hash_cache=self.hash_cache,
            macros=macros,
        )
        self._check_debouncer = debounce(self.orchestrator.on_trigger, config.summarization.debounce_ms)

    def _default_headers(self) -> dict[str, str]:
        return {USER_HEADER: self.config.backend.user_handle}

    def _current_context(self) -> ChatContext:
        if self.context is None:
            raise NoActiveChatError("no active chat")
        return self.context

    @property
    def active_collection(self) -> str | None:
        if self.context is None:
            return None
        return self.orchestrator.collection_for(self.context)

    def _resolve(self, collection_id: str | None) -> str:
        cid = collection_id or self.active_collection
        if not cid:
            raise NoActiveChatError("no collection given and no active chat")
        return cid

    @property
    def macros(self) -> MacroRegistry:
        return self.composer.macros

    @property
    def formatted_memory(self) -> str:
        return self.composer.formatted_memory

    # ── Host events ──────────────────────────────────────────────────

    async def on_chat_changed(self, context: ChatContext) -> HydrationReport:
        """Switch to another chat: rehydrate and render from cache right away."""
        self._check_debouncer.cancel()
        self.context = context
        cid = self.orchestrator.collection_for(context)
        self.store.set_active_collection(cid)
        report = await self.store.hydrate(cid)
        self.composer.update_formatted_memory_from_cache()
        logger.info("active collection {} ({} memories)", cid, len(self.store.cache))
        return report

    def on_message(self, messages: list[ChatMessage] | None = None) -> None:
        """A message was sent or received; coalesce and schedule a summarization check."""
        if messages is not None and self.context is not None:
            self.context.messages = messages
        self.schedule_check()

    def schedule_check(self) -> None:
        if self.context is None or not self.config.summarization.enabled:
            return
        self._check_debouncer()

    async def check_now(self) -> BatchResult | None:
        self._check_debouncer.cancel()
        if self.context is None:
            return None
        return await self.orchestrator.check_and_summarize()

    async def on_message_edited(self, message_index: int) -> bool:
        if self.context is None:
            return False
        return await self.orchestrator.handle_message_edited(message_index)

    async def on_message_deleted(self) -> int:
        if self.context is None:
            return 0
        return await self.orchestrator.handle_message_deleted()

    async def on_generation_started(self) -> str:
        """Refresh the injected memory before prompt assembly.

        The cache rendering is published first, so a generation that cannot
        wait still sees recent memories.
        """
        if self.context is None:
            return ""
        fallback = self.composer.update_formatted_memory_from_cache()
        prepared = await self.composer.prepare_memory_for_generation()
        return fallback if prepared is None else prepared

    def intercept(self, chat: list[ChatMessage]) -> int:
        return self.composer.intercept_chat(chat)

    # ── Management ───────────────────────────────────────────────────

    def collections(self) -> list[str]:
        return self.store.collections()

    def list_memories(
        self, page: int = 1, page_size: int = 20, *, collection_id: str | None = None
    ) -> MemoryPage:
        """One page of memories ordered by turn index."""
        records = sorted(
            self.store.get_all(self._resolve(collection_id)).values(),
            key=lambda r: (r.turn_index, r.created_at),
        )
        size = max(1, int(page_size))
        total = len(records)
        page_count = max(1, -(-total // size))
        page = min(max(1, int(page)), page_count)
        start = (page - 1) * size
        return MemoryPage(records=records[start : start + size], page=page, page_size=size, total=total)

    async def delete_memory(self, hash_: str, *, collection_id: str | None = None) -> bool:
        cid = self._resolve(collection_id)
        record = self.store.get(cid, hash_)
        if record is not None and record.msg_id in self.pending:
            logger.warning("memory {} is being summarized; not deleted", hash_)
            return False
        await self.backend.delete(cid, [hash_])
        return self.store.delete(cid, hash_)

    async def bulk_delete(
        self, hashes: list[str], *, collection_id: str | None = None
    ) -> tuple[int, int]:
        """Delete several memories; returns ``(deleted, failed)``."""
        cid = self._resolve(collection_id)
        deleted = failed = 0
        for hash_ in hashes:
            try:
                ok = await self.delete_memory(hash_, collection_id=cid)
            except BackendError as exc:
                logger.warning("delete {} from {} failed: {}", hash_, cid, exc)
                ok = False
            if ok:
                deleted += 1
            else:
                failed += 1
        return deleted, failed

    async def edit_summary(
        self, hash_: str, summary: str, *, collection_id: str | None = None
    ) -> MemoryRecord:
        """Replace a summary by hand; the entry is re-embedded under the same hash.

        The backend entry is upserted first, so a failed insert leaves both
        stores holding the previous summary.
        """
        cid = self._resolve(collection_id)
        text = summary.strip()
        if not text:
            raise ValueError("summary must not be empty")
        existing = self.store.get(cid, hash_)
        if existing is None:
            raise KeyError(hash_)
        updated = MemoryRecord(
            msg_id=existing.msg_id,
            content_hash=existing.content_hash,
            turn_index=existing.turn_index,
            chat_id=existing.chat_id,
            character_id=existing.character_id,
            summary=text,
            created_at=existing.created_at,
            updated_at=now_ms(),
        )
        await self.backend.insert(cid, [to_vector_item(updated, hash_)])
        self.store.save(cid, hash_, updated)
        return updated

    async def regenerate(
        self,
        hashes: list[str] | None = None,
        *,
        only_placeholders: bool = False,
        limit: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        return await self.orchestrator.regenerate_memories(
            hashes, only_placeholders=only_placeholders, limit=limit, on_progress=on_progress
        )

    def stop_regeneration(self) -> None:
        self.orchestrator.stop_regeneration()

    def pause_regeneration(self) -> None:
        self.orchestrator.pause_regeneration()

    def resume_regeneration(self) -> None:
        self.orchestrator.resume_regeneration()

    async def health(self) -> HealthStatus:
        return await self.backend.health_check()

    async def stats(self, *, collection_id: str | None = None) -> MemoryStats:
        records = self.store.get_all(self._resolve(collection_id))
        status = await self.health()
        return MemoryStats(
            total_memories=len(records),
            needs_regeneration=sum(1 for r in records.values() if r.needs_regeneration),
            pending=len(self.pending),
            cache_size=self.hash_cache.size,
            backend=self.backend.name or type(self.backend).__name__,
            backend_healthy=status.healthy,
            backend_message=status.message,
        )

    async def sync(self, *, collection_id: str | None = None) -> int:
        cid = self._resolve(collection_id)
        protected = [memory_hash(msg_id) for msg_id in self.pending]
        return await self.store.sync_with_backend(cid, protected_hashes=protected)

    async def purge(self, *, collection_id: str | None = None) -> int:
        """Drop a collection remotely and locally; returns local records removed."""
        cid = self._resolve(collection_id)
        await self.backend.purge(cid)
        removed = self.store.purge(cid)
        logger.info("purged {} ({} local records)", cid, removed)
        return removed

    async def close(self, *, drain_timeout_ms: float = 5000) -> None:
        """Let in-flight summaries finish, then release the backend."""
        if self.pending:
            try:
                await wait_until(lambda: not self.pending, timeout_ms=drain_timeout_ms, interval_ms=50)
            except TimeoutError:
                logger.warning("closing with {} summaries still in flight", len(self.pending))
        self._check_debouncer.cancel()
        await self.backend.close()

    async def __aenter__(self) -> "MemoryService":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
