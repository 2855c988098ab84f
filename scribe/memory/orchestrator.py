"""Summarization orchestrator: decides which turns to summarize and keeps stores in sync."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from loguru import logger

from scribe.backends.base import BackendError, VectorBackend
from scribe.memory.batch import BatchRunner, ProgressCallback
from scribe.memory.identity import collection_id, content_hash, normalize_message_id
from scribe.memory.models import (
    BatchResult,
    ChatContext,
    ChatMessage,
    MemoryRecord,
    Turn,
    VectorItem,
)
from scribe.memory.store import MetadataStore
from scribe.memory.summarizer import SummaryGenerationError, TurnSummarizer
from scribe.utils.async_utils import AsyncMutex
from scribe.utils.hashing import HashCache
from scribe.utils.helpers import now_ms

if TYPE_CHECKING:
    from scribe.config.schema import Config

ContextProvider = Callable[[], ChatContext]


def to_vector_item(record: MemoryRecord, hash_: str | None = None) -> VectorItem:
    """Backend entry for a record: the summary is embedded, the record rides along."""
    return VectorItem(
        hash=hash_ or record.hash,
        text=record.summary,
        index=record.turn_index,
        metadata=record.to_dict(),
    )


class SummarizationOrchestrator:
    """Per-message state machine ``unsummarized -> pending -> summarized``.

    A message id sits in ``pending`` for the whole time its summary is being
    generated and written; nothing prunes, deletes or re-queues it meanwhile.
    Overlapping ``check_and_summarize`` calls are dropped, not queued.
    """

    def __init__(
        self,
        *,
        config: "Config",
        store: MetadataStore,
        backend: VectorBackend,
        summarizer: TurnSummarizer,
        context_provider: ContextProvider,
        hash_cache: HashCache | None = None,
        pending: set[str] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.backend = backend
        self.summarizer = summarizer
        self.context_provider = context_provider
        self.hash_cache = hash_cache or HashCache(config.storage.hash_cache_size)
        self.pending: set[str] = pending if pending is not None else set()
        self._sync_guard = AsyncMutex()
        self._regen_runner: BatchRunner[tuple[str, MemoryRecord]] | None = None

    # ── Identity helpers ─────────────────────────────────────────────

    def collection_for(self, context: ChatContext) -> str:
        return collection_id(
            context,
            prefix=self.config.storage.collection_prefix,
            hash_cache=self.hash_cache,
        )

    def message_id(self, message: ChatMessage, index: int | None) -> str:
        return normalize_message_id(message, index, hash_cache=self.hash_cache)

    def live_message_ids(self, messages: list[ChatMessage]) -> set[str]:
        return {self.message_id(m, i) for i, m in enumerate(messages) if not m.is_system}

    @property
    def is_syncing(self) -> bool:
        return self._sync_guard.locked

    def summarizable_turns(self, messages: list[ChatMessage]) -> list[Turn]:
        """Turns before the protected tail, numbered over the included subset."""
        cfg = self.config.summarization
        included = [(i, m) for i, m in enumerate(messages) if not m.is_system]
        keep = cfg.keep_recent_messages
        if len(included) <= keep:
            return []
        window = included[: len(included) - keep] if keep > 0 else included
        turns: list[Turn] = []
        number = 0
        for index, message in window:
            if message.is_user and not cfg.summarize_user_messages:
                continue
            number += 1
            turns.append(
                Turn(
                    chat_index=index,
                    turn_number=number,
                    msg_id=self.message_id(message, index),
                    message=message,
                )
            )
        return turns

    # ── Summarization ────────────────────────────────────────────────

    async def check_and_summarize(self) -> BatchResult | None:
        """Summarize every eligible turn not yet summarized.

        Returns ``None`` when disabled or when another run is in flight.
        """
        if not self.config.summarization.enabled:
            return None
        if not self._sync_guard.try_acquire():
            logger.debug("summarization already running; trigger dropped")
            return None
        try:
            context = self.context_provider()
            turns = self.summarizable_turns(context.messages)
            if not turns:
                return BatchResult()
            cid = self.collection_for(context)
            await self.store.hydrate(cid)
            done = self.store.summarized_msg_ids()
            todo = [t for t in turns if t.msg_id not in done and t.msg_id not in self.pending]
            if not todo:
                return BatchResult()

            logger.info("summarizing {} turns in {}", len(todo), cid)
            runner: BatchRunner[Turn] = BatchRunner(
                batch_size=self.config.summarization.batch_size,
                delay_ms=self.config.summarization.batch_delay_ms,
            )
            result = await runner.run(todo, lambda turn: self.summarize_turn(turn, context, cid))
            logger.info(
                "summarization pass {}: {} ok, {} failed of {}",
                cid,
                result.success,
                result.failed,
                result.total,
            )
            return result
        finally:
            self._sync_guard.release()

    async def on_trigger(self) -> BatchResult | None:
        """Entry point for host events; callers coalesce rapid triggers themselves."""
        return await self.check_and_summarize()

    async def summarize_turn(self, turn: Turn, context: ChatContext, cid: str) -> bool:
        """Generate and persist one summary. Failure leaves no trace."""
        if turn.msg_id in self.pending:
            return False
        self.pending.add(turn.msg_id)
        try:
            try:
                summary = await self.summarizer.summarize(
                    turn,
                    context.messages,
                    user_name=context.user_name,
                    character_name=context.character_name,
                )
            except SummaryGenerationError as exc:
                logger.warning("skip turn {} ({}): {}", turn.turn_number, turn.msg_id, exc)
                return False

            record = MemoryRecord(
                msg_id=turn.msg_id,
                content_hash=content_hash(turn.message.text, hash_cache=self.hash_cache),
                turn_index=turn.turn_number,
                chat_id=str(context.chat_id),
                character_id=context.scope_id,
                summary=summary,
            )
            return await self._persist(cid, record)
        finally:
            self.pending.discard(turn.msg_id)

    async def _persist(self, cid: str, record: MemoryRecord) -> bool:
        self.store.save(cid, record.hash, record)
        try:
            await self.backend.insert(cid, [to_vector_item(record)])
        except BackendError as exc:
            logger.warning("insert {} into {} failed, rolled back: {}", record.hash, cid, exc)
            self.store.delete(cid, record.hash)
            return False
        return True

    # ── Edits & deletions ────────────────────────────────────────────

    async def handle_message_edited(self, message_index: int) -> bool:
        """Re-summarize an edited message whose text changed.

        The new summary is generated before any stored state is touched, so a
        failed regeneration keeps the previous summary.
        """
        context = self.context_provider()
        if not 0 <= message_index < len(context.messages):
            return False
        message = context.messages[message_index]
        if message.is_system:
            return False
        cid = self.collection_for(context)
        await self.store.hydrate(cid)

        msg_id = self.message_id(message, message_index)
        found = self.store.find_by_msg_id(msg_id)
        if found is None:
            return False
        key, existing = found
        if existing.content_hash == content_hash(message.text, hash_cache=self.hash_cache):
            return False
        return await self._regenerate(cid, context, key, existing, message_index, message)

    async def _regenerate(
        self,
        cid: str,
        context: ChatContext,
        key: str,
        existing: MemoryRecord,
        message_index: int,
        message: ChatMessage,
    ) -> bool:
        """Replace the summary stored under ``key``.

        The new entry is upserted before anything is removed, so a failed
        generation or insert leaves the old summary in both stores.
        """
        if existing.msg_id in self.pending:
            logger.debug("regeneration of {} skipped: already pending", existing.msg_id)
            return False
        self.pending.add(existing.msg_id)
        try:
            turn = Turn(
                chat_index=message_index,
                turn_number=existing.turn_index or self._turn_number_for(context, message_index),
                msg_id=existing.msg_id,
                message=message,
            )
            try:
                summary = await self.summarizer.summarize(
                    turn,
                    context.messages,
                    user_name=context.user_name,
                    character_name=context.character_name,
                )
            except SummaryGenerationError as exc:
                logger.warning("regeneration of {} failed, keeping old summary: {}", existing.msg_id, exc)
                return False

            record = MemoryRecord(
                msg_id=existing.msg_id,
                content_hash=content_hash(message.text, hash_cache=self.hash_cache),
                turn_index=turn.turn_number,
                chat_id=str(context.chat_id),
                character_id=context.scope_id,
                summary=summary,
                created_at=existing.created_at,
                updated_at=now_ms(),
            )
            try:
                await self.backend.insert(cid, [to_vector_item(record)])
            except BackendError as exc:
                logger.warning("regenerated {} not stored, keeping old summary: {}", record.hash, exc)
                return False
            self.store.save(cid, record.hash, record)
            if key != record.hash:
                await self._drop_replaced(cid, key)
            return True
        finally:
            self.pending.discard(existing.msg_id)

    async def _drop_replaced(self, cid: str, key: str) -> None:
        """Remove an entry stored under a legacy key once its successor is written."""
        self.store.delete(cid, key)
        try:
            await self.backend.delete(cid, [key])
        except BackendError as exc:
            logger.warning("old entry {} left in {} for the next sync: {}", key, cid, exc)

    def _turn_number_for(self, context: ChatContext, message_index: int) -> int:
        for turn in self.summarizable_turns(context.messages):
            if turn.chat_index == message_index:
                return turn.turn_number
        return message_index + 1

    async def handle_message_deleted(self) -> int:
        """Remove every record whose message is gone from the live chat.

        The delete event does not say which message went away, so this sweeps
        all records of the active collection.
        """
        context = self.context_provider()
        cid = self.collection_for(context)
        await self.store.hydrate(cid)
        live = self.live_message_ids(context.messages)
        orphans = [
            hash_
            for hash_, record in self.store.get_all(cid).items()
            if record.msg_id not in live and record.msg_id not in self.pending
        ]
        if not orphans:
            return 0
        try:
            await self.backend.delete(cid, orphans)
        except BackendError as exc:
            logger.warning("orphan sweep in {} deferred: {}", cid, exc)
            return 0
        for hash_ in orphans:
            self.store.delete(cid, hash_)
        logger.info("orphan sweep removed {} memories from {}", len(orphans), cid)
        return len(orphans)

    # ── Bulk regeneration ────────────────────────────────────────────

    async def regenerate_memories(
        self,
        hashes: list[str] | None = None,
        *,
        only_placeholders: bool = False,
        limit: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Regenerate stored summaries from their live messages.

        Records whose message is no longer in the chat count as failures.
        """
        context = self.context_provider()
        cid = self.collection_for(context)
        await self.store.hydrate(cid)
        records = self.store.get_all(cid)
        if hashes is not None:
            selected = [(h, records[h]) for h in hashes if h in records]
        else:
            selected = list(records.items())
        if only_placeholders:
            selected = [(h, r) for h, r in selected if r.needs_regeneration]
        selected.sort(key=lambda pair: pair[1].turn_index)

        by_msg_id = {
            self.message_id(m, i): (i, m) for i, m in enumerate(context.messages) if not m.is_system
        }

        async def _process(entry: tuple[str, MemoryRecord]) -> bool:
            key, record = entry
            located = by_msg_id.get(record.msg_id)
            if located is None:
                logger.warning("message for memory {} not found in chat", key)
                return False
            index, message = located
            return await self._regenerate(cid, context, key, record, index, message)

        runner: BatchRunner[tuple[str, MemoryRecord]] = BatchRunner(
            batch_size=self.config.summarization.batch_size,
            delay_ms=self.config.summarization.batch_delay_ms,
            on_progress=on_progress,
        )
        self._regen_runner = runner
        try:
            return await runner.run(selected, _process, limit=limit)
        finally:
            self._regen_runner = None

    def stop_regeneration(self) -> None:
        if self._regen_runner is not None:
            self._regen_runner.stop()

    def pause_regeneration(self) -> None:
        if self._regen_runner is not None:
            self._regen_runner.pause()

    def resume_regeneration(self) -> None:
        if self._regen_runner is not None:
            self._regen_runner.resume()
