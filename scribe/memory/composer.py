"""Memory injection: choose summaries for a generation and prune summarized history."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from loguru import logger

from scribe.backends.base import BackendError, VectorBackend
from scribe.memory.identity import collection_id, normalize_message_id
from scribe.memory.models import ChatContext, ChatMessage, MemoryRecord, QueryHit
from scribe.memory.store import MetadataStore
from scribe.memory.templating import MacroRegistry, render_template
from scribe.utils.async_utils import AsyncMutex
from scribe.utils.hashing import HashCache

if TYPE_CHECKING:
    from scribe.config.schema import Config


def select_summaries(
    candidates: list[tuple[str, MemoryRecord]],
    hits: list[QueryHit],
    *,
    always_include_recent: int,
    max_results: int,
) -> list[MemoryRecord]:
    """Hybrid selection: the newest N always, then similarity hits, then recency backfill.

    ``candidates`` are ``(stored key, record)`` pairs ordered newest first; hits
    are matched on the stored key. The result is chronological.
    """
    if max_results <= 0 or not candidates:
        return []
    by_key = dict(candidates)
    recent_n = min(always_include_recent, max_results)

    selected: list[MemoryRecord] = [record for _, record in candidates[:recent_n]]
    chosen = {key for key, _ in candidates[:recent_n]}

    for hit in hits:
        if len(selected) >= max_results:
            break
        record = by_key.get(hit.hash)
        if record is None or hit.hash in chosen:
            continue
        selected.append(record)
        chosen.add(hit.hash)

    for key, record in candidates[recent_n:]:
        if len(selected) >= max_results:
            break
        if key in chosen:
            continue
        selected.append(record)
        chosen.add(key)

    return sorted(selected, key=lambda record: record.turn_index)


class MemoryComposer:
    """Builds the injected memory text and trims already-summarized chat history."""

    def __init__(
        self,
        *,
        config: "Config",
        store: MetadataStore,
        backend: VectorBackend,
        context_provider: Callable[[], ChatContext],
        pending: set[str],
        hash_cache: HashCache | None = None,
        macros: MacroRegistry | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.backend = backend
        self.context_provider = context_provider
        self.pending = pending
        self.hash_cache = hash_cache or HashCache(config.storage.hash_cache_size)
        self.macros = macros or MacroRegistry()
        self.formatted_memory = ""
        self._prepare_guard = AsyncMutex()
        self.macros.register(self.config.retrieval.macro_name, lambda: self.formatted_memory)

    def _collection(self, context: ChatContext) -> str:
        return collection_id(
            context,
            prefix=self.config.storage.collection_prefix,
            hash_cache=self.hash_cache,
        )

    def _candidates(self) -> list[tuple[str, MemoryRecord]]:
        usable = [
            (key, record)
            for key, record in self.store.cache.items()
            if record.summary and not record.needs_regeneration
        ]
        usable.sort(key=lambda pair: pair[1].turn_index, reverse=True)
        return usable

    def render(self, records: list[MemoryRecord]) -> str:
        """Render records through the per-item template and the injection wrapper."""
        retrieval = self.config.retrieval
        if not records:
            return ""
        items = [
            render_template(
                retrieval.memory_template,
                {
                    "summary": record.summary,
                    "turn": record.turn_index,
                    "msgId": record.msg_id,
                },
            )
            for record in records
        ]
        joined = retrieval.separator.join(items)
        if not retrieval.injection_template:
            return joined
        return render_template(retrieval.injection_template, {"memories": joined})

    def _set_output(self, text: str) -> str:
        self.formatted_memory = text
        return text

    @staticmethod
    def build_query(messages: list[ChatMessage], count: int) -> str:
        recent = [m.text for m in messages if not m.is_system and m.text.strip()]
        return "\n".join(recent[-count:])

    async def prepare_memory_for_generation(self) -> str | None:
        """Select and render memories for the next generation.

        Returns ``None`` when another preparation is already running (the call
        is dropped). Backend failures degrade to recency-only selection.
        """
        if not self._prepare_guard.try_acquire():
            logger.debug("memory preparation already running; call dropped")
            return None
        try:
            retrieval = self.config.retrieval
            if not retrieval.enabled:
                return self._set_output("")
            context = self.context_provider()
            cid = self._collection(context)
            await self.store.hydrate(cid)

            candidates = self._candidates()
            if not candidates:
                return self._set_output("")

            hits: list[QueryHit] = []
            query = self.build_query(context.messages, retrieval.query_messages)
            if query and retrieval.max_retrieved_summaries > 0:
                try:
                    hits = await self.backend.query(
                        cid,
                        query,
                        retrieval.max_retrieved_summaries,
                        retrieval.score_threshold,
                    )
                except BackendError as exc:
                    logger.warning("memory query failed for {}, using recency only: {}", cid, exc)

            selected = select_summaries(
                candidates,
                hits,
                always_include_recent=retrieval.always_include_recent,
                max_results=retrieval.max_retrieved_summaries,
            )
            return self._set_output(self.render(selected))
        finally:
            self._prepare_guard.release()

    def update_formatted_memory_from_cache(self) -> str:
        """Recency-only rendering from hydrated state, with no backend call."""
        retrieval = self.config.retrieval
        if not retrieval.enabled:
            return self._set_output("")
        newest = [record for _, record in self._candidates()[: retrieval.max_retrieved_summaries]]
        newest.sort(key=lambda r: r.turn_index)
        return self._set_output(self.render(newest))

    def intercept_chat(self, chat: list[ChatMessage]) -> int:
        """Drop outgoing history already covered by summaries, in place.

        Everything non-system up to the last summarized (and not pending)
        message goes, except pending messages. Returns the number removed.
        """
        if not self.config.retrieval.prune_summarized:
            return 0
        summarized = self.store.summarized_msg_ids(include_placeholders=False)
        if not summarized:
            return 0

        ids = [
            None if m.is_system else normalize_message_id(m, i, hash_cache=self.hash_cache)
            for i, m in enumerate(chat)
        ]
        last = -1
        for i, msg_id in enumerate(ids):
            if msg_id is not None and msg_id in summarized and msg_id not in self.pending:
                last = i
        if last < 0:
            return 0

        removed = 0
        for i in range(last, -1, -1):
            msg_id = ids[i]
            if msg_id is None or msg_id in self.pending:
                continue
            del chat[i]
            removed += 1
        if removed:
            logger.debug("pruned {} summarized messages from outgoing chat", removed)
        return removed
