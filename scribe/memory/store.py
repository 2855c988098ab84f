"""Metadata store: durable memory map plus a volatile cache for the active collection."""

from __future__ import annotations

import json
from typing import Iterable

from loguru import logger

from scribe.backends.base import BackendError, VectorBackend
from scribe.memory.models import HydrationReport, MemoryRecord, memory_hash, msg_id_from_hash
from scribe.storage.settings_store import SettingsStore
from scribe.utils.async_utils import AsyncMutex

# Generic text used when the backend can only be searched, not enumerated.
RECOVERY_QUERY = "conversation summary memory"


class MetadataStore:
    """Persist ``MemoryRecord`` maps per collection and mirror the active one in memory.

    The durable map is authoritative. The cache is keyed by hash and only ever
    holds records of the active collection.
    """

    def __init__(self, settings: SettingsStore, backend: VectorBackend) -> None:
        self.settings = settings
        self.backend = backend
        self._cache: dict[str, MemoryRecord] = {}
        self._active_collection: str | None = None
        self._hydrated_for: str | None = None
        self._hydrate_mutex = AsyncMutex()

    # ── Active collection & cache ────────────────────────────────────

    @property
    def active_collection(self) -> str | None:
        return self._active_collection

    def set_active_collection(self, collection_id: str) -> None:
        if collection_id == self._active_collection:
            return
        self._active_collection = collection_id
        self._cache.clear()
        self._hydrated_for = None

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated_for is not None and self._hydrated_for == self._active_collection

    @property
    def cache(self) -> dict[str, MemoryRecord]:
        return self._cache

    def find_by_msg_id(self, msg_id: str) -> tuple[str, MemoryRecord] | None:
        """Cached ``(key, record)`` for a message; legacy keys are found by scanning."""
        key = memory_hash(msg_id)
        if key in self._cache:
            return key, self._cache[key]
        for key, record in self._cache.items():
            if record.msg_id == msg_id:
                return key, record
        return None

    def summarized_msg_ids(self, *, include_placeholders: bool = True) -> set[str]:
        return {
            record.msg_id
            for record in self._cache.values()
            if include_placeholders or not record.needs_regeneration
        }

    # ── Durable layer ────────────────────────────────────────────────

    def _durable(self, collection_id: str, *, create: bool = False) -> dict[str, dict]:
        memories = self.settings.memories()
        bucket = memories.get(collection_id)
        if not isinstance(bucket, dict):
            bucket = {}
            if create:
                memories[collection_id] = bucket
        return bucket

    def collections(self) -> list[str]:
        return sorted(self.settings.memories())

    def save(self, collection_id: str, hash_: str, record: MemoryRecord) -> None:
        self._durable(collection_id, create=True)[hash_] = record.to_dict()
        self.settings.save()
        if collection_id == self._active_collection:
            self._cache[hash_] = record

    def delete(self, collection_id: str, hash_: str) -> bool:
        bucket = self._durable(collection_id)
        removed = bucket.pop(hash_, None) is not None
        if removed:
            self.settings.save()
        if collection_id == self._active_collection:
            self._cache.pop(hash_, None)
        return removed

    def get(self, collection_id: str, hash_: str) -> MemoryRecord | None:
        if collection_id == self._active_collection and hash_ in self._cache:
            return self._cache[hash_]
        data = self._durable(collection_id).get(hash_)
        if not isinstance(data, dict):
            return None
        return MemoryRecord.from_dict(data, hash_=hash_)

    def get_all(self, collection_id: str) -> dict[str, MemoryRecord]:
        return {
            hash_: MemoryRecord.from_dict(data, hash_=hash_)
            for hash_, data in self._durable(collection_id).items()
            if isinstance(data, dict)
        }

    def purge(self, collection_id: str) -> int:
        removed = self.settings.memories().pop(collection_id, None)
        if removed is not None:
            self.settings.save()
        if collection_id == self._active_collection:
            self._cache.clear()
        return len(removed or {})

    # ── Hydration & reconciliation ───────────────────────────────────

    async def hydrate(self, collection_id: str, *, force: bool = False) -> HydrationReport:
        """Load the durable map into the cache and backfill hashes only the backend knows.

        Idempotent unless ``force``. Never fails on backend trouble: what cannot
        be recovered becomes a placeholder flagged for regeneration.
        """
        self.set_active_collection(collection_id)
        if not force and self._hydrated_for == collection_id and self._cache:
            return HydrationReport(loaded=len(self._cache), skipped=True)

        async def _run() -> HydrationReport:
            if not force and self._hydrated_for == collection_id and self._cache:
                return HydrationReport(loaded=len(self._cache), skipped=True)
            return await self._hydrate(collection_id)

        return await self._hydrate_mutex.run_exclusive(_run)

    async def _hydrate(self, collection_id: str) -> HydrationReport:
        durable = self.get_all(collection_id)
        self._cache = dict(durable)
        report = HydrationReport(loaded=len(durable))

        try:
            backend_hashes = await self.backend.list(collection_id)
        except BackendError as exc:
            logger.warning("hydrate {}: backend list failed, using local state: {}", collection_id, exc)
            self._hydrated_for = collection_id
            return report

        missing = [h for h in dict.fromkeys(backend_hashes) if h not in durable]
        if missing:
            recovered = await self._recover(collection_id, missing, total=len(backend_hashes))
            for hash_, record in recovered.items():
                self.save(collection_id, hash_, record)
            report.recovered = len(recovered)
            for hash_ in missing:
                if hash_ in recovered:
                    continue
                self.save(collection_id, hash_, _placeholder(hash_))
                report.placeholders += 1
            logger.info(
                "hydrate {}: {} missing locally, recovered={} placeholders={}",
                collection_id,
                len(missing),
                report.recovered,
                report.placeholders,
            )

        self._hydrated_for = collection_id
        return report

    async def _recover(
        self, collection_id: str, hashes: list[str], *, total: int
    ) -> dict[str, MemoryRecord]:
        recovered: dict[str, MemoryRecord] = {}
        wanted = set(hashes)
        try:
            for item in await self.backend.get_by_hashes(collection_id, hashes):
                record = record_from_remote(item.hash, item.text, item.index, item.metadata)
                if item.hash in wanted and record is not None:
                    recovered[item.hash] = record
        except BackendError as exc:
            logger.debug("hydrate {}: getByHashes failed: {}", collection_id, exc)

        remaining = wanted - set(recovered)
        if not remaining:
            return recovered
        try:
            hits = await self.backend.query(collection_id, RECOVERY_QUERY, max(total, len(hashes)), 0.0)
        except BackendError as exc:
            logger.debug("hydrate {}: recovery query failed: {}", collection_id, exc)
            return recovered
        for hit in hits:
            if hit.hash not in remaining:
                continue
            record = record_from_remote(hit.hash, hit.text, hit.index, hit.metadata)
            if record is not None:
                recovered[hit.hash] = record
        return recovered

    async def sync_with_backend(
        self, collection_id: str, *, protected_hashes: Iterable[str] = ()
    ) -> int:
        """Make the durable map and the backend agree on the set of hashes.

        Backend-only hashes are deleted remotely; durable-only hashes are
        dropped locally. Hashes in ``protected_hashes`` are left alone.
        Returns the number of entries cleaned. Raises ``BackendError`` if the
        backend cannot be listed.
        """
        protected = set(protected_hashes)
        backend_hashes = set(await self.backend.list(collection_id))
        durable_keys = set(self._durable(collection_id))

        remote_orphans = sorted(backend_hashes - durable_keys - protected)
        local_orphans = sorted(durable_keys - backend_hashes - protected)

        cleaned = 0
        if remote_orphans:
            await self.backend.delete(collection_id, remote_orphans)
            cleaned += len(remote_orphans)
        for hash_ in local_orphans:
            if self.delete(collection_id, hash_):
                cleaned += 1
        if cleaned:
            logger.info(
                "sync {}: removed {} remote orphans, {} local orphans",
                collection_id,
                len(remote_orphans),
                len(local_orphans),
            )
        return cleaned


def record_from_remote(
    hash_: str, text: str, index: int, metadata: dict | None
) -> MemoryRecord | None:
    """Rebuild a record from a backend entry.

    Tries the entry metadata, then the text as a JSON record, then treats the
    raw text as the summary of a legacy entry.
    """
    if MemoryRecord.looks_like_record(metadata):
        record = MemoryRecord.from_dict(metadata or {}, hash_=hash_)
        if not record.summary:
            record.summary = text
        return record
    if text:
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if MemoryRecord.looks_like_record(parsed):
            return MemoryRecord.from_dict(parsed, hash_=hash_)
        return MemoryRecord(
            msg_id=msg_id_from_hash(hash_),
            content_hash="",
            turn_index=int(index or 0),
            chat_id="",
            character_id="",
            summary=text,
        )
    return None


def _placeholder(hash_: str) -> MemoryRecord:
    return MemoryRecord(
        msg_id=msg_id_from_hash(hash_),
        content_hash="",
        turn_index=0,
        chat_id="",
        character_id="",
        summary="",
        needs_regeneration=True,
    )
