from conftest import FakeBackend, make_record, record_item

from scribe.memory.models import VectorItem, memory_hash
from scribe.memory.store import MetadataStore, record_from_remote
from scribe.storage.settings_store import InMemorySettingsStore

CID = "test_c3_abc"


def _store(backend: FakeBackend, settings: InMemorySettingsStore | None = None) -> MetadataStore:
    return MetadataStore(settings or InMemorySettingsStore(), backend)


def test_save_get_delete_purge_write_through(backend) -> None:
    settings = InMemorySettingsStore()
    store = _store(backend, settings)
    record = make_record("m1", 1)

    store.save(CID, record.hash, record)
    assert settings.saves == 1
    assert settings.memories()[CID][record.hash]["summary"] == "summary of turn 1"
    assert store.get(CID, record.hash).summary == "summary of turn 1"

    assert store.delete(CID, record.hash) is True
    assert store.delete(CID, record.hash) is False
    assert store.get_all(CID) == {}

    store.save(CID, "mem_m2", make_record("m2", 2))
    assert store.purge(CID) == 1
    assert store.collections() == []


def test_cache_follows_active_collection_only(backend) -> None:
    store = _store(backend)
    store.set_active_collection(CID)
    store.save(CID, "mem_m1", make_record("m1", 1))
    store.save("other", "mem_m2", make_record("m2", 2))

    assert set(store.cache) == {"mem_m1"}
    assert store.find_by_msg_id("m1") is not None
    assert store.find_by_msg_id("m2") is None

    store.set_active_collection("other")
    assert store.cache == {}


async def test_hydrate_recovers_backend_only_hashes(backend) -> None:
    store = _store(backend)
    local = [make_record("m2", 2), make_record("m3", 3)]
    for record in local:
        store.save(CID, record.hash, record)
    remote_only = make_record("m1", 1, "recovered summary")
    backend.seed(CID, [record_item(r) for r in [*local, remote_only]])

    report = await store.hydrate(CID)

    assert (report.loaded, report.recovered, report.placeholders) == (2, 1, 0)
    assert store.get_all(CID)[remote_only.hash].summary == "recovered summary"
    assert set(store.cache) == {"mem_m1", "mem_m2", "mem_m3"}


async def test_hydrate_twice_is_idempotent(backend) -> None:
    store = _store(backend)
    record = make_record("m2", 2)
    store.save(CID, record.hash, record)
    backend.seed(CID, [record_item(record), record_item(make_record("m1", 1))])

    await store.hydrate(CID)
    first = {h: r.to_dict() for h, r in store.cache.items()}
    calls = len(backend.calls)
    report = await store.hydrate(CID)

    assert report.skipped
    assert {h: r.to_dict() for h, r in store.cache.items()} == first
    assert len(backend.calls) == calls


async def test_force_hydrate_reloads(backend) -> None:
    store = _store(backend)
    store.save(CID, "mem_m1", make_record("m1", 1))
    await store.hydrate(CID)
    calls = len(backend.calls)

    report = await store.hydrate(CID, force=True)

    assert not report.skipped
    assert len(backend.calls) > calls


async def test_unrecoverable_hashes_become_placeholders(backend) -> None:
    store = _store(backend)
    backend.seed(CID, [VectorItem(hash="mem_lost", text="whatever", index=4)])
    backend.fail_on.update({"get_by_hashes", "query"})

    report = await store.hydrate(CID)

    assert report.placeholders == 1
    placeholder = store.get(CID, "mem_lost")
    assert placeholder.needs_regeneration
    assert placeholder.msg_id == "lost"
    assert placeholder.summary == ""


async def test_hydrate_falls_back_to_broad_query(backend) -> None:
    store = _store(backend)
    backend.seed(CID, [VectorItem(hash="mem_legacy", text="conversation summary memory of the past", index=7)])
    backend.fail_on.add("get_by_hashes")

    report = await store.hydrate(CID)

    assert report.recovered == 1
    legacy = store.get(CID, "mem_legacy")
    assert legacy.summary == "conversation summary memory of the past"
    assert legacy.turn_index == 7
    assert legacy.msg_id == "legacy"


async def test_hydrate_tolerates_list_failure(backend) -> None:
    store = _store(backend)
    store.save(CID, "mem_m1", make_record("m1", 1))
    backend.fail_on.add("list")

    report = await store.hydrate(CID)

    assert report.loaded == 1
    assert store.is_hydrated


async def test_sync_deletes_orphans_on_both_sides(backend) -> None:
    store = _store(backend)
    for msg_id in ("h2", "h3", "h4"):
        store.save(CID, memory_hash(msg_id), make_record(msg_id, 1))
    backend.seed(CID, [VectorItem(hash=memory_hash(m), text="x") for m in ("h1", "h2", "h3")])

    cleaned = await store.sync_with_backend(CID)

    assert cleaned == 2
    assert backend.hashes(CID) == {"mem_h2", "mem_h3"}
    assert set(store.get_all(CID)) == {"mem_h2", "mem_h3"}


async def test_sync_leaves_protected_hashes(backend) -> None:
    store = _store(backend)
    store.save(CID, "mem_h4", make_record("h4", 1))
    backend.seed(CID, [VectorItem(hash="mem_h1", text="x")])

    cleaned = await store.sync_with_backend(CID, protected_hashes=["mem_h4"])

    assert cleaned == 1
    assert "mem_h4" in store.get_all(CID)


def test_record_from_remote_prefers_metadata_then_json_then_text() -> None:
    record = make_record("m5", 5, "from metadata")
    assert record_from_remote("mem_m5", "ignored", 0, record.to_dict()).summary == "from metadata"

    as_json = record_from_remote("mem_m6", '{"msgId": "m6", "summary": "from json"}', 0, {})
    assert (as_json.msg_id, as_json.summary) == ("m6", "from json")

    legacy = record_from_remote("mem_m7", "plain text", 3, None)
    assert (legacy.msg_id, legacy.summary, legacy.turn_index) == ("m7", "plain text", 3)

    assert record_from_remote("mem_m8", "", 0, None) is None
