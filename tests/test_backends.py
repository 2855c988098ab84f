import json

import httpx
import pytest
from pydantic import ValidationError

from scribe.backends import (
    BackendError,
    BackendNotInitializedError,
    LanceDBBackend,
    UnknownBackendError,
    VectraBackend,
    available_backends,
    create_backend,
)
from scribe.config.schema import BackendConfig
from scribe.memory.models import VectorItem


class Recorder:
    """Mock transport handler answering from a route table."""

    def __init__(self, routes: dict[str, httpx.Response | Exception]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(answer, Exception):
            raise answer
        return answer

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _client(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder), base_url="http://st.test")


def _lancedb(recorder: Recorder) -> LanceDBBackend:
    backend = create_backend(
        BackendConfig(name="lancedb"),
        client=_client(recorder),
        get_headers=lambda: {"X-Scribe-User": "alice"},
    )
    assert isinstance(backend, LanceDBBackend)
    return backend


def _vectra(recorder: Recorder) -> VectraBackend:
    backend = create_backend(BackendConfig(name="vectra", vectra_source="openai"), client=_client(recorder))
    assert isinstance(backend, VectraBackend)
    return backend


PLUGIN = "/api/plugins/scribe"


def test_registry_lists_both_drivers() -> None:
    assert available_backends() == ["lancedb", "vectra"]


def test_unknown_backend_fails_fast() -> None:
    with pytest.raises(UnknownBackendError):
        create_backend(BackendConfig.model_construct(name="faiss"))
    with pytest.raises(ValidationError):
        BackendConfig(name="faiss")


async def test_uninitialized_driver_raises() -> None:
    backend = LanceDBBackend(BackendConfig(), client=_client(Recorder({})))
    with pytest.raises(BackendNotInitializedError):
        await backend.list("c1")
    assert (await backend.health_check()).healthy is False


async def test_lancedb_insert_sends_items_and_headers() -> None:
    recorder = Recorder({f"{PLUGIN}/insert": httpx.Response(200, json={"success": True, "inserted": 1})})
    backend = _lancedb(recorder)

    result = await backend.insert("c1", [VectorItem(hash="mem_1", text="hello", index=2, metadata={"a": 1})])

    assert result.inserted == 1
    assert recorder.body() == {
        "collectionId": "c1",
        "items": [{"hash": "mem_1", "text": "hello", "index": 2, "metadata": {"a": 1}}],
    }
    assert recorder.requests[0].headers["X-Scribe-User"] == "alice"


async def test_lancedb_query_filters_and_orders_hits() -> None:
    results = [
        {"hash": "a", "text": "A", "index": 1, "score": 0.4},
        {"hash": "b", "text": "B", "index": 2, "score": 0.9},
        {"hash": "c", "text": "C", "index": 3, "score": 0.1},
    ]
    recorder = Recorder({f"{PLUGIN}/query": httpx.Response(200, json={"results": results})})
    backend = _lancedb(recorder)

    hits = await backend.query("c1", "text", 5, 0.3)

    assert [h.hash for h in hits] == ["b", "a"]
    assert recorder.body()["topK"] == 5


async def test_lancedb_not_found_is_empty() -> None:
    backend = _lancedb(Recorder({}))
    assert await backend.query("missing", "text", 3) == []
    assert await backend.list("missing") == []
    assert (await backend.delete("missing", ["x"])).deleted == 0


async def test_lancedb_list_failure_raises_with_status() -> None:
    recorder = Recorder({f"{PLUGIN}/list": httpx.Response(500, json={"error": "table locked"})})
    backend = _lancedb(recorder)

    with pytest.raises(BackendError) as excinfo:
        await backend.list("c1")

    assert excinfo.value.status_code == 500
    assert excinfo.value.backend == "lancedb"
    assert "table locked" in str(excinfo.value)


async def test_transport_errors_become_backend_errors() -> None:
    recorder = Recorder({f"{PLUGIN}/purge": httpx.ConnectError("refused")})
    backend = _lancedb(recorder)
    with pytest.raises(BackendError):
        await backend.purge("c1")


async def test_empty_inputs_skip_the_round_trip() -> None:
    recorder = Recorder({})
    backend = _lancedb(recorder)

    assert await backend.get_by_hashes("c1", []) == []
    assert (await backend.delete("c1", [])).deleted == 0
    assert (await backend.insert("c1", [])).inserted == 0
    assert recorder.requests == []


async def test_lancedb_health_reports_backend_name() -> None:
    recorder = Recorder({f"{PLUGIN}/health": httpx.Response(200, json={"status": "ok", "backend": "sqlite"})})
    status = await _lancedb(recorder).health_check()
    assert status.healthy
    assert status.message == "OK (sqlite)"


async def test_vectra_query_maps_hashes_and_metadata() -> None:
    payload = {
        "hashes": ["h1", "h2"],
        "metadata": [{"text": "one", "index": 1, "score": 0.8}, {"text": "two", "index": 2, "score": 0.95}],
    }
    recorder = Recorder({"/api/vector/query": httpx.Response(200, json=payload)})
    backend = _vectra(recorder)

    hits = await backend.query("c1", "question", 2)

    assert [(h.hash, h.text) for h in hits] == [("h2", "two"), ("h1", "one")]
    body = recorder.body()
    assert body["source"] == "openai"
    assert body["searchText"] == "question"


async def test_vectra_list_accepts_bare_array() -> None:
    recorder = Recorder({"/api/vector/list": httpx.Response(200, json=["h1", "h2"])})
    assert await _vectra(recorder).list("c1") == ["h1", "h2"]


async def test_vectra_cannot_fetch_by_hash() -> None:
    recorder = Recorder({})
    assert await _vectra(recorder).get_by_hashes("c1", ["h1"]) == []
    assert recorder.requests == []


async def test_vectra_health_treats_missing_collection_as_healthy() -> None:
    status = await _vectra(Recorder({})).health_check()
    assert status.healthy
