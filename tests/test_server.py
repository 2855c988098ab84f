import re
import zlib
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from scribe.backends.lancedb import LanceDBBackend
from scribe.config.schema import BackendConfig, ServerConfig
from scribe.memory.models import VectorItem
from scribe.server.app import create_app
from scribe.server.vector_store import StoredVector, VectorStore, VectorStoreRegistry

PLUGIN = "/api/plugins/scribe"
DIMS = 4096


class HashingEmbedder:
    """Deterministic bag-of-words embedding into a fixed number of buckets."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        vectors = []
        for text in texts:
            vector = [0.0] * DIMS
            for word in re.findall(r"[a-z0-9]+", text.lower()):
                vector[zlib.crc32(word.encode()) % DIMS] += 1.0
            vectors.append(vector)
        return vectors


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def client(tmp_path: Path, embedder: HashingEmbedder):
    app = create_app(ServerConfig(), embedder=embedder, stores=VectorStoreRegistry(tmp_path))
    with TestClient(app) as test_client:
        yield test_client


def _insert(client: TestClient, collection: str, *items: tuple[str, str], user: str | None = None):
    headers = {"X-Scribe-User": user} if user else {}
    return client.post(
        f"{PLUGIN}/insert",
        json={
            "collectionId": collection,
            "items": [{"hash": h, "text": t, "index": i, "metadata": {"n": i}} for i, (h, t) in enumerate(items)],
        },
        headers=headers,
    )


def _list(client: TestClient, collection: str, user: str | None = None) -> list[str]:
    headers = {"X-Scribe-User": user} if user else {}
    response = client.post(f"{PLUGIN}/list", json={"collectionId": collection}, headers=headers)
    assert response.status_code == 200
    return response.json()["hashes"]


def test_health(client: TestClient) -> None:
    response = client.get(f"{PLUGIN}/health")
    assert response.json() == {"status": "ok", "backend": "sqlite"}


def test_insert_then_query_same_text_scores_one(client: TestClient) -> None:
    _insert(client, "c1", ("h1", "the knight rode north"), ("h2", "a quiet tea party"))

    response = client.post(
        f"{PLUGIN}/query",
        json={"collectionId": "c1", "queryText": "the knight rode north", "topK": 1, "threshold": 0},
    )

    results = response.json()["results"]
    assert [r["hash"] for r in results] == ["h1"]
    assert results[0]["score"] == pytest.approx(1.0, abs=1e-5)
    assert results[0]["metadata"] == {"n": 0}


def test_query_threshold_filters_weak_matches(client: TestClient) -> None:
    _insert(client, "c1", ("h1", "alpha beta"), ("h2", "gamma delta"))
    response = client.post(
        f"{PLUGIN}/query",
        json={"collectionId": "c1", "queryText": "alpha beta", "topK": 5, "threshold": 0.5},
    )
    assert [r["hash"] for r in response.json()["results"]] == ["h1"]


def test_query_unknown_collection_is_empty(client: TestClient, embedder: HashingEmbedder) -> None:
    response = client.post(f"{PLUGIN}/query", json={"collectionId": "nope", "queryText": "hi"})
    assert response.status_code == 200
    assert response.json() == {"results": []}
    assert embedder.calls == 0


def test_reinsert_upserts(client: TestClient) -> None:
    _insert(client, "c1", ("h1", "first"))
    _insert(client, "c1", ("h1", "second"))

    assert _list(client, "c1") == ["h1"]
    items = client.post(f"{PLUGIN}/getByHashes", json={"collectionId": "c1", "hashes": ["h1"]}).json()["items"]
    assert items[0]["text"] == "second"


def test_delete_and_purge(client: TestClient) -> None:
    _insert(client, "c1", ("h1", "one"), ("h2", "two"))

    response = client.post(f"{PLUGIN}/delete", json={"collectionId": "c1", "hashes": ["h1", "ghost"]})
    assert response.status_code == 200
    assert _list(client, "c1") == ["h2"]

    assert client.post(f"{PLUGIN}/purge", json={"collectionId": "c1"}).json() == {"success": True}
    assert _list(client, "c1") == []
    assert client.post(f"{PLUGIN}/purge", json={"collectionId": "c1"}).status_code == 200


def test_stats(client: TestClient) -> None:
    assert client.post(f"{PLUGIN}/stats", json={"collectionId": "c1"}).json() == {
        "count": 0,
        "hasEmbeddings": False,
    }
    _insert(client, "c1", ("h1", "one"))
    assert client.post(f"{PLUGIN}/stats", json={"collectionId": "c1"}).json() == {
        "count": 1,
        "hasEmbeddings": True,
    }


def test_missing_fields_is_400(client: TestClient) -> None:
    for endpoint, body in [
        ("insert", {"collectionId": "c1"}),
        ("query", {"collectionId": "c1"}),
        ("list", {}),
        ("delete", {"collectionId": "c1"}),
        ("getByHashes", {"hashes": ["h1"]}),
    ]:
        response = client.post(f"{PLUGIN}/{endpoint}", json=body)
        assert response.status_code == 400, endpoint
        assert response.json() == {"error": "Missing required fields"}


def test_embedding_failure_is_500(client: TestClient, embedder: HashingEmbedder) -> None:
    embedder.fail = True
    response = _insert(client, "c1", ("h1", "text"))
    assert response.status_code == 500
    assert "embedding service unavailable" in response.json()["error"]


def test_users_are_isolated_and_sanitized(client: TestClient, tmp_path: Path) -> None:
    _insert(client, "c1", ("h1", "alice memory"), user="alice")
    _insert(client, "c1", ("h9", "evil memory"), user="../evil")

    assert _list(client, "c1", user="alice") == ["h1"]
    assert _list(client, "c1", user="bob") == []
    assert _list(client, "c1") == []
    assert (tmp_path / "___evil" / "vectors.db").exists()


def test_vector_store_binds_filter_values(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "v.db")
    store.upsert("c1", [StoredVector(hash='a" OR 1=1 --', text="x", index=0, vector=[1.0, 0.0])])
    store.upsert("c1", [StoredVector(hash="b", text="y", index=1, vector=[0.0, 1.0])])

    assert store.delete("c1", ['a" OR 1=1 --']) == 1
    assert store.list_hashes("c1") == ["b"]
    store.close()


async def test_lancedb_driver_against_plugin(tmp_path: Path, embedder: HashingEmbedder) -> None:
    app = create_app(ServerConfig(), embedder=embedder, stores=VectorStoreRegistry(tmp_path))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://plugin.test") as http:
        backend = LanceDBBackend(BackendConfig(), client=http).init(lambda: {"X-Scribe-User": "tester"})

        await backend.insert(
            "c1",
            [
                VectorItem(hash="mem_1", text="the storm flooded the harbor", index=1, metadata={"msgId": "1"}),
                VectorItem(hash="mem_2", text="a picnic in the meadow", index=2),
            ],
        )
        hits = await backend.query("c1", "storm over the harbor", 1, 0.0)
        assert [h.hash for h in hits] == ["mem_1"]
        assert hits[0].metadata == {"msgId": "1"}

        items = await backend.get_by_hashes("c1", ["mem_2"])
        assert [i.text for i in items] == ["a picnic in the meadow"]

        await backend.delete("c1", ["mem_1"])
        assert await backend.list("c1") == ["mem_2"]

        await backend.purge("c1")
        assert await backend.list("c1") == []
        assert (await backend.health_check()).message == "OK (sqlite)"
