"""Driver for the scribe server plugin (LanceDB-style vector tables)."""

from __future__ import annotations

from loguru import logger

from scribe.backends.base import BackendError, HttpVectorBackend, register_backend
from scribe.memory.models import DeleteResult, HealthStatus, InsertResult, QueryHit, VectorItem


@register_backend("lancedb")
class LanceDBBackend(HttpVectorBackend):
    """Talks to the ``/api/plugins/scribe`` endpoints; embeddings are computed server-side."""

    def _path(self, endpoint: str) -> str:
        return f"{self.config.plugin_path.rstrip('/')}/{endpoint}"

    async def insert(self, collection_id: str, items: list[VectorItem]) -> InsertResult:
        if not items:
            return InsertResult(success=True, inserted=0)
        response = await self._request(
            "POST",
            self._path("insert"),
            {"collectionId": collection_id, "items": [item.to_payload() for item in items]},
        )
        self._raise_for_status(response, "Insert")
        data = self._json(response)
        return InsertResult(success=True, inserted=int(data.get("inserted", len(items))))

    async def query(
        self, collection_id: str, query_text: str, top_k: int, threshold: float = 0.0
    ) -> list[QueryHit]:
        if not query_text.strip() or top_k <= 0:
            return []
        response = await self._request(
            "POST",
            self._path("query"),
            {
                "collectionId": collection_id,
                "queryText": query_text,
                "topK": int(top_k),
                "threshold": float(threshold or 0.0),
            },
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "Query")
        results = self._json(response).get("results") or []
        hits = [QueryHit.from_payload(r) for r in results if isinstance(r, dict)]
        return self._normalize_hits(hits, top_k, threshold)

    async def delete(self, collection_id: str, hashes: list[str]) -> DeleteResult:
        if not hashes:
            return DeleteResult(success=True, deleted=0)
        response = await self._request(
            "POST",
            self._path("delete"),
            {"collectionId": collection_id, "hashes": list(hashes)},
        )
        if response.status_code == 404:
            return DeleteResult(success=True, deleted=0)
        self._raise_for_status(response, "Delete")
        data = self._json(response)
        return DeleteResult(success=True, deleted=int(data.get("deleted", len(hashes))))

    async def list(self, collection_id: str) -> list[str]:
        response = await self._request("POST", self._path("list"), {"collectionId": collection_id})
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "List")
        hashes = self._json(response).get("hashes") or []
        return [str(h) for h in hashes]

    async def get_by_hashes(self, collection_id: str, hashes: list[str]) -> list[VectorItem]:
        if not hashes:
            return []
        response = await self._request(
            "POST",
            self._path("getByHashes"),
            {"collectionId": collection_id, "hashes": list(hashes)},
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "GetByHashes")
        items = self._json(response).get("items") or []
        return [VectorItem.from_payload(item) for item in items if isinstance(item, dict)]

    async def purge(self, collection_id: str) -> bool:
        response = await self._request("POST", self._path("purge"), {"collectionId": collection_id})
        self._raise_for_status(response, "Purge")
        return True

    async def stats(self, collection_id: str) -> dict[str, object]:
        """Row count and embedding presence for one collection."""
        response = await self._request("POST", self._path("stats"), {"collectionId": collection_id})
        if response.status_code == 404:
            return {"count": 0, "hasEmbeddings": False}
        self._raise_for_status(response, "Stats")
        return dict(self._json(response))

    async def health_check(self) -> HealthStatus:
        if not self.initialized:
            return HealthStatus(healthy=False, message="Not initialized")
        try:
            response = await self._request("GET", self._path("health"))
        except BackendError as exc:
            logger.debug("lancedb health check failed: {}", exc)
            return HealthStatus(healthy=False, message=str(exc))
        if response.is_success:
            backend = self._json(response).get("backend", self.name)
            return HealthStatus(healthy=True, message=f"OK ({backend})")
        return HealthStatus(healthy=False, message=f"Status: {response.status_code}")
