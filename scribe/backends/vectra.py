"""Driver for the host application's built-in vector API."""

from __future__ import annotations

from typing import Any

from loguru import logger

from scribe.backends.base import BackendError, HttpVectorBackend, register_backend
from scribe.memory.models import DeleteResult, HealthStatus, InsertResult, QueryHit, VectorItem

HEALTH_CHECK_COLLECTION = "__health_check__"


@register_backend("vectra")
class VectraBackend(HttpVectorBackend):
    """Talks to ``/api/vector/*``; the host embeds with its configured source.

    The host API has no metadata column and no lookup by hash.
    """

    def _path(self, endpoint: str) -> str:
        return f"{self.config.vector_path.rstrip('/')}/{endpoint}"

    def _body(self, **fields: Any) -> dict[str, Any]:
        return {"source": self.config.vectra_source, **fields}

    async def insert(self, collection_id: str, items: list[VectorItem]) -> InsertResult:
        if not items:
            return InsertResult(success=True, inserted=0)
        response = await self._request(
            "POST",
            self._path("insert"),
            self._body(
                collectionId=collection_id,
                items=[{"hash": i.hash, "text": i.text, "index": i.index} for i in items],
            ),
        )
        self._raise_for_status(response, "Insert")
        return InsertResult(success=True, inserted=len(items))

    async def query(
        self, collection_id: str, query_text: str, top_k: int, threshold: float = 0.0
    ) -> list[QueryHit]:
        if not query_text.strip() or top_k <= 0:
            return []
        response = await self._request(
            "POST",
            self._path("query"),
            self._body(
                collectionId=collection_id,
                searchText=query_text,
                topK=int(top_k),
                threshold=float(threshold or 0.0),
            ),
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "Query")
        data = self._json(response)
        hashes = data.get("hashes") if isinstance(data, dict) else None
        if not isinstance(hashes, list):
            return []
        metadata = data.get("metadata") if isinstance(data.get("metadata"), list) else []
        hits: list[QueryHit] = []
        for idx, hash_ in enumerate(hashes):
            meta = metadata[idx] if idx < len(metadata) and isinstance(metadata[idx], dict) else {}
            hits.append(
                QueryHit.from_payload(
                    {
                        "hash": hash_,
                        "text": meta.get("text", ""),
                        "index": meta.get("index", 0),
                        "score": meta.get("score", 0),
                        "metadata": meta,
                    }
                )
            )
        return self._normalize_hits(hits, top_k, threshold)

    async def delete(self, collection_id: str, hashes: list[str]) -> DeleteResult:
        if not hashes:
            return DeleteResult(success=True, deleted=0)
        response = await self._request(
            "POST",
            self._path("delete"),
            self._body(collectionId=collection_id, hashes=list(hashes)),
        )
        if response.status_code == 404:
            return DeleteResult(success=True, deleted=0)
        self._raise_for_status(response, "Delete")
        return DeleteResult(success=True, deleted=len(hashes))

    async def list(self, collection_id: str) -> list[str]:
        response = await self._request("POST", self._path("list"), self._body(collectionId=collection_id))
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "List")
        data = self._json(response)
        hashes = data if isinstance(data, list) else data.get("hashes") or []
        return [str(h) for h in hashes]

    async def get_by_hashes(self, collection_id: str, hashes: list[str]) -> list[VectorItem]:
        if hashes:
            logger.warning("vectra backend cannot fetch by hash; returning no items")
        return []

    async def purge(self, collection_id: str) -> bool:
        response = await self._request("POST", self._path("purge"), {"collectionId": collection_id})
        self._raise_for_status(response, "Purge")
        return True

    async def health_check(self) -> HealthStatus:
        if not self.initialized:
            return HealthStatus(healthy=False, message="Not initialized")
        try:
            response = await self._request(
                "POST", self._path("list"), self._body(collectionId=HEALTH_CHECK_COLLECTION)
            )
        except BackendError as exc:
            return HealthStatus(healthy=False, message=str(exc))
        healthy = response.is_success or response.status_code == 404
        return HealthStatus(
            healthy=healthy,
            message="OK" if healthy else f"Status: {response.status_code}",
        )
