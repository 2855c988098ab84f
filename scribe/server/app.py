"""FastAPI vector plugin serving the scribe backend RPC contract.

Endpoints (all under the plugin prefix, default ``/api/plugins/scribe``):
- GET  /health      - liveness and backend name
- POST /insert      - embed and upsert items
- POST /query       - cosine similarity search
- POST /list        - hashes in a collection
- POST /delete      - delete hashes
- POST /purge       - drop a collection
- POST /getByHashes - fetch items by hash
- POST /stats       - row count and embedding presence

The user database is chosen by the ``X-Scribe-User`` header.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import Request
from loguru import logger

from scribe.config.defaults import DEFAULT_BACKEND
from scribe.server.embedder import Embedder, LiteLLMEmbedder
from scribe.server.vector_store import StoredVector, VectorStore, VectorStoreRegistry
from scribe.utils.helpers import get_vectors_path

if TYPE_CHECKING:
    from fastapi import FastAPI

    from scribe.config.schema import ServerConfig

USER_HEADER = "X-Scribe-User"
BACKEND_NAME = "sqlite"
DEFAULT_TOP_K = 10


class MissingFieldsError(ValueError):
    """The request body lacks a required field."""


def _require(body: dict[str, Any], *names: str) -> None:
    for name in names:
        value = body.get(name)
        if value is None or value == "":
            raise MissingFieldsError("Missing required fields")


def create_app(
    config: "ServerConfig",
    *,
    embedder: Embedder | None = None,
    stores: VectorStoreRegistry | None = None,
    prefix: str = str(DEFAULT_BACKEND["plugin_path"]),
) -> "FastAPI":
    """Create the vector plugin application.

    Args:
        config: Server section of the scribe configuration
        embedder: Embedding client; defaults to LiteLLM with the configured model
        stores: Per-user store registry; defaults to ``config.data_dir`` or ``~/.scribe/db``
        prefix: Route prefix the client drivers are configured with
    """
    from fastapi import APIRouter, FastAPI
    from fastapi.responses import JSONResponse

    embedder = embedder or LiteLLMEmbedder.from_config(config)
    if stores is None:
        data_dir = Path(config.data_dir) if config.data_dir else get_vectors_path()
        stores = VectorStoreRegistry(data_dir)
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Vector plugin starting (prefix {}, data {})", prefix, stores.data_dir)
        yield
        logger.info("Vector plugin shutting down after {:.0f}s", time.monotonic() - started)
        stores.close()

    app = FastAPI(
        title="scribe vector plugin",
        description="Summary embedding storage for scribe",
        version="0.1.0",
        lifespan=lifespan,
    )
    router = APIRouter(prefix=prefix.rstrip("/"))

    Handler = Callable[[dict[str, Any], VectorStore], Awaitable[dict[str, Any]]]

    async def _dispatch(request: Request, action: str, handler: Handler) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return JSONResponse(status_code=400, content={"error": "Missing required fields"})
        try:
            store = stores.for_user(request.headers.get(USER_HEADER))
            return JSONResponse(content=await handler(body, store))
        except MissingFieldsError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})
        except Exception as exc:
            logger.error("{} error: {}", action, exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})

    @router.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "backend": BACKEND_NAME}

    async def _insert(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId", "items")
        items = [item for item in body["items"] if isinstance(item, dict)]
        missing = [i for i, item in enumerate(items) if not isinstance(item.get("vector"), list)]
        if missing:
            vectors = await embedder.embed([str(items[i].get("text") or "") for i in missing])
            for i, vector in zip(missing, vectors, strict=True):
                items[i]["vector"] = vector
        rows = [
            StoredVector(
                hash=str(item.get("hash") or ""),
                text=str(item.get("text") or ""),
                index=int(item.get("index") or 0),
                vector=[float(v) for v in item["vector"]],
                metadata=item.get("metadata") if isinstance(item.get("metadata"), dict) else {},
            )
            for item in items
        ]
        inserted = store.upsert(str(body["collectionId"]), rows)
        return {"success": True, "inserted": inserted}

    async def _query(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId", "queryText")
        collection_id = str(body["collectionId"])
        if not store.list_hashes(collection_id):
            return {"results": []}
        [query_vector] = await embedder.embed([str(body["queryText"])])
        hits = store.query(
            collection_id,
            query_vector,
            top_k=int(body.get("topK") or DEFAULT_TOP_K),
            threshold=float(body.get("threshold") or 0.0),
        )
        return {"results": [{**row.to_item(), "score": score} for row, score in hits]}

    async def _list(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId")
        return {"hashes": store.list_hashes(str(body["collectionId"]))}

    async def _delete(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId", "hashes")
        hashes = [str(h) for h in body["hashes"]]
        store.delete(str(body["collectionId"]), hashes)
        return {"success": True, "deleted": len(hashes)}

    async def _purge(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId")
        removed = store.drop(str(body["collectionId"]))
        logger.info("purged collection {} ({} rows)", body["collectionId"], removed)
        return {"success": True}

    async def _get_by_hashes(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId", "hashes")
        rows = store.get_by_hashes(str(body["collectionId"]), [str(h) for h in body["hashes"]])
        return {"items": [row.to_item() for row in rows]}

    async def _stats(body: dict[str, Any], store: VectorStore) -> dict[str, Any]:
        _require(body, "collectionId")
        return store.stats(str(body["collectionId"]))

    @router.post("/insert", tags=["vectors"])
    async def insert(request: Request) -> JSONResponse:
        return await _dispatch(request, "Insert", _insert)

    @router.post("/query", tags=["vectors"])
    async def query(request: Request) -> JSONResponse:
        return await _dispatch(request, "Query", _query)

    @router.post("/list", tags=["vectors"])
    async def list_hashes(request: Request) -> JSONResponse:
        return await _dispatch(request, "List", _list)

    @router.post("/delete", tags=["vectors"])
    async def delete(request: Request) -> JSONResponse:
        return await _dispatch(request, "Delete", _delete)

    @router.post("/purge", tags=["vectors"])
    async def purge(request: Request) -> JSONResponse:
        return await _dispatch(request, "Purge", _purge)

    @router.post("/getByHashes", tags=["vectors"])
    async def get_by_hashes(request: Request) -> JSONResponse:
        return await _dispatch(request, "GetByHashes", _get_by_hashes)

    @router.post("/stats", tags=["vectors"])
    async def stats(request: Request) -> JSONResponse:
        return await _dispatch(request, "Stats", _stats)

    app.include_router(router)
    return app


def run_server(config: "ServerConfig", *, prefix: str = str(DEFAULT_BACKEND["plugin_path"])) -> None:
    """Run the vector plugin until interrupted."""
    import uvicorn

    app = create_app(config, prefix=prefix)
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")
