"""Vector backend contract, shared HTTP plumbing and the backend registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

import httpx
from loguru import logger

from scribe.memory.models import DeleteResult, HealthStatus, InsertResult, QueryHit, VectorItem

if TYPE_CHECKING:
    from scribe.config.schema import BackendConfig

HeadersProvider = Callable[[], dict[str, str]]


class BackendError(Exception):
    """A backend call failed; the remote state is unknown."""

    def __init__(self, message: str, *, backend: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


class BackendNotInitializedError(BackendError):
    """A driver was used before ``init`` supplied request headers."""


class UnknownBackendError(ValueError):
    """Configuration names a backend that is not registered."""


class VectorBackend(ABC):
    """Uniform capability interface over remote vector stores."""

    name: str = ""

    @abstractmethod
    async def insert(self, collection_id: str, items: list[VectorItem]) -> InsertResult:
        """Embed and persist items keyed by hash."""

    @abstractmethod
    async def query(
        self, collection_id: str, query_text: str, top_k: int, threshold: float = 0.0
    ) -> list[QueryHit]:
        """Return hits ordered by descending score, none below ``threshold``."""

    @abstractmethod
    async def delete(self, collection_id: str, hashes: list[str]) -> DeleteResult:
        """Delete entries by hash; unknown hashes are ignored."""

    @abstractmethod
    async def list(self, collection_id: str) -> list[str]:
        """List every hash stored in the collection."""

    @abstractmethod
    async def get_by_hashes(self, collection_id: str, hashes: list[str]) -> list[VectorItem]:
        """Fetch stored entries by hash."""

    @abstractmethod
    async def purge(self, collection_id: str) -> bool:
        """Drop the whole collection."""

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        """Probe backend reachability."""

    async def close(self) -> None:
        """Release transport resources."""


class HttpVectorBackend(VectorBackend):
    """Shared JSON-over-HTTP transport for the remote store drivers."""

    def __init__(
        self,
        config: "BackendConfig",
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._get_headers: HeadersProvider | None = None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    def init(self, get_headers: HeadersProvider | None = None) -> "HttpVectorBackend":
        """Bind the host's request-header provider (auth, CSRF, user handle)."""
        self._get_headers = get_headers or (lambda: {})
        return self

    @property
    def initialized(self) -> bool:
        return self._get_headers is not None

    def _require_init(self) -> None:
        if self._get_headers is None:
            raise BackendNotInitializedError(
                f"{type(self).__name__} not initialized", backend=self.name
            )

    def _json_headers(self) -> dict[str, str]:
        base = self._get_headers() if self._get_headers else {}
        return {**base, "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> httpx.Response:
        self._require_init()
        try:
            if method == "GET":
                return await self._client.get(path, headers=self._get_headers())
            return await self._client.post(path, headers=self._json_headers(), json=payload)
        except httpx.HTTPError as exc:
            raise BackendError(f"{method} {path} failed: {exc}", backend=self.name) from exc

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        detail = ""
        try:
            body = response.json()
            if isinstance(body, dict):
                detail = str(body.get("error") or body.get("message") or "")
        except ValueError:
            detail = response.text[:200]
        message = detail or f"{action} failed: {response.status_code} {response.reason_phrase}"
        raise BackendError(message, backend=self.name, status_code=response.status_code)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def _normalize_hits(hits: list[QueryHit], top_k: int, threshold: float) -> list[QueryHit]:
        kept = [hit for hit in hits if hit.hash and hit.score >= threshold]
        kept.sort(key=lambda hit: hit.score, reverse=True)
        return kept[: max(0, int(top_k))]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


_REGISTRY: dict[str, type[HttpVectorBackend]] = {}


def register_backend(name: str) -> Callable[[type[HttpVectorBackend]], type[HttpVectorBackend]]:
    """Class decorator adding a driver to the registry under ``name``."""

    def decorator(cls: type[HttpVectorBackend]) -> type[HttpVectorBackend]:
        cls.name = name
        _REGISTRY[name] = cls
        return cls

    return decorator


def available_backends() -> list[str]:
    return sorted(_REGISTRY)


def create_backend(
    config: "BackendConfig",
    *,
    client: httpx.AsyncClient | None = None,
    get_headers: HeadersProvider | None = None,
) -> HttpVectorBackend:
    """Instantiate the configured driver; unknown names fail immediately."""
    name = config.name.strip().lower()
    backend_cls = _REGISTRY.get(name)
    if backend_cls is None:
        raise UnknownBackendError(
            f"Unknown backend: {config.name} (available: {', '.join(available_backends())})"
        )
    backend = backend_cls(config, client=client)
    backend.init(get_headers)
    logger.debug("vector backend '{}' ready at {}", name, config.base_url)
    return backend
