"""Embedding client for the vector plugin using LiteLLM."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

if TYPE_CHECKING:
    from scribe.config.schema import ServerConfig


class Embedder(Protocol):
    """Turns texts into vectors, one per input, in order."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        ...


class EmbeddingError(RuntimeError):
    """The embedding backend failed or returned an unusable response."""


class LiteLLMEmbedder:
    """Fetch embedding vectors through ``litellm.aembedding``."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key or None
        self.api_base = api_base

    @classmethod
    def from_config(cls, config: "ServerConfig") -> "LiteLLMEmbedder":
        return cls(
            model=config.embedding_model,
            api_key=config.embedding_api_key,
            api_base=config.embedding_api_base,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        from litellm import aembedding

        compact = [" ".join(text.split()) or " " for text in texts]
        kwargs: dict[str, Any] = {"model": self.model, "input": compact}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        response = await aembedding(**kwargs)

        data = getattr(response, "data", None) or []
        if len(data) != len(texts):
            raise EmbeddingError(
                f"expected {len(texts)} embeddings from {self.model}, got {len(data)}"
            )
        vectors: list[list[float]] = []
        for entry in data:
            vector = entry.get("embedding") if isinstance(entry, dict) else None
            if vector is None:
                vector = getattr(entry, "embedding", None)
            if not isinstance(vector, list):
                raise EmbeddingError(f"malformed embedding from {self.model}")
            vectors.append([float(v) for v in vector])
        logger.debug("embedded {} texts with {}", len(vectors), self.model)
        return vectors
