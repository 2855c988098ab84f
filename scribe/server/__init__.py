"""Vector plugin server: sqlite vector storage behind the backend RPC contract."""

from scribe.server.app import create_app, run_server
from scribe.server.embedder import Embedder, LiteLLMEmbedder
from scribe.server.vector_store import StoredVector, VectorStore, VectorStoreRegistry

__all__ = [
    "Embedder",
    "LiteLLMEmbedder",
    "StoredVector",
    "VectorStore",
    "VectorStoreRegistry",
    "create_app",
    "run_server",
]
