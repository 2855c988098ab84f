"""Vector backend drivers."""

from scribe.backends.base import (
    BackendError,
    BackendNotInitializedError,
    HttpVectorBackend,
    UnknownBackendError,
    VectorBackend,
    available_backends,
    create_backend,
    register_backend,
)
from scribe.backends.lancedb import LanceDBBackend
from scribe.backends.vectra import VectraBackend

__all__ = [
    "BackendError",
    "BackendNotInitializedError",
    "HttpVectorBackend",
    "LanceDBBackend",
    "UnknownBackendError",
    "VectorBackend",
    "VectraBackend",
    "available_backends",
    "create_backend",
    "register_backend",
]
