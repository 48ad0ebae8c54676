from __future__ import annotations

from .backends_impl import (
    BACKENDS,
    AnnoyBackend,
    FaissBackend,
    FlatBackend,
    FlatIndex,
    HnswlibBackend,
    IndexBackend,
    SearchIndex,
    available_backends,
    resolve_backend,
)

__all__ = [
    "AnnoyBackend",
    "BACKENDS",
    "FaissBackend",
    "FlatBackend",
    "FlatIndex",
    "HnswlibBackend",
    "IndexBackend",
    "SearchIndex",
    "available_backends",
    "resolve_backend",
]
