from .annoy import AnnoyBackend, AnnoyIndex
from .base import IndexBackend, SearchIndex
from .faiss_index import FaissBackend, FaissIndex
from .flat import FlatBackend, FlatIndex
from .hnswlib import HnswlibBackend, HnswlibIndex
from .registry import BACKENDS, available_backends, resolve_backend

__all__ = [
    "AnnoyBackend",
    "AnnoyIndex",
    "BACKENDS",
    "FaissBackend",
    "FaissIndex",
    "FlatBackend",
    "FlatIndex",
    "HnswlibBackend",
    "HnswlibIndex",
    "IndexBackend",
    "SearchIndex",
    "available_backends",
    "resolve_backend",
]
