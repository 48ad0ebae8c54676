from __future__ import annotations

from typing import Any

from .annoy import AnnoyBackend
from .base import IndexBackend
from .faiss_index import FaissBackend
from .flat import FlatBackend
from .hnswlib import HnswlibBackend


BACKENDS: dict[str, type[IndexBackend]] = {
    FlatBackend.name: FlatBackend,
    HnswlibBackend.name: HnswlibBackend,
    AnnoyBackend.name: AnnoyBackend,
    FaissBackend.name: FaissBackend,
}


def resolve_backend(name: str, params: dict[str, Any] | None = None) -> IndexBackend:
    backend_cls = BACKENDS.get(name)
    if backend_cls is None:
        raise ValueError(f"unknown backend name: {name} (known: {', '.join(sorted(BACKENDS))})")
    ok, reason = backend_cls.availability()
    if not ok:
        raise RuntimeError(f"backend '{name}' is not available: {reason or 'not installed'}")
    return backend_cls(params=params)


def available_backends() -> tuple[list[str], dict[str, str]]:
    available: list[str] = []
    skipped: dict[str, str] = {}
    for name, backend_cls in BACKENDS.items():
        ok, reason = backend_cls.availability()
        if ok:
            available.append(name)
        else:
            skipped[name] = reason or "not available"
    return available, skipped


__all__ = ["BACKENDS", "available_backends", "resolve_backend"]
