from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .backends_impl import SearchIndex, resolve_backend


@runtime_checkable
class IndexBuilderLike(Protocol):
    def build(self, dim: int, metric: str) -> SearchIndex: ...


@dataclass(slots=True, frozen=True)
class IndexBuilder:
    """Deferred construction of a system under test.

    Holds only the backend name and its parameters, so configurations stay
    printable and serializable; the index itself is created per run.
    """

    backend: str
    params: dict[str, Any] = field(default_factory=dict)

    def build(self, dim: int, metric: str) -> SearchIndex:
        return resolve_backend(self.backend, self.params).create(dim, metric)

    def describe(self) -> dict[str, Any]:
        return {"backend": self.backend, "params": dict(self.params)}


__all__ = ["IndexBuilder", "IndexBuilderLike"]
