from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from ..metrics import canonical_metric

SUPPORTED_METRICS = ("euclidean", "angular", "dot")


@runtime_checkable
class SearchIndex(Protocol):
    """Minimal surface the harness needs from a system under test."""

    @property
    def dim(self) -> int: ...

    @property
    def ntotal(self) -> int: ...

    @property
    def is_trained(self) -> bool: ...

    def train(self, vectors: NDArray[np.float32]) -> None: ...

    def add(self, vectors: NDArray[np.float32]) -> None: ...

    def search(self, queries: NDArray[np.float32], k: int) -> tuple[NDArray[np.float32], NDArray[np.int64]]: ...

    def close(self) -> None: ...


class IndexBackend(ABC):
    name: str
    module_name: str

    def __init__(self, params: dict[str, Any] | None = None):
        self.params = dict(params or {})

    @classmethod
    def availability(cls) -> tuple[bool, str | None]:
        try:
            importlib.import_module(cls.module_name)
            return True, None
        except Exception as exc:  # pragma: no cover - depends on environment
            return False, f"{cls.module_name} import failed: {exc}"

    def create(self, dim: int, metric: str) -> SearchIndex:
        if dim <= 0:
            raise ValueError("dim must be positive")
        metric = canonical_metric(metric)
        if metric not in SUPPORTED_METRICS:
            raise ValueError(f"{self.name} does not support metric={metric}")
        return self._create(dim, metric)

    @abstractmethod
    def _create(self, dim: int, metric: str) -> SearchIndex:
        raise NotImplementedError

    def _int_param(self, key: str, default: int) -> int:
        value = self.params.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{self.name}: param '{key}' must be an integer, got {value!r}") from exc


__all__ = ["IndexBackend", "SUPPORTED_METRICS", "SearchIndex"]
