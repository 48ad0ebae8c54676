from __future__ import annotations


class DatasetNotFoundError(FileNotFoundError):
    """Raised when a named dataset is not present under the data directory."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"dataset '{name}' not available: {reason}")
        self.name = name
        self.reason = reason


class StageError(RuntimeError):
    """A fatal failure in one orchestration stage; aborts only that run."""

    def __init__(self, stage: str, message: str, cause: BaseException | None = None):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.cause = cause


__all__ = ["DatasetNotFoundError", "StageError"]
