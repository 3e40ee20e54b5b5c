"""Error taxonomy for hybrid memory."""

from typing import Iterable


class MemoryStoreError(Exception):
    """Base class for errors reported by the memory store."""


class NotFoundError(MemoryStoreError, LookupError):
    """An id or name referenced by an operation has no matching row."""


class AmbiguousMatchError(MemoryStoreError):
    """Name resolution found several equally plausible matches."""

    def __init__(self, name: str, candidates: Iterable[str]):
        self.name = name
        self.candidates = sorted(candidates)
        super().__init__(
            f"'{name}' is ambiguous; candidates: {', '.join(self.candidates)}"
        )


class CapabilityUnavailableError(MemoryStoreError):
    """Every backend that could serve the request is missing or failed."""

    def __init__(self, message: str, tried: Iterable[str] = ()):
        self.tried = list(tried)
        if self.tried:
            message = f"{message} (tried: {', '.join(self.tried)})"
        super().__init__(message)


class IntegrityViolationError(MemoryStoreError):
    """A mutation would orphan a relation or break a uniqueness rule."""


class EmbeddingDimensionError(MemoryStoreError, ValueError):
    """Vector length does not match the configured index dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
