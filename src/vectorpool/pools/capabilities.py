"""Small named interfaces a knowledge pool is assembled from."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Chunker(Protocol):
    """Turn a source document into ordered `{"chunk": str, **extension_fields}` entries."""

    def __call__(self, doc: Mapping[str, Any]) -> Sequence[Any]: ...


@runtime_checkable
class EligibilityPredicate(Protocol):
    """Return False to leave a document out of the pool entirely."""

    def __call__(self, doc: Mapping[str, Any]) -> bool: ...


@runtime_checkable
class EmbedDocs(Protocol):
    def __call__(self, texts: list[str]) -> list[list[float]]: ...


@runtime_checkable
class EmbedQuery(Protocol):
    def __call__(self, text: str) -> list[float]: ...
