"""Chunker output validation and input id helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from vectorpool.core.errors import ChunkValidationError


@dataclass(slots=True)
class ChunkEntry:
    text: str
    extension_fields: dict[str, Any] = field(default_factory=dict)


def build_input_id(collection: str, doc_id: str, chunk_index: int) -> str:
    """Stable provider input id: `collection:docId:chunkIndex`."""
    return f"{collection}:{doc_id}:{chunk_index}"


def _is_valid_entry(entry: Any) -> bool:
    if not isinstance(entry, Mapping):
        return False
    chunk = entry.get("chunk")
    return isinstance(chunk, str) and chunk != ""


def validate_chunk_data(collection: str, doc_id: str, chunks: Any) -> list[ChunkEntry]:
    """
    Check every chunker entry before anything is submitted.

    Raises:
        ChunkValidationError: naming every invalid position in `chunks`
    """
    if not isinstance(chunks, Sequence) or isinstance(chunks, (str, bytes)):
        raise ChunkValidationError(
            collection,
            doc_id,
            reason=f"Expected a list of chunk objects, got {type(chunks).__name__}",
        )

    invalid = [i for i, entry in enumerate(chunks) if not _is_valid_entry(entry)]
    if invalid:
        raise ChunkValidationError(collection, doc_id, invalid_indices=invalid)

    return [
        ChunkEntry(
            text=entry["chunk"],
            extension_fields={k: v for k, v in entry.items() if k != "chunk"},
        )
        for entry in chunks
    ]
