"""
Nearest-neighbour search over a knowledge pool.

`where` is a small filter language applied to row fields and extension
fields:

    {"source_collection": "posts"}                       # equality shorthand
    {"category": {"equals": "guides"}}
    {"doc_id": {"in": ["1", "2"]}}
    {"summary": {"exists": True}}
    {"or": [{"category": {"equals": "a"}}, {"and": [...]}]}
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from vectorpool.core.embedding import bytes_to_embedding, cosine_similarity
from vectorpool.embeddings.models import Embedding

logger = logging.getLogger(__name__)

ROW_FIELDS = (
    "id",
    "source_collection",
    "doc_id",
    "chunk_index",
    "chunk_text",
    "embedding_version",
)

_MISSING = object()


class InvalidFilterError(ValueError):
    pass


def _row_value(row: Embedding, field: str) -> Any:
    if field in ROW_FIELDS:
        return getattr(row, field)
    return (row.extension_fields or {}).get(field, _MISSING)


def _match_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, Mapping):
        return value is not _MISSING and value == condition

    for op, expected in condition.items():
        if op == "equals":
            ok = value is not _MISSING and value == expected
        elif op == "not_equals":
            ok = value is _MISSING or value != expected
        elif op == "in":
            ok = value is not _MISSING and value in list(expected)
        elif op == "not_in":
            ok = value is _MISSING or value not in list(expected)
        elif op == "exists":
            present = value is not _MISSING and value is not None
            ok = present if expected else not present
        else:
            raise InvalidFilterError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


def matches_where(row: Embedding, where: Optional[Mapping[str, Any]]) -> bool:
    """Evaluate a `where` filter against one embedding row."""
    if not where:
        return True
    for key, condition in where.items():
        if key == "and":
            if not all(matches_where(row, sub) for sub in condition):
                return False
        elif key == "or":
            if not any(matches_where(row, sub) for sub in condition):
                return False
        elif not _match_condition(_row_value(row, key), condition):
            return False
    return True


def rank_rows(
    rows: Sequence[Embedding],
    query_embedding: Sequence[float],
    *,
    limit: int = 10,
    where: Optional[Mapping[str, Any]] = None,
) -> list[dict[str, Any]]:
    """Score `rows` against the query and return the top `limit` as dicts."""
    candidates = [row for row in rows if matches_where(row, where)]
    if not candidates or limit <= 0:
        return []

    dims = len(query_embedding)
    usable = []
    vectors = []
    for row in candidates:
        vector = bytes_to_embedding(row.embedding)
        if len(vector) != dims:
            logger.warning(
                f"Skipping {row.source_collection}:{row.doc_id}:{row.chunk_index} "
                f"({len(vector)} dims, query has {dims})"
            )
            continue
        usable.append(row)
        vectors.append(vector)

    if not usable:
        return []

    scores = cosine_similarity(query_embedding, np.asarray(vectors, dtype=np.float32))
    order = np.argsort(-scores, kind="stable")[:limit]

    results = []
    for idx in order:
        row = usable[int(idx)]
        result = {field: getattr(row, field) for field in ROW_FIELDS}
        result["similarity"] = float(scores[int(idx)])
        result.update(row.extension_fields or {})
        results.append(result)
    return results
