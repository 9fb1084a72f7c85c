"""Tests for where-filters and similarity ranking."""

from __future__ import annotations

import logging

import pytest

from vectorpool.core.embedding import embedding_to_bytes
from vectorpool.embeddings import Embedding, InvalidFilterError, matches_where, rank_rows


def make_row(doc_id, vector, *, collection="posts", chunk_index=0, **extension_fields):
    return Embedding(
        id=int(doc_id) * 10 + chunk_index,
        pool="default",
        source_collection=collection,
        doc_id=str(doc_id),
        chunk_index=chunk_index,
        chunk_text=f"text {doc_id}",
        embedding_version="v1",
        embedding=embedding_to_bytes(vector),
        extension_fields=extension_fields or None,
    )


class TestMatchesWhere:
    @pytest.fixture
    def row(self):
        return make_row(1, [1.0, 0.0], category="guides", level=2)

    @pytest.mark.parametrize(
        "where,expected",
        [
            (None, True),
            ({"source_collection": "posts"}, True),
            ({"category": "guides"}, True),
            ({"category": {"equals": "news"}}, False),
            ({"category": {"not_equals": "news"}}, True),
            ({"doc_id": {"in": ["1", "2"]}}, True),
            ({"doc_id": {"not_in": ["1"]}}, False),
            ({"summary": {"exists": False}}, True),
            ({"level": {"exists": True}}, True),
            ({"missing": "x"}, False),
            ({"or": [{"category": "news"}, {"level": 2}]}, True),
            ({"and": [{"category": "guides"}, {"level": 3}]}, False),
        ],
    )
    def test_operators(self, row, where, expected):
        """Test each filter operator against one row."""
        assert matches_where(row, where) is expected

    def test_unknown_operator(self, row):
        """Test an unsupported operator is an error, not a silent mismatch."""
        with pytest.raises(InvalidFilterError, match="contains"):
            matches_where(row, {"category": {"contains": "g"}})


class TestRankRows:
    def test_orders_by_similarity_and_limits(self):
        """Test results come back best first with extension fields merged in."""
        rows = [
            make_row(1, [0.0, 1.0]),
            make_row(2, [1.0, 0.0], category="guides"),
            make_row(3, [1.0, 1.0]),
        ]
        results = rank_rows(rows, [1.0, 0.0], limit=2)

        assert [r["doc_id"] for r in results] == ["2", "3"]
        assert results[0]["similarity"] == pytest.approx(1.0)
        assert results[0]["category"] == "guides"
        assert set(results[1]) >= {"source_collection", "chunk_index", "chunk_text", "similarity"}

    def test_where_applied_before_ranking(self):
        """Test filtered-out rows never appear even when most similar."""
        rows = [make_row(1, [1.0, 0.0], category="news"), make_row(2, [0.5, 0.5], category="guides")]
        results = rank_rows(rows, [1.0, 0.0], where={"category": "guides"})
        assert [r["doc_id"] for r in results] == ["2"]

    def test_dimension_mismatch_rows_skipped(self, caplog):
        """Test rows of another dimensionality are skipped with a warning."""
        rows = [make_row(1, [1.0, 0.0, 0.0]), make_row(2, [1.0, 0.0])]
        with caplog.at_level(logging.WARNING, logger="vectorpool.embeddings.search"):
            results = rank_rows(rows, [1.0, 0.0])
        assert [r["doc_id"] for r in results] == ["2"]
        assert "Skipping posts:1:0" in caplog.text

    def test_no_rows(self):
        """Test an empty pool yields no results."""
        assert rank_rows([], [1.0, 0.0]) == []
