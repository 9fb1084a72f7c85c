"""Tests for selecting which documents a bulk run embeds."""

from __future__ import annotations

from datetime import timedelta

from vectorpool.core.tests.conftest import make_pool
from vectorpool.db import utcnow
from vectorpool.documents import DocumentStore
from vectorpool.embeddings import EmbeddingRowData, EmbeddingStore
from vectorpool.workflows.bulk_embed import BulkEmbeddingRun, RunStatus
from vectorpool.workflows.bulk_embed.eligibility import Baseline, iter_eligible_documents


def eligible_ids(pool, client, baseline, page_size=2):
    return [
        (item.collection, item.doc_id)
        for item in iter_eligible_documents(
            pool,
            documents=DocumentStore(client),
            embeddings=EmbeddingStore(client),
            baseline=baseline,
            page_size=page_size,
        )
    ]


def embed(client, doc_id, version="v1", collection="posts"):
    EmbeddingStore(client).replace_document(
        pool="default",
        collection=collection,
        doc_id=doc_id,
        rows=[EmbeddingRowData(chunk_index=0, chunk_text="x", embedding=[1.0], embedding_version=version)],
    )


class TestBaseline:
    def test_no_previous_run_selects_everything(self):
        """Test a pool with no succeeded run has no baseline."""
        assert Baseline.from_run(None, "v1").include_all

    def test_version_mismatch_selects_everything(self):
        """Test a new embedding version ignores the previous run."""
        run = BulkEmbeddingRun(
            pool="default", embedding_version="v1", status=RunStatus.SUCCEEDED, completed_at=utcnow()
        )
        assert Baseline.from_run(run, "v2").include_all
        baseline = Baseline.from_run(run, "v1")
        assert not baseline.include_all
        assert baseline.completed_at == run.completed_at


class TestIterEligibleDocuments:
    def test_include_all_pages_every_collection(self, tmp_database):
        """Test every document of every pool collection is returned across pages."""
        documents = DocumentStore(tmp_database)
        for doc_id in ("1", "2", "3"):
            documents.upsert("posts", doc_id, {"body": doc_id})
        documents.upsert("pages", "a", {"body": "a"})
        documents.upsert("other", "x", {"body": "x"})
        pool = make_pool(collections=("posts", "pages"))

        assert eligible_ids(pool, tmp_database, Baseline(include_all=True)) == [
            ("posts", "1"),
            ("posts", "2"),
            ("posts", "3"),
            ("pages", "a"),
        ]

    def test_should_embed_applies_even_without_baseline(self, tmp_database):
        """Test rejected documents are skipped regardless of baseline."""
        documents = DocumentStore(tmp_database)
        documents.upsert("posts", "1", {"draft": True})
        documents.upsert("posts", "2", {"draft": False})
        pool = make_pool(should_embed=lambda doc: not doc["draft"])

        assert eligible_ids(pool, tmp_database, Baseline(include_all=True)) == [("posts", "2")]

    def test_incremental_selection(self, tmp_database):
        """Test only stale or unembedded documents are selected against a baseline."""
        documents = DocumentStore(tmp_database)
        for doc_id in ("1", "2", "3"):
            documents.upsert("posts", doc_id, {})
        embed(tmp_database, "1")
        embed(tmp_database, "2", version="v0")
        embed(tmp_database, "3")
        baseline = Baseline(include_all=False, completed_at=utcnow() + timedelta(seconds=1))

        # 2 only has rows of an older version
        assert eligible_ids(make_pool(), tmp_database, baseline) == [("posts", "2")]

    def test_updated_after_baseline_selected(self, tmp_database):
        """Test a document edited after the baseline completed is re-embedded."""
        documents = DocumentStore(tmp_database)
        documents.upsert("posts", "1", {})
        embed(tmp_database, "1")
        baseline = Baseline(include_all=False, completed_at=utcnow() - timedelta(seconds=1))

        assert eligible_ids(make_pool(), tmp_database, baseline) == [("posts", "1")]
