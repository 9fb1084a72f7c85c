"""Tests for run and batch state transitions."""

from __future__ import annotations

import time

import pytest

from vectorpool.db import managed_session, session_scope
from vectorpool.workflows.bulk_embed import BatchStatus, BulkEmbeddingInputMetadata, RunStatus
from vectorpool.workflows.bulk_embed import store


def new_batch(client, run_id, provider_batch_id="pb-1", input_count=1):
    with managed_session(client) as session:
        return store.create_batch(
            session,
            run_id=run_id,
            provider_batch_id=provider_batch_id,
            input_file_ref=None,
            input_count=input_count,
        )


class TestRuns:
    def test_create_run_is_queued_and_active(self, tmp_database):
        """Test a new run starts queued and holds the pool's active slot."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")

        assert run.status == RunStatus.QUEUED
        assert run.active_pool == "default"

    def test_second_active_run_conflicts(self, tmp_database):
        """Test creating a run while one is active raises with the active run."""
        first = store.create_run(tmp_database, pool="default", embedding_version="v1")

        with pytest.raises(store.ActiveRunConflict) as excinfo:
            store.create_run(tmp_database, pool="default", embedding_version="v1")

        assert excinfo.value.active_run.id == first.id
        assert f"run {first.id}" in str(excinfo.value)

    def test_finish_run_frees_pool_once(self, tmp_database):
        """Test only the first terminal transition wins and the slot is released."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        with managed_session(tmp_database) as session:
            assert store.start_run(session, run.id)
            assert not store.start_run(session, run.id)
            assert store.finish_run(session, run.id, status=RunStatus.SUCCEEDED)
            assert not store.finish_run(session, run.id, status=RunStatus.FAILED, error="late")

        finished = store.get_run(tmp_database, run.id)
        assert finished.status == RunStatus.SUCCEEDED
        assert finished.active_pool is None
        assert finished.error is None
        store.create_run(tmp_database, pool="default", embedding_version="v1")

    def test_latest_succeeded_run(self, tmp_database):
        """Test the baseline is the most recently completed successful run."""
        runs = []
        for status in (RunStatus.SUCCEEDED, RunStatus.SUCCEEDED, RunStatus.FAILED):
            run = store.create_run(tmp_database, pool="default", embedding_version="v1")
            with managed_session(tmp_database) as session:
                store.finish_run(session, run.id, status=status)
            runs.append(run)

        with session_scope(tmp_database) as session:
            assert store.latest_succeeded_run(session, "default").id == runs[1].id
            assert store.latest_succeeded_run(session, "other") is None

    def test_list_runs_newest_first(self, tmp_database):
        """Test list_runs filters by pool and orders newest first."""
        for pool in ("a", "b"):
            run = store.create_run(tmp_database, pool=pool, embedding_version="v1")
            with managed_session(tmp_database) as session:
                store.finish_run(session, run.id, status=RunStatus.SUCCEEDED)
        store.create_run(tmp_database, pool="a", embedding_version="v1")

        assert [r.pool for r in store.list_runs(tmp_database)] == ["a", "b", "a"]
        assert len(store.list_runs(tmp_database, pool="a")) == 2
        assert len(store.list_runs(tmp_database, limit=1)) == 1


class TestBatches:
    def test_batch_indices_increase(self, tmp_database):
        """Test batches of a run get consecutive indices."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        first = new_batch(tmp_database, run.id, "pb-1")
        second = new_batch(tmp_database, run.id, "pb-2")

        assert (first.batch_index, second.batch_index) == (0, 1)
        assert first.status == BatchStatus.QUEUED

    def test_lease_is_exclusive_until_released(self, tmp_database):
        """Test a batch lease can be held by one poller at a time."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id)

        token = store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60)
        assert store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60) is None

        store.release_batch_lease(tmp_database, batch.id, token, status=BatchStatus.RUNNING)
        assert store.get_batch(tmp_database, batch.id).status == BatchStatus.RUNNING
        assert store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60) is not None

    def test_expired_lease_can_be_taken(self, tmp_database):
        """Test a crashed poller's lease stops blocking once it expires."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id)

        stale = store.claim_batch_lease(tmp_database, batch.id, lease_seconds=0.01)
        time.sleep(0.05)
        fresh = store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60)

        assert fresh is not None and fresh != stale

    def test_complete_batch_requires_lease(self, tmp_database):
        """Test only the lease holder can record the terminal status, once."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id)
        token = store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60)

        with managed_session(tmp_database) as session:
            assert not store.complete_batch(
                session,
                batch.id,
                token="someone-else",
                status=BatchStatus.FAILED,
                succeeded_count=0,
                failed_count=1,
            )
            assert store.complete_batch(
                session,
                batch.id,
                token=token,
                status=BatchStatus.SUCCEEDED,
                succeeded_count=1,
                failed_count=0,
            )
            assert not store.complete_batch(
                session,
                batch.id,
                token=None,
                status=BatchStatus.FAILED,
                succeeded_count=0,
                failed_count=1,
            )

        done = store.get_batch(tmp_database, batch.id)
        assert done.status == BatchStatus.SUCCEEDED
        assert done.lease_token is None
        assert done.completed_at is not None

    def test_terminal_batch_cannot_be_leased(self, tmp_database):
        """Test a finished batch is never polled again."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id)
        with managed_session(tmp_database) as session:
            store.complete_batch(
                session,
                batch.id,
                token=None,
                status=BatchStatus.FAILED,
                succeeded_count=0,
                failed_count=1,
            )

        assert store.claim_batch_lease(tmp_database, batch.id, lease_seconds=60) is None

    def test_retry_claim_only_once(self, tmp_database):
        """Test failed -> retried can be won by a single caller and reverted."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id)
        with managed_session(tmp_database) as session:
            store.complete_batch(
                session,
                batch.id,
                token=None,
                status=BatchStatus.FAILED,
                succeeded_count=0,
                failed_count=1,
            )
            assert store.claim_batch_for_retry(session, batch.id)
            assert not store.claim_batch_for_retry(session, batch.id)

        store.revert_retry_claim(tmp_database, batch.id)
        assert store.get_batch(tmp_database, batch.id).status == BatchStatus.FAILED

    def test_cancel_open_batches(self, tmp_database):
        """Test only non-terminal batches are canceled, with all inputs counted failed."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        open_batch = new_batch(tmp_database, run.id, "pb-open", input_count=3)
        done = new_batch(tmp_database, run.id, "pb-done")
        with managed_session(tmp_database) as session:
            store.complete_batch(
                session,
                done.id,
                token=None,
                status=BatchStatus.SUCCEEDED,
                succeeded_count=1,
                failed_count=0,
            )
            assert store.cancel_open_batches(session, run.id, error="gone") == ["pb-open"]

        canceled = store.get_batch(tmp_database, open_batch.id)
        assert canceled.status == BatchStatus.CANCELED
        assert (canceled.failed_count, canceled.error) == (3, "gone")
        assert store.get_batch(tmp_database, done.id).status == BatchStatus.SUCCEEDED


class TestInputMetadata:
    def test_doc_indices_and_cleanup(self, tmp_database):
        """Test per-document chunk counts and run cleanup."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id, input_count=3)
        with managed_session(tmp_database) as session:
            store.add_metadata(
                session,
                [
                    BulkEmbeddingInputMetadata(
                        run_id=run.id,
                        batch_id=batch.id,
                        input_id=f"posts:{doc}:{index}",
                        text="t",
                        source_collection="posts",
                        doc_id=doc,
                        chunk_index=index,
                        embedding_version="v1",
                    )
                    for doc, index in [("1", 0), ("1", 1), ("2", 0)]
                ],
            )

        with session_scope(tmp_database) as session:
            assert store.batch_doc_indices(session, batch.id) == {("posts", "1"): 2, ("posts", "2"): 1}
            assert store.run_doc_indices(session, run.id, "posts", "1") == {0, 1}
            assert store.count_batch_metadata(session, batch.id) == 3

        assert [m.input_id for m in store.iter_batch_metadata(tmp_database, batch.id, page_size=2)] == [
            "posts:1:0",
            "posts:1:1",
            "posts:2:0",
        ]

        with managed_session(tmp_database) as session:
            assert store.delete_document_metadata(session, "posts", "2") == 1
            assert store.delete_run_metadata(session, run.id) == 2

    def test_staged_embeddings(self, tmp_database):
        """Test embeddings parked on metadata rows can be listed per document and cleared."""
        run = store.create_run(tmp_database, pool="default", embedding_version="v1")
        batch = new_batch(tmp_database, run.id, input_count=3)
        with managed_session(tmp_database) as session:
            store.add_metadata(
                session,
                [
                    BulkEmbeddingInputMetadata(
                        run_id=run.id,
                        batch_id=batch.id,
                        input_id=f"posts:{doc}:{index}",
                        text="t",
                        source_collection="posts",
                        doc_id=doc,
                        chunk_index=index,
                        embedding_version="v1",
                    )
                    for doc, index in [("1", 0), ("1", 1), ("2", 0)]
                ],
            )

        with session_scope(tmp_database) as session:
            assert store.staged_documents(session, run.id) == []

        with managed_session(tmp_database) as session:
            store.stage_embeddings(session, run.id, {"posts:1:1": [0.5, 1.0]})

        with session_scope(tmp_database) as session:
            assert store.staged_documents(session, run.id) == [("posts", "1")]
            metas = store.document_metadata(session, run.id, "posts", "1")
            assert [(m.chunk_index, m.staged_embedding) for m in metas] == [(0, None), (1, [0.5, 1.0])]

        with managed_session(tmp_database) as session:
            assert store.clear_staged_embeddings(session, run.id, ["posts:1:1"]) == 1

        with session_scope(tmp_database) as session:
            assert store.staged_documents(session, run.id) == []
