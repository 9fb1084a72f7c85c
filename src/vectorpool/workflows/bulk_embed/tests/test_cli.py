"""Tests for the `vectorpool bulk` commands."""

from __future__ import annotations

import pytest

from vectorpool.core.tests.conftest import (
    MockBulkProvider,
    assert_cli_success,
    assert_json_output,
    assert_output_contains,
    invoke_cli,
    make_pool,
)
from vectorpool.workflows.bulk_embed import cli as bulk_cli
from vectorpool.workflows.bulk_embed.cli import bulk_group


@pytest.fixture
def plugin(plugin_factory, monkeypatch):
    provider = MockBulkProvider(flush_size=1, statuses_by_batch={"mock-batch-2": ["failed"]})
    plugin = plugin_factory([make_pool(provider=provider)])
    plugin.upsert_document("posts", "1", {"body": "cat"}, embed=False)
    plugin.upsert_document("posts", "2", {"body": "dog\n\nfish"}, embed=False)
    monkeypatch.setattr(bulk_cli, "load_plugin", lambda plugin_ref: plugin)
    return plugin


class TestStartCommand:
    def test_start_json(self, cli_runner, plugin):
        """Test start queues a run and reports its id."""
        result = invoke_cli(cli_runner, bulk_group, ["start", "default", "--format", "json"])
        assert_cli_success(result)
        data = assert_json_output(result)
        assert data["status"] == "queued"
        assert "conflict" not in data
        assert "run" not in data

    def test_start_wait_processes_run(self, cli_runner, plugin):
        """Test --wait drains the queue and includes the finished run."""
        result = invoke_cli(
            cli_runner, bulk_group, ["start", "default", "--wait", "--format", "json"]
        )
        assert_cli_success(result)
        data = assert_json_output(result)
        assert data["run"]["status"] == "failed"
        assert data["run"]["succeeded"] == 1

    def test_start_conflict_text(self, cli_runner, plugin):
        """Test a second start reports the conflict instead of a new run."""
        plugin.bulk_embed("default")
        result = invoke_cli(cli_runner, bulk_group, ["start", "default"])
        assert_cli_success(result)
        assert_output_contains(result, "Conflict")
        assert_output_contains(result, "already in progress")

    def test_unknown_pool(self, cli_runner, plugin):
        """Test starting an unknown pool raises a pool error."""
        from vectorpool.core import KnowledgePoolNotFoundError

        with pytest.raises(KnowledgePoolNotFoundError):
            invoke_cli(cli_runner, bulk_group, ["start", "nope"])


class TestStatusCommands:
    def test_status_text(self, cli_runner, plugin):
        """Test status shows counters and failed chunk references."""
        run_id = plugin.bulk_embed("default").run_id
        plugin.run_until_idle()

        result = invoke_cli(cli_runner, bulk_group, ["status", str(run_id)])
        assert_cli_success(result)
        assert_output_contains(result, f"Run {run_id}")
        assert_output_contains(result, "failed")
        assert_output_contains(result, "mock batch failed")

    def test_status_not_found(self, cli_runner, plugin):
        """Test an unknown run id exits non-zero."""
        result = invoke_cli(cli_runner, bulk_group, ["status", "999", "--format", "json"])
        assert result.exit_code == 1
        assert assert_json_output(result)["not_found"] is True

    def test_runs_and_batches_json(self, cli_runner, plugin):
        """Test runs and batches list what the run produced."""
        run_id = plugin.bulk_embed("default").run_id
        plugin.run_until_idle()

        runs = assert_json_output(
            invoke_cli(cli_runner, bulk_group, ["runs", "--pool", "default", "--format", "json"])
        )
        assert [r["id"] for r in runs["runs"]] == [run_id]

        batches = assert_json_output(
            invoke_cli(cli_runner, bulk_group, ["batches", str(run_id), "--format", "json"])
        )
        assert [b["status"] for b in batches["batches"]] == ["succeeded", "failed"]

    def test_runs_table(self, cli_runner, plugin):
        """Test the default table output renders."""
        plugin.bulk_embed("default")
        result = invoke_cli(cli_runner, bulk_group, ["runs"])
        assert_cli_success(result)
        assert_output_contains(result, "Bulk Embedding Runs")


class TestRetryAndResume:
    def test_retry_wait(self, cli_runner, plugin):
        """Test retry --wait resubmits the failed batch and finishes the run."""
        run_id = plugin.bulk_embed("default").run_id
        plugin.run_until_idle()
        failed = [b for b in plugin.list_batches(run_id) if b.status == "failed"][0]

        result = invoke_cli(
            cli_runner, bulk_group, ["retry", str(failed.id), "--wait", "--format", "json"]
        )
        assert_cli_success(result)
        data = assert_json_output(result)
        assert data["batch_id"] == failed.id
        assert plugin.get_run(run_id).status == "succeeded"

    def test_retry_error_exits_non_zero(self, cli_runner, plugin):
        """Test a refused retry prints the error and exits 1."""
        result = invoke_cli(cli_runner, bulk_group, ["retry", "999"])
        assert result.exit_code == 1
        assert_output_contains(result, "not found")

    def test_resume_finished_run(self, cli_runner, plugin):
        """Test resume on a finished run does nothing."""
        run_id = plugin.bulk_embed("default").run_id
        plugin.run_until_idle()

        result = invoke_cli(cli_runner, bulk_group, ["resume", str(run_id), "--format", "json"])
        assert_cli_success(result)
        assert assert_json_output(result)["skipped"] is True
