"""Tests for the `vectorpool search` and `vectorpool vectorize` commands."""

from __future__ import annotations

import pytest

from vectorpool.core.tests.conftest import (
    assert_cli_success,
    assert_json_output,
    assert_output_contains,
    invoke_cli,
    make_pool,
)
from vectorpool.workflows.vectorize import cli as vectorize_cli
from vectorpool.workflows.vectorize.cli import search_cmd, vectorize_cmd


def guides_chunker(doc):
    return [{"chunk": doc["body"], "category": doc.get("category", "misc")}]


@pytest.fixture
def plugin(plugin_factory, monkeypatch):
    plugin = plugin_factory([make_pool(chunker=guides_chunker, extension_fields=["category"])])
    monkeypatch.setattr(vectorize_cli, "load_plugin", lambda plugin_ref: plugin)
    return plugin


class TestSearchCommand:
    def test_json_results_ranked(self, cli_runner, plugin):
        """Test search returns the closest chunk first."""
        plugin.upsert_document("posts", "1", {"body": "all about dogs and a dog", "category": "pets"})
        plugin.upsert_document("posts", "2", {"body": "the cat sat", "category": "pets"})
        plugin.run_until_idle()

        result = invoke_cli(cli_runner, search_cmd, ["default", "cat", "--format", "json"])
        assert_cli_success(result)
        data = assert_json_output(result)
        assert data["results"][0]["doc_id"] == "2"
        assert data["results"][0]["category"] == "pets"

    def test_where_filter(self, cli_runner, plugin):
        """Test --where narrows results by extension field."""
        plugin.upsert_document("posts", "1", {"body": "cat", "category": "pets"})
        plugin.upsert_document("posts", "2", {"body": "cat", "category": "news"})
        plugin.run_until_idle()

        result = invoke_cli(
            cli_runner,
            search_cmd,
            ["default", "cat", "--where", '{"category": "news"}', "--format", "json"],
        )
        assert [r["doc_id"] for r in assert_json_output(result)["results"]] == ["2"]

    def test_invalid_where(self, cli_runner, plugin):
        """Test malformed --where JSON is a usage error."""
        result = cli_runner.invoke(search_cmd, ["default", "cat", "--where", "{nope"])
        assert result.exit_code == 2
        assert "Invalid JSON" in result.output

    def test_table_no_results(self, cli_runner, plugin):
        """Test an empty pool prints a placeholder."""
        result = invoke_cli(cli_runner, search_cmd, ["default", "cat"])
        assert_cli_success(result)
        assert_output_contains(result, "No results")


class TestVectorizeCommand:
    def test_vectorize_stored_document(self, cli_runner, plugin):
        """Test vectorize embeds a stored document immediately."""
        plugin.upsert_document("posts", "1", {"body": "cat"}, embed=False)

        result = invoke_cli(cli_runner, vectorize_cmd, ["posts", "1", "--format", "json"])
        assert_cli_success(result)
        assert assert_json_output(result)["written"] == {"default": 1}
        assert plugin.embeddings.count("default") == 1

    def test_missing_document(self, cli_runner, plugin):
        """Test vectorizing an unknown document reports nothing embedded."""
        result = invoke_cli(cli_runner, vectorize_cmd, ["posts", "404"])
        assert_cli_success(result)
        assert_output_contains(result, "Nothing embedded")
