"""
Root test fixtures for vectorpool.

Provides database isolation, a scriptable batch provider, recording hooks,
plugin construction and CLI helpers shared by every test package.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable, Optional
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from vectorpool.core.hooks import BulkEmbedHooks
from vectorpool.db.sqlite import SQLiteClient
from vectorpool.pools import (
    BatchSubmission,
    BulkEmbeddingInput,
    BulkEmbeddingOutput,
    CollectionConfig,
    KnowledgePool,
    PollResult,
    ProviderAdapter,
)

# ============================================================================
# CLI Testing Fixtures
# ============================================================================


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner for testing."""
    return CliRunner()


def invoke_cli(runner: CliRunner, cmd, args: list[str], **kwargs):
    """Invoke a CLI command, letting unexpected exceptions propagate."""
    return runner.invoke(cmd, args, catch_exceptions=False, **kwargs)


def assert_cli_success(result, msg: str = None):
    """Assert CLI command succeeded (exit code 0)."""
    if result.exit_code != 0:
        error_msg = f"CLI failed (exit code {result.exit_code})"
        if msg:
            error_msg = f"{msg}: {error_msg}"
        if result.output:
            error_msg += f"\nOutput: {result.output}"
        raise AssertionError(error_msg)


def assert_output_contains(result, text: str):
    """Assert CLI output contains text."""
    if text not in result.output:
        raise AssertionError(f"Expected output to contain '{text}'\nGot: {result.output}")


def assert_json_output(result) -> dict:
    """Assert CLI output is valid JSON and return it."""
    try:
        return json.loads(result.output)
    except json.JSONDecodeError as e:
        raise AssertionError(f"Expected JSON output, got:\n{result.output}") from e


# ============================================================================
# Database Isolation
# ============================================================================


@pytest.fixture
def tmp_database(tmp_path: Path, monkeypatch):
    """
    Create an isolated temporary SQLite database for testing.

    Changes into the temp directory and drops DATABASE_URL so nothing falls
    back to a real project database.

    Yields:
        SQLiteClient: client with all tables created
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.chdir(tmp_path)

    client = SQLiteClient(tmp_path / ".vectorpool" / "test.sqlite")
    client.init_database()

    yield client

    client.dispose()


# ============================================================================
# Fake embeddings and providers
# ============================================================================

KEYWORDS = ("cat", "dog", "fish")


def fake_embedding(text: str) -> list[float]:
    """Deterministic 4-dim vector: keyword counts plus a constant component."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in KEYWORDS] + [1.0]


def fake_embed_docs(texts: list[str]) -> list[list[float]]:
    return [fake_embedding(text) for text in texts]


class MockBulkProvider(ProviderAdapter):
    """
    Scriptable batch provider.

    Args:
        flush_size: Submit once this many chunks are pending (None: only on
            the last chunk)
        statuses: Poll statuses returned in order for every batch; the last
            one repeats
        statuses_by_batch: Per provider batch id overrides of `statuses`
        fail_input: Predicate on input id; matching inputs get an error output
        dims: Size of produced embeddings (None: fake_embedding's size)
        submit_error: Raised from add_chunk when set
    """

    def __init__(
        self,
        *,
        flush_size: Optional[int] = None,
        statuses: Optional[list[str]] = None,
        statuses_by_batch: Optional[dict[str, list[str]]] = None,
        fail_input: Optional[Callable[[str], bool]] = None,
        dims: Optional[int] = None,
        submit_error: Optional[Exception] = None,
    ):
        self.flush_size = flush_size
        self.statuses = list(statuses or ["succeeded"])
        self.statuses_by_batch = dict(statuses_by_batch or {})
        self.fail_input = fail_input
        self.dims = dims
        self.submit_error = submit_error

        self.pending: list[BulkEmbeddingInput] = []
        self.batches: dict[str, list[BulkEmbeddingInput]] = {}
        self.added: list[tuple[str, bool]] = []
        self.polls: list[str] = []
        self.errors: list[dict[str, Any]] = []
        self._poll_counts: dict[str, int] = {}

    def _flush(self) -> BatchSubmission:
        provider_batch_id = f"mock-batch-{len(self.batches) + 1}"
        self.batches[provider_batch_id] = self.pending
        self.pending = []
        return BatchSubmission(
            provider_batch_id=provider_batch_id, input_file_ref=f"file-{provider_batch_id}"
        )

    def add_chunk(self, *, chunk: BulkEmbeddingInput, is_last_chunk: bool):
        if self.submit_error is not None:
            raise self.submit_error
        self.added.append((chunk.id, is_last_chunk))
        if is_last_chunk:
            self.pending.append(chunk)
            return self._flush()
        if self.flush_size and len(self.pending) >= self.flush_size:
            submission = self._flush()
            self.pending.append(chunk)
            return submission
        self.pending.append(chunk)
        return None

    def _embed(self, text: str) -> list[float]:
        vector = fake_embedding(text)
        if self.dims is not None:
            vector = (vector + [0.0] * self.dims)[: self.dims]
        return vector

    def poll_or_complete_batch(self, *, provider_batch_id: str, on_output):
        self.polls.append(provider_batch_id)
        sequence = self.statuses_by_batch.get(provider_batch_id, self.statuses)
        count = self._poll_counts.get(provider_batch_id, 0)
        self._poll_counts[provider_batch_id] = count + 1
        status = sequence[min(count, len(sequence) - 1)]

        if status == "succeeded":
            for item in self.batches[provider_batch_id]:
                if self.fail_input is not None and self.fail_input(item.id):
                    on_output(BulkEmbeddingOutput(id=item.id, error="mock failure"))
                else:
                    on_output(BulkEmbeddingOutput(id=item.id, embedding=self._embed(item.text)))
        error = f"mock batch {status}" if status in ("failed", "canceled") else None
        return PollResult(status=status, error=error)

    def on_error(self, *, provider_batch_ids, error, failed_chunk_data, failed_chunk_count):
        self.errors.append(
            {
                "provider_batch_ids": list(provider_batch_ids),
                "error": error,
                "failed_chunk_data": list(failed_chunk_data),
                "failed_chunk_count": failed_chunk_count,
            }
        )


def chunk_paragraphs(doc: dict) -> list[dict]:
    """Chunker used by most tests: one chunk per blank-line separated paragraph."""
    body = doc.get("body") or ""
    return [{"chunk": part.strip()} for part in body.split("\n\n") if part.strip()]


def make_pool(
    name: str = "default",
    *,
    collections: Optional[Iterable[str]] = ("posts",),
    chunker: Callable[[dict], Any] = chunk_paragraphs,
    should_embed: Optional[Callable[[dict], bool]] = None,
    embedding_version: str = "v1",
    provider: Optional[ProviderAdapter] = None,
    realtime: bool = True,
    dims: Optional[int] = 4,
    extension_fields: Optional[list[str]] = None,
) -> KnowledgePool:
    return KnowledgePool(
        name=name,
        collections={
            collection: CollectionConfig(to_knowledge_pool=chunker, should_embed=should_embed)
            for collection in collections
        },
        embedding_version=embedding_version,
        dims=dims,
        provider=provider,
        embed_docs=fake_embed_docs if realtime else None,
        embed_query=fake_embedding if realtime else None,
        extension_fields=list(extension_fields or []),
    )


@pytest.fixture
def mock_provider() -> MockBulkProvider:
    return MockBulkProvider()


# ============================================================================
# Hooks
# ============================================================================


class RecordingHooks(BulkEmbedHooks):
    """
    Test hooks that record all callback invocations.

    Useful for verifying hook behavior in tests.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def on_run_start(self, **kwargs) -> None:
        self.calls.append(("on_run_start", kwargs))

    def on_batch_submitted(self, **kwargs) -> None:
        self.calls.append(("on_batch_submitted", kwargs))

    def on_batch_result(self, **kwargs) -> None:
        self.calls.append(("on_batch_result", kwargs))

    def on_run_end(self, **kwargs) -> None:
        self.calls.append(("on_run_end", kwargs))

    def get_calls(self, event_type: str) -> list[dict[str, Any]]:
        """Get all calls of a specific event type."""
        return [data for name, data in self.calls if name == event_type]


@pytest.fixture
def recording_hooks():
    """Fixture that provides a RecordingHooks instance."""
    return RecordingHooks()


# ============================================================================
# Plugin construction
# ============================================================================


@pytest.fixture
def plugin_factory(tmp_database, recording_hooks):
    """
    Factory for VectorizePlugin instances on the temp database.

    Uses an InlineTaskQueue and zero poll delay so tests drive the whole
    pipeline with plugin.run_until_idle().
    """
    from vectorpool.plugin import VectorizePlugin
    from vectorpool.workflows.bulk_embed import BulkEmbedConfig, InlineTaskQueue

    def _create(pools: list[KnowledgePool], *, hooks=None, **config_overrides):
        config_values = {"poll_interval_seconds": 0}
        config_values.update(config_overrides)
        return VectorizePlugin(
            pools,
            client=tmp_database,
            queue=InlineTaskQueue(),
            config=BulkEmbedConfig(**config_values),
            hooks=hooks or recording_hooks,
        )

    return _create


# ============================================================================
# DBOS Mocking
# ============================================================================


@pytest.fixture
def mock_dbos():
    """
    Mock DBOS for the DBOS task queue.

    Patches the module-level DBOS and Queue so workflows run synchronously
    when enqueued. Skips when the `dbos` extra is not installed.
    """
    pytest.importorskip("dbos")
    import sys

    from vectorpool.workflows.bulk_embed import dbos_queue as _  # noqa: F401

    module = sys.modules["vectorpool.workflows.bulk_embed.dbos_queue"]
    original_dbos = module.DBOS
    original_queue = module.Queue

    def mock_workflow_decorator(**kwargs):
        def decorator(fn):
            return fn

        return decorator

    mock_dbos_cls = MagicMock()
    mock_dbos_cls.workflow = mock_workflow_decorator
    module.DBOS = mock_dbos_cls
    module.Queue = MockQueue

    try:
        yield mock_dbos_cls
    finally:
        module.DBOS = original_dbos
        module.Queue = original_queue


class MockHandle:
    """Mock handle that returns results synchronously."""

    def __init__(self, result):
        self._result = result

    def get_result(self):
        return self._result


class MockQueue:
    """Mock queue that executes functions synchronously."""

    def __init__(self, name: str = "", *args, **kwargs):
        self.name = name
        self.kwargs = kwargs

    def enqueue(self, fn, *args, **kwargs):
        result = fn(*args, **kwargs)
        return MockHandle(result)
