"""Root pytest configuration for vectorpool.

This conftest re-exports fixtures from vectorpool.core.tests.conftest so
they're available to all test modules.
"""

from vectorpool.core.tests.conftest import (
    cli_runner,
    mock_dbos,
    mock_provider,
    plugin_factory,
    recording_hooks,
    tmp_database,
)

__all__ = [
    "cli_runner",
    "mock_dbos",
    "mock_provider",
    "plugin_factory",
    "recording_hooks",
    "tmp_database",
]


import logging

import pytest


@pytest.fixture(autouse=True)
def _isolate_vectorpool_logger():
    """Restore the vectorpool logger so handlers added by one CLI test don't leak."""
    logger = logging.getLogger("vectorpool")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
