"""Resolve the VectorizePlugin a CLI command operates on."""

from __future__ import annotations

import importlib
from typing import Optional

import click

from vectorpool.config import get_config_or_default
from vectorpool.plugin import VectorizePlugin


def load_plugin(plugin_ref: Optional[str] = None) -> VectorizePlugin:
    """
    Import `module:attr` and return the plugin it names.

    `attr` may be a VectorizePlugin or a zero-argument callable returning one.
    Without `plugin_ref`, PLUGIN from vectorpool.config is used.

    Raises:
        click.UsageError: nothing configured, bad reference, or wrong type
    """
    ref = plugin_ref or get_config_or_default().PLUGIN
    if not ref:
        raise click.UsageError(
            "No plugin configured. Pass --plugin module:attr or set PLUGIN in vectorpool.config"
        )

    module_path, _, attr = ref.partition(":")
    if not module_path or not attr:
        raise click.UsageError(f"Invalid plugin reference '{ref}' (expected module:attr)")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise click.UsageError(f"Cannot import plugin module '{module_path}': {e}") from e

    target = getattr(module, attr, None)
    if target is None:
        raise click.UsageError(f"Module '{module_path}' has no attribute '{attr}'")

    plugin = target if isinstance(target, VectorizePlugin) else None
    if plugin is None and callable(target):
        plugin = target()
    if not isinstance(plugin, VectorizePlugin):
        raise click.UsageError(f"'{ref}' did not resolve to a VectorizePlugin")
    return plugin
