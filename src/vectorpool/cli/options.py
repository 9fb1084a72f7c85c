"""Shared Click options for vectorpool commands."""

from __future__ import annotations

import click

format_option = click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default="text",
    help="Output format (json for AI agents, text for humans)",
)

format_table_option = click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "table"], case_sensitive=False),
    default="table",
    help="Output format (json for AI agents, table for humans)",
)

plugin_option = click.option(
    "--plugin",
    "plugin_ref",
    default=None,
    envvar="VECTORPOOL_PLUGIN",
    help="module:attr of the VectorizePlugin (or a factory returning one); "
    "defaults to PLUGIN in vectorpool.config",
)
