"""Vectorpool init command - create vectorpool.config and the database."""

from __future__ import annotations

import click
from rich.console import Console

from vectorpool.config import (
    VectorpoolConfig,
    config_file_exists,
    create_config,
    get_config_file_path,
)
from vectorpool.db import get_database_client

console = Console()


@click.command("init")
@click.option(
    "--db-path",
    default=VectorpoolConfig.DEFAULT_DB_PATH,
    show_default=True,
    help="SQLite database path, relative to vectorpool.config",
)
@click.option("--plugin", "plugin_ref", default=None, help="module:attr of the plugin factory")
@click.option("--force", is_flag=True, help="Overwrite an existing vectorpool.config")
def init(db_path: str, plugin_ref: str | None, force: bool):
    """
    Initialize a vectorpool project in the current directory.

    \b
    Examples:
        vectorpool init
        vectorpool init --plugin myproject.vectors:build_plugin
    """
    if config_file_exists() and not force:
        console.print(f"[yellow]Already initialized:[/yellow] {get_config_file_path()}")
        console.print("[dim]Use --force to overwrite[/dim]")
        return

    config = create_config(db_path=db_path, plugin=plugin_ref)
    config.get_absolute_db_path().parent.mkdir(parents=True, exist_ok=True)

    client = get_database_client(config)
    client.init_database()

    console.print(f"[green]✓[/green] Created {get_config_file_path()}")
    console.print(f"[green]✓[/green] Database ready ({client.get_mode_name()})")
    if not config.PLUGIN:
        console.print("[dim]Set PLUGIN=module:attr in vectorpool.config to use the bulk commands[/dim]")
