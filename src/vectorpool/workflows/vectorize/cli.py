"""CLI commands for search and realtime vectorize."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from vectorpool.cli.loader import load_plugin
from vectorpool.cli.options import format_option, format_table_option, plugin_option
from vectorpool.cli.output import print_json

console = Console()


@click.command("search")
@click.argument("pool")
@click.argument("query")
@click.option("--limit", default=10, show_default=True, type=int, help="Max results")
@click.option("--where", "where_json", default=None, help='JSON filter, e.g. \'{"category": "guides"}\'')
@plugin_option
@format_table_option
def search_cmd(
    pool: str,
    query: str,
    limit: int,
    where_json: str | None,
    plugin_ref: str | None,
    output_format: str,
):
    """
    Search POOL for chunks similar to QUERY.

    \b
    Examples:
        vectorpool search default "reset password"
        vectorpool search default "pricing" --where '{"source_collection": "pages"}'
    """
    try:
        where = json.loads(where_json) if where_json else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--where") from e

    plugin = load_plugin(plugin_ref)
    results = plugin.search(pool, query, limit=limit, where=where)

    if output_format == "json":
        print_json({"pool": pool, "query": query, "results": results})
        return

    if not results:
        console.print("[dim]No results[/dim]")
        return

    table = Table(title=f"Results from '{pool}'")
    table.add_column("Score", justify="right", style="cyan")
    table.add_column("Document")
    table.add_column("Chunk", justify="right")
    table.add_column("Text")
    for row in results:
        text = row["chunk_text"]
        table.add_row(
            f"{row['similarity']:.3f}",
            f"{row['source_collection']}:{row['doc_id']}",
            str(row["chunk_index"]),
            text if len(text) <= 80 else text[:77] + "...",
        )
    console.print(table)


@click.command("vectorize")
@click.argument("collection")
@click.argument("doc_id")
@plugin_option
@format_option
def vectorize_cmd(collection: str, doc_id: str, plugin_ref: str | None, output_format: str):
    """Embed one stored document into its realtime pools now."""
    plugin = load_plugin(plugin_ref)
    written = plugin.vectorize(collection, doc_id)

    if output_format == "json":
        print_json({"collection": collection, "doc_id": doc_id, "written": written})
        return

    if not written:
        console.print(f"[yellow]Nothing embedded for {collection}:{doc_id}[/yellow]")
        return
    for pool, count in written.items():
        console.print(f"[green]✓[/green] {pool}: {count} chunk(s)")
