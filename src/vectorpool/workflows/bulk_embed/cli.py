"""CLI commands for bulk embedding runs."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from vectorpool.cli.loader import load_plugin
from vectorpool.cli.options import format_option, format_table_option, plugin_option
from vectorpool.cli.output import print_json

console = Console()

_STATUS_STYLES = {
    "queued": "dim",
    "running": "cyan",
    "succeeded": "green",
    "failed": "red",
    "canceled": "yellow",
    "retried": "magenta",
}


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _print_run(run: dict) -> None:
    console.print(f"[bold]Run {run['id']}[/bold] pool={run['pool']} version={run['embedding_version']}")
    console.print(f"  Status:    {_styled(run['status'])}")
    console.print(f"  Batches:   {run['total_batches']}")
    console.print(f"  Inputs:    {run['inputs']}")
    console.print(f"  Succeeded: {run['succeeded']}")
    console.print(f"  Failed:    {run['failed']}")
    if run.get("error"):
        console.print(f"  Error:     [red]{run['error']}[/red]")
    for ref in (run.get("failed_chunk_data") or [])[:20]:
        console.print(
            f"  [dim]- {ref['collection']}:{ref['documentId']} chunk {ref['chunkIndex']}[/dim]"
        )


@click.group("bulk")
def bulk_group():
    """Bulk embedding runs against provider batch APIs."""


@bulk_group.command("start")
@click.argument("pool")
@click.option("--wait", is_flag=True, help="Process the run in this process until it finishes")
@plugin_option
@format_option
def start_cmd(pool: str, wait: bool, plugin_ref: str | None, output_format: str):
    """
    Start a bulk embedding run for POOL.

    \b
    Examples:
        vectorpool bulk start default
        vectorpool bulk start default --wait --format json
    """
    plugin = load_plugin(plugin_ref)
    result = plugin.bulk_embed(pool)

    if wait and not result.conflict:
        plugin.run_until_idle()

    run = plugin.get_run(result.run_id) if wait and result.run_id is not None else None

    if output_format == "json":
        payload = result.to_dict()
        if run is not None:
            payload["run"] = run.to_dict()
        print_json(payload)
        return

    if result.conflict:
        console.print(f"[yellow]Conflict:[/yellow] {result.message}")
        return
    console.print(f"[green]✓[/green] Run {result.run_id} {result.status} for pool '{pool}'")
    if run is not None:
        _print_run(run.to_dict())


@bulk_group.command("status")
@click.argument("run_id", type=int)
@plugin_option
@format_option
def status_cmd(run_id: int, plugin_ref: str | None, output_format: str):
    """Show one run's status and counters."""
    plugin = load_plugin(plugin_ref)
    run = plugin.get_run(run_id)
    if run is None:
        if output_format == "json":
            print_json({"error": f"Run {run_id} not found", "not_found": True})
        else:
            console.print(f"[red]Error:[/red] Run {run_id} not found")
        raise SystemExit(1)

    if output_format == "json":
        print_json(run.to_dict())
    else:
        _print_run(run.to_dict())


@bulk_group.command("runs")
@click.option("--pool", default=None, help="Only runs of this pool")
@click.option("--limit", default=20, show_default=True, type=int, help="Max runs to list")
@plugin_option
@format_table_option
def runs_cmd(pool: str | None, limit: int, plugin_ref: str | None, output_format: str):
    """List recent runs, newest first."""
    plugin = load_plugin(plugin_ref)
    runs = [run.to_dict() for run in plugin.list_runs(pool, limit=limit)]

    if output_format == "json":
        print_json({"runs": runs})
        return

    table = Table(title="Bulk Embedding Runs")
    table.add_column("Run", style="cyan")
    table.add_column("Pool")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Batches", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    for run in runs:
        table.add_row(
            str(run["id"]),
            run["pool"],
            run["embedding_version"],
            _styled(run["status"]),
            str(run["total_batches"]),
            str(run["succeeded"]),
            str(run["failed"]),
        )
    console.print(table)


@bulk_group.command("batches")
@click.argument("run_id", type=int)
@plugin_option
@format_table_option
def batches_cmd(run_id: int, plugin_ref: str | None, output_format: str):
    """List a run's provider batches, including retried ones."""
    plugin = load_plugin(plugin_ref)
    batches = [batch.to_dict() for batch in plugin.list_batches(run_id)]

    if output_format == "json":
        print_json({"run_id": run_id, "batches": batches})
        return

    table = Table(title=f"Batches of run {run_id}")
    table.add_column("Batch", style="cyan")
    table.add_column("Index", justify="right")
    table.add_column("Provider batch")
    table.add_column("Status")
    table.add_column("Inputs", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Retried by")
    for batch in batches:
        table.add_row(
            str(batch["id"]),
            str(batch["batch_index"]),
            batch["provider_batch_id"],
            _styled(batch["status"]),
            str(batch["input_count"]),
            str(batch["succeeded_count"]),
            str(batch["failed_count"]),
            str(batch["retried_by_batch_id"] or ""),
        )
    console.print(table)


@bulk_group.command("retry")
@click.argument("batch_id", type=int)
@click.option("--wait", is_flag=True, help="Process the reopened run until it finishes")
@plugin_option
@format_option
def retry_cmd(batch_id: int, wait: bool, plugin_ref: str | None, output_format: str):
    """Resubmit the chunks of one failed batch."""
    from vectorpool.workflows.bulk_embed.results import RetryError

    plugin = load_plugin(plugin_ref)
    outcome = plugin.retry_failed_batch(batch_id)
    failed = isinstance(outcome, RetryError)

    if wait and not failed:
        plugin.run_until_idle()

    if output_format == "json":
        print_json(outcome.to_dict())
    elif failed:
        label = "Conflict" if outcome.conflict else "Error"
        console.print(f"[red]{label}:[/red] {outcome.error}")
    else:
        console.print(f"[green]✓[/green] {outcome.message}")

    if failed:
        raise SystemExit(1)


@bulk_group.command("resume")
@click.argument("run_id", type=int)
@click.option("--wait", is_flag=True, help="Process the run until it finishes")
@plugin_option
@format_option
def resume_cmd(run_id: int, wait: bool, plugin_ref: str | None, output_format: str):
    """Requeue work for a running run whose task was lost."""
    plugin = load_plugin(plugin_ref)
    result = plugin.resume_run(run_id)
    if wait and result.get("requeued"):
        plugin.run_until_idle()

    if output_format == "json":
        print_json(result)
    elif result.get("requeued"):
        console.print(f"[green]✓[/green] Requeued {result['task']} for run {run_id}")
    else:
        console.print(f"[dim]Run {run_id} is {result['status']}; nothing to resume[/dim]")
