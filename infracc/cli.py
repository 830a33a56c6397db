"""InfraCC CLI - bulk ingestion and record store inspection.

Commands:
- ingest: Import billing/inventory exports (CSV/XLSX/ZIP)
- stats: Show record counts and total monthly cost
- show: Print one record
- clear: Delete every record from the store
"""

from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from infracc.config import get_config
from infracc.core.logging import configure_logging
from infracc.errors import StoreError
from infracc.ingestion.files import read_sources
from infracc.pipeline.ingest import IngestionPipeline
from infracc.pipeline.types import IngestProgress
from infracc.store.repository import open_store

app = typer.Typer(
    name="infracc",
    help="InfraCC - bulk ingestion into a write-coalescing record store",
    no_args_is_help=True,
)

console = Console()

MEMORY_HELP = "Use a throwaway in-memory store instead of Redis"


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Configure logging before any command runs."""
    config = get_config()
    configure_logging(log_level or config.log_level, config.log_format)


@app.command()
def ingest(
    files: list[Path] = typer.Argument(..., help="Export files (CSV/XLSX/ZIP)"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
):
    """Dedupe and merge export rows into the record store."""
    config = get_config()

    try:
        sources = read_sources(files)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    for source in sources:
        console.print(f"  Read {len(source.candidates):,} rows from {source.name}")

    async def _ingest():
        async with open_store(config, in_memory=memory) as store:
            pipeline = IngestionPipeline(store, config.ingest)

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task("Ingesting", total=100)

                def _on_progress(update: IngestProgress) -> None:
                    progress.update(task, completed=update.percent, description=update.status)

                return await pipeline.ingest_sources(sources, on_progress=_on_progress)

    try:
        result = asyncio.run(_ingest())
    except StoreError as e:
        console.print(f"[red]✗[/red] Ingestion failed: {e}")
        raise typer.Exit(code=1)

    console.print(f"\n[bold green]✓[/bold green] {result.summary()}")
    if result.errors:
        console.print(f"[yellow]⚠[/yellow] {result.skipped_count} candidates skipped")
        for err in result.errors[:5]:  # Show first 5 errors
            console.print(f"  {err}", style="dim")


@app.command()
def stats(
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
):
    """Show record counts by source system and kind."""
    config = get_config()

    async def _stats():
        async with open_store(config, in_memory=memory) as store:
            records = await store.find_all()

        by_source = Counter(record.source_system.value for record in records)
        by_kind = Counter(record.resource_kind.value for record in records)
        costs: Counter[str] = Counter()
        for record in records:
            costs[record.monthly_cost.currency] += record.monthly_cost.amount

        table = Table(title="Record Store")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="green")

        table.add_row("Records", f"{len(records):,}")
        for source, count in sorted(by_source.items()):
            table.add_row(f"Source: {source}", f"{count:,}")
        for kind, count in sorted(by_kind.items()):
            table.add_row(f"Kind: {kind}", f"{count:,}")
        for currency, total in sorted(costs.items()):
            table.add_row(f"Monthly cost ({currency})", f"{total:,.2f}")

        console.print(table)

    asyncio.run(_stats())


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Record id"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
):
    """Print one record."""
    config = get_config()

    async def _show():
        async with open_store(config, in_memory=memory) as store:
            return await store.find_by_id(record_id)

    record = asyncio.run(_show())
    if record is None:
        console.print(f"[red]✗[/red] No record with id {record_id}")
        raise typer.Exit(code=1)

    table = Table(title=record.name or record.id)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name, value in record.to_dict().items():
        if value in (None, [], ""):
            continue
        table.add_row(field_name, str(value))
    table.add_row("resource_score", f"{record.resource_score():.1f}")
    console.print(table)


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
    memory: bool = typer.Option(False, "--memory", help=MEMORY_HELP),
):
    """Delete every record from the store (DESTRUCTIVE)."""
    if not yes:
        typer.confirm("Delete every record from the store?", abort=True)

    config = get_config()

    async def _clear():
        async with open_store(config, in_memory=memory) as store:
            await store.clear()

    asyncio.run(_clear())
    console.print("[bold green]✓[/bold green] Record store cleared")


if __name__ == "__main__":
    app()
