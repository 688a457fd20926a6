"""CLI for the URL import pipeline."""

import asyncio
from dataclasses import replace
from typing import Optional

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from link_importer.config import Settings
from link_importer.models import ImportStatus
from link_importer.pipeline import import_url
from link_importer.reconciler import ImportReconciler
from link_importer.store import RecordStore

# Load environment variables (override=True to beat shell env vars)
load_dotenv(override=True)

app = typer.Typer(
    name="link-importer",
    help="Import web pages as URL records",
    add_completion=False,
)
console = Console()

# Exit codes per outcome
EXIT_CODES = {
    ImportStatus.CREATED: 0,
    ImportStatus.REJECTED: 1,
    ImportStatus.DUPLICATE: 2,
}


def parse_fields(values: Optional[list[str]]) -> dict[str, str]:
    """Turn repeated ``--field key=value`` options into a dict."""
    fields: dict[str, str] = {}
    for value in values or []:
        key, sep, field_value = value.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {value!r}", param_hint="--field")
        fields[key.strip()] = field_value
    return fields


def open_store(settings: Settings) -> RecordStore:
    return RecordStore(settings.store_path)


@app.command("import-url")
def import_url_command(
    url: str = typer.Argument(..., help="URL of the page to import"),
    field: Optional[list[str]] = typer.Option(None, "--field", "-f", help="Override field, key=value (repeatable)"),
):
    """Import a single URL into the store."""
    settings = Settings.from_env()
    overrides = parse_fields(field)
    store = open_store(settings)

    async def run():
        async with httpx.AsyncClient(timeout=settings.fetch_timeout) as client:
            return await import_url(url, overrides, store=store, client=client, settings=settings)

    outcome = asyncio.run(run())

    if outcome.created:
        console.print(f"\n[bold green]Created:[/bold green] {outcome.title}")
        for key, value in sorted(outcome.summary().items()):
            if key != "text":
                console.print(f"  {key}: {value}")
    elif outcome.status == ImportStatus.DUPLICATE:
        console.print(f"[yellow]{outcome.message}[/yellow] [dim]({outcome.existing_title})[/dim]")
    else:
        console.print(f"[red]{outcome.message}[/red]")

    raise typer.Exit(EXIT_CODES[outcome.status])


@app.command()
def queue(
    urls: list[str] = typer.Argument(..., help="URLs to add to the pending batch"),
    field: Optional[list[str]] = typer.Option(None, "--field", "-f", help="Override field for every URL, key=value"),
):
    """Add URLs to the pending import batch without importing them yet."""
    settings = Settings.from_env()
    store = open_store(settings)
    slots = asyncio.run(store.submit_imports(urls, override_fields=parse_fields(field)))
    console.print(f"[green]Queued {len(slots)} URL(s)[/green]")
    for slot, url in zip(slots, urls):
        console.print(f"  [dim]{slot}[/dim] {url}")


@app.command()
def reconcile(
    workers: int = typer.Option(0, "--workers", "-w", help="Concurrent fetches (0 = LINK_IMPORTER_MAX_CONCURRENT)"),
    timeout: float = typer.Option(0, "--timeout", "-t", help="Give up waiting after this many seconds (0 = no limit)"),
):
    """Resolve every entry of the pending import batch."""
    settings = Settings.from_env()
    if workers > 0:
        settings = replace(settings, max_concurrent=workers)
    store = open_store(settings)

    total = len(asyncio.run(store.read_pending_batch()).batch.entries)

    async def run(progress, task):
        async with httpx.AsyncClient(timeout=settings.fetch_timeout) as client:
            reconciler = ImportReconciler(
                store,
                client=client,
                settings=settings,
                on_resolved=lambda slot, outcome: progress.advance(task),
            )
            reconciler.attach()
            try:
                report = await reconciler.run(timeout=timeout or None)
                drained = await reconciler.is_drained()
            finally:
                await reconciler.close()
            return report, drained

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Importing URLs...", total=total)
        report, drained = asyncio.run(run(progress, task))

    if len(report):
        table = Table(title=f"Resolved entries ({len(report)})")
        table.add_column("URL", style="cyan", max_width=50)
        table.add_column("Result")
        table.add_column("Title / reason", max_width=40)

        colors = {ImportStatus.CREATED: "green", ImportStatus.DUPLICATE: "yellow", ImportStatus.REJECTED: "red"}
        for outcome in report.outcomes.values():
            color = colors[outcome.status]
            detail = outcome.title if outcome.created else (outcome.existing_title or outcome.reason or "")
            table.add_row(outcome.url, f"[{color}]{outcome.status.value}[/{color}]", detail or "-")

        console.print(table)
    else:
        console.print("[dim]Nothing pending[/dim]")

    console.print(
        f"\n[green]Created: {len(report.created)}[/green] | "
        f"[yellow]Duplicates: {len(report.duplicates)}[/yellow] | "
        f"[red]Failed: {len(report.rejected)}[/red]"
    )
    if not drained:
        console.print("[yellow]Batch not drained, entries are still pending[/yellow]")
        raise typer.Exit(1)


@app.command()
def pending():
    """Show pending and failed import entries."""
    settings = Settings.from_env()
    store = open_store(settings)
    snapshot = asyncio.run(store.read_pending_batch())
    batch = snapshot.batch

    if not batch.entries and not batch.failed:
        console.print("[dim]Pending batch is empty[/dim]")
        return

    table = Table(title=f"Pending batch (version {snapshot.version})")
    table.add_column("Slot", style="dim")
    table.add_column("Source", style="cyan", max_width=60)
    table.add_column("State")
    table.add_column("Reason", style="red")

    for slot, entry in batch.entries.items():
        table.add_row(slot, entry.source_text, "pending", "")
    for slot, entry in batch.failed.items():
        table.add_row(slot, entry.source_text, "[red]failed[/red]", entry.reason)

    console.print(table)


@app.command()
def retry_failed():
    """Re-queue failed entries and resolve them."""
    settings = Settings.from_env()
    store = open_store(settings)

    async def run():
        async with httpx.AsyncClient(timeout=settings.fetch_timeout) as client:
            reconciler = ImportReconciler(store, client=client, settings=settings)
            slots = await reconciler.retry_failed()
            report = await reconciler.run()
            return slots, report

    slots, report = asyncio.run(run())
    console.print(f"[cyan]Retried {len(slots)} entries[/cyan]")
    console.print(
        f"[green]Created: {len(report.created)}[/green] | "
        f"[red]Still failing: {len(report.rejected)}[/red]"
    )


@app.command()
def clear_failed():
    """Discard failed import entries."""
    settings = Settings.from_env()
    store = open_store(settings)
    reconciler = ImportReconciler(store, settings=settings)
    count = asyncio.run(reconciler.clear_failed())
    console.print(f"[green]Cleared {count} failed entries[/green]")


@app.command()
def show(title: str = typer.Argument(..., help="Record title")):
    """Show a stored record."""
    settings = Settings.from_env()
    store = open_store(settings)
    fields = asyncio.run(store.get_record_by_title(title))
    if not fields:
        console.print(f"[red]No record titled {title!r}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]{fields['title']}[/bold]")
    for key, value in sorted(fields.items()):
        if key not in ("title", "text"):
            console.print(f"  {key}: {value}")
    if fields.get("text"):
        console.print(f"\n{fields['text']}")


@app.command()
def stats():
    """Show record store statistics."""
    settings = Settings.from_env()
    store = open_store(settings)
    data = asyncio.run(store.stats())

    console.print(f"\n[bold]Record Store Statistics[/bold]")
    console.print(f"  Records: {data['records']}")
    console.print(f"  URL records: {data['url_records']}")
    console.print(f"  Pending: {data['pending']}")
    console.print(f"  Failed: [red]{data['failed']}[/red]")

    if data["by_extractor"]:
        console.print(f"\n[bold]By Extractor:[/bold]")
        for name, count in sorted(data["by_extractor"].items(), key=lambda x: -x[1]):
            console.print(f"  {name}: {count}")


if __name__ == "__main__":
    app()
