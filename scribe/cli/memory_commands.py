"""Stored memory management CLI commands."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.table import Table

from scribe.utils.helpers import truncate_string

from .core import app, console, load_cli_config, make_memory_service, run_async

T = TypeVar("T")

memory_app = typer.Typer(help="Inspect and repair stored memories")
app.add_typer(memory_app, name="memory")


def _with_service(action: Callable[[Any], Awaitable[T]]) -> T:
    """Run ``action(service)`` and close the service afterwards."""
    from scribe.backends.base import BackendError

    service = make_memory_service(load_cli_config())

    async def _run() -> T:
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return run_async(_run())
    except BackendError as e:
        console.print(f"[red]Backend error:[/red] {e}")
        raise typer.Exit(1)


def _format_ms(value: int) -> str:
    if not value:
        return ""
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


@memory_app.command("collections")
def memory_collections() -> None:
    """List collections that have stored memories."""
    from scribe.storage.settings_store import JsonSettingsStore

    memories = JsonSettingsStore().memories()
    if not memories:
        console.print("No stored memories.")
        return

    table = Table(title="Collections")
    table.add_column("Collection", style="cyan")
    table.add_column("Memories", justify="right")
    table.add_column("Need regeneration", justify="right")
    for collection_id in sorted(memories):
        records = memories[collection_id] or {}
        flagged = sum(1 for r in records.values() if isinstance(r, dict) and r.get("needsRegeneration"))
        table.add_row(collection_id, str(len(records)), str(flagged))
    console.print(table)


@memory_app.command("list")
def memory_list(
    collection: str = typer.Argument(..., help="Collection id"),
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    page_size: int = typer.Option(20, "--page-size", "-n", help="Memories per page"),
) -> None:
    """List stored memories of a collection, oldest turn first."""

    async def _list(service):
        return service.list_memories(page, page_size, collection_id=collection)

    result = _with_service(_list)
    if not result.total:
        console.print(f"No memories in {collection}.")
        return

    table = Table(title=f"{collection} (page {result.page}/{result.page_count}, {result.total} total)")
    table.add_column("Turn", justify="right")
    table.add_column("Hash", style="cyan")
    table.add_column("Summary")
    table.add_column("Updated")
    for record in result.records:
        summary = (
            "[yellow]needs regeneration[/yellow]"
            if record.needs_regeneration
            else truncate_string(record.summary, 80)
        )
        table.add_row(str(record.turn_index), record.hash, summary, _format_ms(record.updated_at))
    console.print(table)


@memory_app.command("stats")
def memory_stats(collection: str = typer.Argument(..., help="Collection id")) -> None:
    """Show memory counts and backend health for a collection."""

    async def _stats(service):
        return await service.stats(collection_id=collection)

    stats = _with_service(_stats)
    health = "[green]healthy[/green]" if stats.backend_healthy else "[red]unhealthy[/red]"
    console.print(f"Collection: [cyan]{collection}[/cyan]")
    console.print(f"  Memories: {stats.total_memories}")
    console.print(f"  Need regeneration: {stats.needs_regeneration}")
    console.print(f"  Backend: {stats.backend} ({health}) {stats.backend_message}")


@memory_app.command("delete")
def memory_delete(
    collection: str = typer.Argument(..., help="Collection id"),
    hashes: list[str] = typer.Argument(..., help="Memory hashes (mem_...)"),
) -> None:
    """Delete memories by hash from the backend and local storage."""

    async def _delete(service):
        return await service.bulk_delete(hashes, collection_id=collection)

    deleted, failed = _with_service(_delete)
    console.print(f"[green]✓[/green] Deleted {deleted}, failed {failed}")
    if failed:
        raise typer.Exit(1)


@memory_app.command("purge")
def memory_purge(
    collection: str = typer.Argument(..., help="Collection id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Drop every memory of a collection."""
    if not yes and not typer.confirm(f"Purge all memories of {collection}?"):
        raise typer.Exit()

    async def _purge(service):
        return await service.purge(collection_id=collection)

    removed = _with_service(_purge)
    console.print(f"[green]✓[/green] Purged {collection} ({removed} local records)")


@memory_app.command("sync")
def memory_sync(collection: str = typer.Argument(..., help="Collection id")) -> None:
    """Reconcile local memories with the backend, removing orphans on both sides."""

    async def _sync(service):
        return await service.sync(collection_id=collection)

    cleaned = _with_service(_sync)
    console.print(f"[green]✓[/green] Cleaned {cleaned} orphaned entries in {collection}")
