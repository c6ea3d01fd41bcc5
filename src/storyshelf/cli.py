"""CLI interface for storyshelf."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from storyshelf.cache import CacheStore, load_device_id
from storyshelf.config import ShelfConfig, load_config, merge_cli_overrides
from storyshelf.coordinator import LibraryState, MutationCoordinator
from storyshelf.errors import SyncReport, load_report, save_report
from storyshelf.gateway import ContentGateway
from storyshelf.importer import ImportFormatError, decode_import
from storyshelf.loader import ReconciliationLoader
from storyshelf.models import ContentItem
from storyshelf.views import filter_items, library_stats, pick_random, preview, sort_for_display

T = TypeVar("T")

app = typer.Typer(
    name="storyshelf",
    help="Songs, poems and stories for bedtime, with read and favorite tracking.",
)

console = Console()
_stderr_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from storyshelf import __version__

        console.print(f"storyshelf {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .storyshelf.toml file."),
    ] = None,
    api_url: Annotated[
        Optional[str],
        typer.Option("--api-url", help="Base URL of the library API."),
    ] = None,
    cache_dir: Annotated[
        Optional[Path],
        typer.Option("--cache-dir", help="Directory for the local cache."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log sync activity."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """storyshelf - a child's library of songs, poems and stories."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = load_config(config_path)
    ctx.obj = merge_cli_overrides(config, api_url=api_url, cache_dir=cache_dir)


def _build_coordinator(config: ShelfConfig) -> MutationCoordinator:
    cache = CacheStore(config.cache_dir)
    gateway = ContentGateway(config.to_gateway_config()) if config.api.url else None
    report = SyncReport()
    loader = ReconciliationLoader(gateway, cache, version=config.cache.version, report=report)
    return MutationCoordinator(
        LibraryState(),
        gateway,
        cache,
        loader,
        load_device_id(cache),
        debounce=config.cache.debounce_seconds,
        report=report,
    )


def _run(ctx: typer.Context, action: Callable[[MutationCoordinator], Awaitable[T]]) -> T:
    """Load the library, run *action*, then let background sync finish."""
    config: ShelfConfig = ctx.obj

    async def runner() -> T:
        coordinator = _build_coordinator(config)
        await coordinator.reload()
        try:
            return await action(coordinator)
        finally:
            await coordinator.drain()
            coordinator.report.finish()
            save_report(coordinator.report, config.cache_dir)
            if not coordinator.report.success:
                _stderr_console.print(
                    "[yellow]Changes were not saved locally.[/yellow] See: storyshelf report"
                )

    return asyncio.run(runner())


def _parse_id(raw: str) -> int | float:
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        raise typer.BadParameter(f"Not a valid item id: {raw}") from None


def _print_empty_prompt() -> None:
    console.print("[yellow]No content yet.[/yellow] Import a JSON file to get started:")
    console.print("  storyshelf import FILE")


def _print_items(items: list[ContentItem]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Title", no_wrap=True)
    table.add_column("Read", justify="right")
    table.add_column("")
    table.add_column("Preview", overflow="ellipsis")
    for item in items:
        table.add_row(
            str(item.id),
            item.type,
            item.title,
            str(item.read_count),
            "*" if item.favorite else "",
            preview(item.content),
        )
    console.print(table)


def _report_change(verb: str, item: ContentItem | None, item_id: int | float) -> None:
    if item is None:
        _stderr_console.print(f"[red]No item with id {item_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{verb}[/green] {item.title}")


@app.command(name="list")
def list_cmd(
    ctx: typer.Context,
    search: Annotated[str, typer.Option("--search", "-s", help="Match title or text.")] = "",
    type_filter: Annotated[
        str,
        typer.Option("--type", "-t", help="all, song, poem or story."),
    ] = "all",
    archived: Annotated[bool, typer.Option("--archived", help="Show the archive shelf.")] = False,
) -> None:
    """List the library, favorites first then least read."""

    async def action(coordinator: MutationCoordinator) -> list[ContentItem]:
        return list(coordinator.state.items)

    items = _run(ctx, action)
    if not items:
        _print_empty_prompt()
        return
    shown = sort_for_display(filter_items(items, search=search, type_filter=type_filter, archived=archived))
    if not shown:
        console.print("Nothing on the archive shelf." if archived else "Nothing found.")
        return
    _print_items(shown)


@app.command(name="stats")
def stats_cmd(ctx: typer.Context) -> None:
    """Show item counts by type."""

    async def action(coordinator: MutationCoordinator) -> list[ContentItem]:
        return list(coordinator.state.items)

    items = _run(ctx, action)
    if not items:
        _print_empty_prompt()
        return
    stats = library_stats(items)
    console.print(
        f"{stats.total} items • {stats.songs} songs • {stats.poems} poems • "
        f"{stats.stories} stories • {stats.archived} archived"
    )


@app.command(name="random")
def random_cmd(ctx: typer.Context) -> None:
    """Pick something at random from the active shelf."""

    async def action(coordinator: MutationCoordinator) -> ContentItem | None:
        return pick_random(coordinator.state.items)

    item = _run(ctx, action)
    if item is None:
        _print_empty_prompt()
        return
    console.print(f"[bold]{item.title}[/bold] ({item.type})")
    console.print(item.content, markup=False)


@app.command(name="read")
def read_cmd(ctx: typer.Context, item_id: Annotated[str, typer.Argument(help="Item id.")]) -> None:
    """Mark an item as read (or sung) once more."""
    target = _parse_id(item_id)

    async def action(coordinator: MutationCoordinator) -> ContentItem | None:
        return coordinator.mark_read(target)

    _report_change("Read", _run(ctx, action), target)


@app.command(name="favorite")
def favorite_cmd(ctx: typer.Context, item_id: Annotated[str, typer.Argument(help="Item id.")]) -> None:
    """Toggle an item's favorite star."""
    target = _parse_id(item_id)

    async def action(coordinator: MutationCoordinator) -> ContentItem | None:
        return coordinator.toggle_favorite(target)

    item = _run(ctx, action)
    _report_change("Starred" if item is not None and item.favorite else "Unstarred", item, target)


@app.command(name="archive")
def archive_cmd(ctx: typer.Context, item_id: Annotated[str, typer.Argument(help="Item id.")]) -> None:
    """Move an item to or from the archive shelf."""
    target = _parse_id(item_id)

    async def action(coordinator: MutationCoordinator) -> ContentItem | None:
        return coordinator.toggle_archive(target)

    item = _run(ctx, action)
    _report_change("Archived" if item is not None and item.archived else "Restored", item, target)


@app.command(name="edit")
def edit_cmd(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Item id.")],
    title: Annotated[Optional[str], typer.Option("--title", help="New title.")] = None,
    content: Annotated[Optional[str], typer.Option("--content", help="New text.")] = None,
) -> None:
    """Edit an item's title or text."""
    if title is None and content is None:
        raise typer.BadParameter("Pass --title and/or --content")
    target = _parse_id(item_id)

    async def action(coordinator: MutationCoordinator) -> ContentItem | None:
        return coordinator.update_item(target, title=title, content=content)

    _report_change("Updated", _run(ctx, action), target)


@app.command(name="add")
def add_cmd(
    ctx: typer.Context,
    title: Annotated[str, typer.Option("--title", help="Title.")],
    content: Annotated[str, typer.Option("--content", help="Lyrics or text.")],
    type_: Annotated[str, typer.Option("--type", "-t", help="song, poem or story.")] = "song",
) -> None:
    """Add a new item."""

    async def action(coordinator: MutationCoordinator) -> ContentItem:
        return await coordinator.add_item(title, type_, content)

    try:
        item = _run(ctx, action)
    except ValueError as exc:
        _stderr_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    where = "locally" if item.is_temporary else "on the server"
    console.print(f"[green]Added[/green] {item.title} {where}")


@app.command(name="import")
def import_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="JSON file to import.", exists=True, dir_okay=False)],
) -> None:
    """Import items from a JSON (or relaxed JSON) file."""
    data = path.read_bytes()

    async def action(coordinator: MutationCoordinator) -> list[ContentItem]:
        return await coordinator.import_text(decode_import(data))

    try:
        items = _run(ctx, action)
    except ImportFormatError as exc:
        _stderr_console.print(f"[red]Import failed: {exc}[/red]")
        raise typer.Exit(1) from exc
    console.print(f"[green]Library now has {len(items)} item(s)[/green]")


@app.command(name="report")
def report_cmd(ctx: typer.Context) -> None:
    """Show what happened during the last sync."""
    config: ShelfConfig = ctx.obj
    report = load_report(config.cache_dir)
    if report is None:
        console.print("No sync report yet.")
        return
    console.print(report.summary_text())
