"""CLI interface for Opsboard."""

import asyncio
import logging
from itertools import zip_longest
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from opsboard import __version__
from opsboard.config import Settings, get_settings
from opsboard.errors import InvalidStage, OpsboardError, ValidationError
from opsboard.models.board import BOARDS, BoardDefinition
from opsboard.services.board import BoardController
from opsboard.services.dashboard import build_summary
from opsboard.services.gateway import RestGateway
from opsboard.services.live import FullReload
from opsboard.services.search import SearchStore

app = typer.Typer(
    name="opsboard",
    help="Operations dashboard: kanban boards and note search over a remote store.",
    no_args_is_help=True,
)
console = Console()


def load_settings() -> Settings:
    """Get settings or exit with a configuration error."""
    try:
        return get_settings()
    except Exception as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        console.print(
            "\nMake sure you have a .env file with "
            "OPSBOARD_STORE_URL and OPSBOARD_STORE_KEY."
        )
        raise typer.Exit(1)


def resolve_board(name: str, settings: Settings) -> BoardDefinition:
    """Built-in board by name, bound to the configured table."""
    tables = {
        "tasks": settings.tasks_table,
        "content": settings.content_table,
        "team": settings.team_table,
    }
    if name not in BOARDS:
        console.print(f"[red]Unknown board '{name}'. Choose from: {', '.join(BOARDS)}[/red]")
        raise typer.Exit(1)
    return BOARDS[name].with_table(tables[name])


def make_board(name: str) -> BoardController:
    settings = load_settings()
    return BoardController(RestGateway.from_settings(settings), resolve_board(name, settings))


def make_search_store() -> SearchStore:
    settings = load_settings()
    return SearchStore(
        RestGateway.from_settings(settings),
        table=settings.notes_table,
        page_size=settings.page_size,
        debounce_seconds=settings.debounce_seconds,
    )


def render_board(controller: BoardController) -> Table:
    """One column per stage, entity titles stacked beneath."""
    board = controller.board
    partition = controller.partition_by_stage()
    table = Table(title=f"{board.name.title()} Board")
    for stage in board.stages:
        table.add_column(f"{stage.label} ({len(partition[stage.id])})", style="cyan")
    columns = [
        [f"{e.get(board.title_field, '')} [dim]{e.id}[/dim]" for e in partition[stage]]
        for stage in board.stage_ids
    ]
    for row in zip_longest(*columns, fillvalue=""):
        table.add_row(*row)
    return table


def report_failures(controller: BoardController) -> None:
    for failure in controller.failures:
        console.print(f"[red]✗ {failure}[/red]")
    if controller.failures:
        raise typer.Exit(1)


class RenderAfterReload(FullReload):
    """Full reload followed by printing the board again."""

    async def on_change(self, controller, signal) -> None:
        await super().on_change(controller, signal)
        console.print(render_board(controller))


async def _load_or_exit(controller) -> None:
    try:
        await controller.load()
    except OpsboardError as e:
        console.print(f"[red]Error loading: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def board(name: str = typer.Argument(..., help="Board name: tasks, content or team")):
    """Show a board grouped by stage."""
    controller = make_board(name)

    async def run() -> None:
        await _load_or_exit(controller)

    asyncio.run(run())
    console.print(render_board(controller))


@app.command()
def show(
    name: str = typer.Argument(..., help="Board name"),
    entity_id: str = typer.Argument(..., help="Entity id"),
):
    """Show every field of one entity."""
    controller = make_board(name)

    async def run():
        try:
            return await controller.gateway.fetch_one(controller.board.table, entity_id)
        except OpsboardError as e:
            console.print(f"[red]Error fetching {entity_id}: {e}[/red]")
            raise typer.Exit(1)

    row = asyncio.run(run())
    if row is None:
        console.print(f"[yellow]No entity {entity_id} on {name}.[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"{name} / {entity_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in row.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def move(
    name: str = typer.Argument(..., help="Board name"),
    entity_id: str = typer.Argument(..., help="Entity id"),
    stage: str = typer.Argument(..., help="Target stage id"),
):
    """Move an entity to another stage."""
    controller = make_board(name)

    async def run() -> None:
        await _load_or_exit(controller)
        try:
            task = controller.move_stage(entity_id, stage)
        except InvalidStage as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        if task is None:
            console.print(f"[yellow]No entity {entity_id} on {name}.[/yellow]")
            raise typer.Exit(1)
        await task

    asyncio.run(run())
    report_failures(controller)
    console.print(f"[green]✓[/green] {entity_id} → {controller.board.label_for(stage)}")


@app.command()
def step(
    name: str = typer.Argument(..., help="Board name"),
    entity_id: str = typer.Argument(..., help="Entity id"),
    direction: str = typer.Argument("next", help="next or prev"),
):
    """Move an entity to the neighbouring stage."""
    if direction not in ("next", "prev"):
        console.print("[red]Direction must be 'next' or 'prev'.[/red]")
        raise typer.Exit(1)
    controller = make_board(name)

    async def run() -> None:
        await _load_or_exit(controller)
        task = controller.move_relative(entity_id, 1 if direction == "next" else -1)
        if task is not None:
            await task

    asyncio.run(run())
    report_failures(controller)
    entity = controller.get(entity_id)
    if entity is None:
        console.print(f"[yellow]No entity {entity_id} on {name}.[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {entity_id} is in {controller.board.label_for(entity.stage)}")


@app.command()
def add(
    name: str = typer.Argument(..., help="Board name"),
    title: str = typer.Argument(..., help="Title (or member name on the team board)"),
    description: str = typer.Option("", "--description", "-d", help="Optional description"),
):
    """Add an entity in the board's initial stage."""
    controller = make_board(name)
    payload = {controller.board.title_field: title}
    if description:
        payload["description"] = description

    async def run():
        await _load_or_exit(controller)
        try:
            return await controller.add_entity(payload)
        except ValidationError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        except OpsboardError as e:
            console.print(f"[red]Error adding: {e}[/red]")
            raise typer.Exit(1)

    created = asyncio.run(run())
    console.print(f"[green]✓[/green] Added {created.get('id', '')}")
    console.print(render_board(controller))


@app.command()
def remove(
    name: str = typer.Argument(..., help="Board name"),
    entity_id: str = typer.Argument(..., help="Entity id"),
):
    """Delete an entity."""
    controller = make_board(name)

    async def run() -> None:
        await _load_or_exit(controller)
        task = controller.delete_entity(entity_id)
        if task is None:
            console.print(f"[yellow]No entity {entity_id} on {name}.[/yellow]")
            raise typer.Exit(1)
        await task

    asyncio.run(run())
    report_failures(controller)
    console.print(f"[green]✓[/green] Deleted {entity_id}")


@app.command()
def watch(name: str = typer.Argument(..., help="Board name")):
    """Follow a board live, re-rendering after every change (Ctrl-C to stop)."""
    controller = make_board(name)
    controller.strategy = RenderAfterReload()

    async def run() -> None:
        await _load_or_exit(controller)
        console.print(render_board(controller))
        controller.attach()
        console.print(f"[dim]Watching {controller.board.table}...[/dim]")
        try:
            await asyncio.Event().wait()
        finally:
            await controller.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


@app.command()
def notes(
    query: str = typer.Argument("", help="Case-insensitive text to search for"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Only notes with this tag"),
    all_pages: bool = typer.Option(False, "--all", "-a", help="Fetch every page"),
):
    """Search notes by text and tag."""
    store = make_search_store()

    async def run() -> None:
        try:
            await store.apply_filter(query, tag)
            while all_pages and store.has_more:
                if not await store.load_more():
                    break
        except OpsboardError as e:
            console.print(f"[red]Error searching notes: {e}[/red]")
            raise typer.Exit(1)

    asyncio.run(run())

    window = store.window
    table = Table(title=f"Notes ({window.fetched} of {window.total})")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Tags", style="magenta")
    table.add_column("Updated", style="green")
    for note in window.items:
        updated = note.updated_at.strftime("%Y-%m-%d") if note.updated_at else ""
        table.add_row(note.id, note.title, ", ".join(sorted(note.tags)), updated)
    console.print(table)
    if window.has_more:
        console.print("[dim]More results available; use --all to fetch every page.[/dim]")


@app.command()
def tags():
    """List every tag used by any note."""
    store = make_search_store()

    async def run():
        try:
            return await store.refresh_tags()
        except OpsboardError as e:
            console.print(f"[red]Error fetching tags: {e}[/red]")
            raise typer.Exit(1)

    all_tags = asyncio.run(run())
    if not all_tags:
        console.print("[yellow]No tags yet.[/yellow]")
        return
    console.print(" ".join(f"[magenta]#{t}[/magenta]" for t in all_tags))


@app.command("note-add")
def note_add(
    title: str = typer.Argument(..., help="Note title"),
    content: str = typer.Argument(..., help="Note body"),
    tag_list: str = typer.Option("", "--tags", help="Comma separated tags"),
    source: str = typer.Option("manual", "--source", "-s", help="Where the note came from"),
):
    """Add a note."""
    store = make_search_store()

    async def run():
        try:
            return await store.add_entry(title, content, tags=tag_list, source=source)
        except OpsboardError as e:
            console.print(f"[red]Error adding note: {e}[/red]")
            raise typer.Exit(1)

    note = asyncio.run(run())
    console.print(f"[green]✓[/green] Added note {note.id}: {note.title}")


@app.command("note-remove")
def note_remove(entry_id: str = typer.Argument(..., help="Note id")):
    """Delete a note."""
    store = make_search_store()

    async def run() -> bool:
        try:
            await store.refresh()
        except OpsboardError as e:
            console.print(f"[red]Error loading notes: {e}[/red]")
            raise typer.Exit(1)
        task = store.delete_entry(entry_id)
        return await task if task is not None else False

    if not asyncio.run(run()):
        for failure in store.failures:
            console.print(f"[red]✗ {failure}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Deleted note {entry_id}")


@app.command()
def summary():
    """Show dashboard headline figures."""
    settings = load_settings()
    gateway = RestGateway.from_settings(settings)

    try:
        result = asyncio.run(
            build_summary(
                gateway,
                tasks_board=resolve_board("tasks", settings),
                team_board=resolve_board("team", settings),
                notes_table=settings.notes_table,
            )
        )
    except OpsboardError as e:
        console.print(f"[red]Error building summary: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Opsboard Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for label, value in result.as_rows():
        table.add_row(label, str(value))
    console.print(table)

    if result.recent_notes:
        console.print("\n[bold]Recent notes:[/bold]")
        for note in result.recent_notes:
            console.print(f"  • {note.title}")


@app.command()
def config():
    """Show current configuration."""
    settings = load_settings()

    table = Table(title="Opsboard Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    key_masked = settings.store_key[:10] + "..." if len(settings.store_key) > 10 else "***"

    table.add_row("Store URL", settings.store_url)
    table.add_row("Store Key", key_masked)
    table.add_row("Tasks Table", settings.tasks_table)
    table.add_row("Content Table", settings.content_table)
    table.add_row("Team Table", settings.team_table)
    table.add_row("Notes Table", settings.notes_table)
    table.add_row("Page Size", str(settings.page_size))
    table.add_row("Debounce", f"{settings.debounce_seconds}s")
    table.add_row("Poll Interval", f"{settings.poll_interval_seconds}s")

    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"Opsboard v{__version__}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log requests and reconciliations"),
):
    """
    Opsboard - operations dashboard client.

    Kanban boards for tasks, content and team status, plus a tagged
    note store, all kept in sync with a remote store.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


if __name__ == "__main__":
    app()
