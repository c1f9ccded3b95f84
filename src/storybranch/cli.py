"""storybranch CLI - typer application entry point.

Read-only inspection of a story database: list stories, show branch
statistics, and render a single page with its state panels.
"""

from __future__ import annotations

import asyncio
import atexit
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from storybranch.config import EngineConfig, EngineConfigError, load_engine_config
from storybranch.engine.story_engine import compute_story_stats
from storybranch.observability import (
    close_file_logging,
    configure_logging,
    get_log_file,
    get_logger,
)
from storybranch.persistence.sqlite_store import SqliteStoryRepository
from storybranch.views import (
    get_act_display_info,
    get_constraint_panel_data,
    get_keyed_entry_panel_data,
    get_open_thread_panel_data,
    get_threat_panel_data,
)

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="sb",
    help="storybranch: inspect branching interactive-fiction stories.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

_db_path: Path | None = None
_config_path: Path = Path(".")
_verbose: int = 0
_log_enabled: bool = False


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Write JSONL engine events to logs/engine.jsonl beside the database.",
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option(
            "--db",
            help="Story database file (default: from storybranch.yaml, else ./storybranch.db).",
            envvar="SB_DB",
        ),
    ] = None,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="storybranch.yaml file or the directory containing it.",
        ),
    ] = Path("."),
) -> None:
    """storybranch: inspect branching interactive-fiction stories."""
    global _db_path, _config_path, _verbose, _log_enabled
    _db_path = db
    _config_path = config
    _verbose = verbose
    _log_enabled = log

    # File logging waits until the database location is known
    configure_logging(verbosity=verbose)


def _configure_database_logging(db_path: Path) -> None:
    if not _log_enabled:
        return
    configure_logging(verbosity=_verbose, log_to_file=True, data_dir=db_path.parent)
    atexit.register(close_file_logging)
    console.print(f"[dim]Logging to {get_log_file()}[/dim]")


def _load_config() -> EngineConfig:
    try:
        return load_engine_config(_config_path)
    except EngineConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _open_repository(config: EngineConfig) -> SqliteStoryRepository:
    path = _db_path or Path(config.database)
    if not path.exists():
        console.print(f"[red]Error:[/red] Database not found: {path}")
        raise typer.Exit(1)
    _configure_database_logging(path)
    log.debug("database_opened", path=str(path))
    return SqliteStoryRepository(path)


@app.command()
def version() -> None:
    """Show version information."""
    from storybranch import __version__

    console.print(f"storybranch v{__version__}")


@app.command()
def stories() -> None:
    """List stored stories."""
    repository = _open_repository(_load_config())
    try:
        all_stories = asyncio.run(repository.list_stories())
    finally:
        repository.close()

    if not all_stories:
        console.print("[dim]No stories found.[/dim]")
        return

    table = Table(title="Stories")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Structure versions", justify="right")
    table.add_column("Created", style="dim")

    for story in all_stories:
        table.add_row(
            story.id,
            story.title,
            str(len(story.structure_versions)),
            story.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def stats(story_id: Annotated[str, typer.Argument(help="Story ID.")]) -> None:
    """Show page and branch statistics for a story."""
    repository = _open_repository(_load_config())
    try:
        story = asyncio.run(repository.load_story(story_id))
        if story is None:
            console.print(f"[red]Error:[/red] Story {story_id} not found")
            raise typer.Exit(1)
        pages = asyncio.run(repository.load_all_pages(story_id))
    finally:
        repository.close()

    result = compute_story_stats(pages.values())

    table = Table(title=f"Story: {story.title}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Pages", str(result.page_count))
    table.add_row("Explored branches", str(result.explored_branches))
    table.add_row("Total branches", str(result.total_branches))
    table.add_row("Ending reached", "yes" if result.has_ending else "no")
    console.print(table)


@app.command()
def page(
    story_id: Annotated[str, typer.Argument(help="Story ID.")],
    page_id: Annotated[int, typer.Argument(help="Page number.")],
) -> None:
    """Show one page: narrative, choices, structure position and state panels."""
    config = _load_config()
    repository = _open_repository(config)
    try:
        story = asyncio.run(repository.load_story(story_id))
        if story is None:
            console.print(f"[red]Error:[/red] Story {story_id} not found")
            raise typer.Exit(1)
        current = asyncio.run(repository.load_page(story_id, page_id))
        if current is None:
            console.print(f"[red]Error:[/red] Page {page_id} not found in story {story_id}")
            raise typer.Exit(1)
    finally:
        repository.close()

    act_info = get_act_display_info(story, current)
    title = f"Page {current.id}"
    if act_info is not None:
        title += f" | {act_info.display_string}"
    console.print(Panel(escape(current.narrative_text), title=escape(title), expand=False))

    if current.is_ending:
        console.print("[bold]THE END[/bold]")
    for index, choice in enumerate(current.choices):
        if choice.next_page_id is None:
            target = "[dim]unexplored[/dim]"
        else:
            target = f"-> page {choice.next_page_id}"
        console.print(f"  [cyan]{index}[/cyan]. {escape(choice.text)} {target}")

    limit = config.views.keyed_entry_panel_limit
    active = current.accumulated_active_state
    if active.current_location:
        console.print(f"\n[bold]Location:[/bold] {escape(active.current_location)}")

    panels = [
        (
            "Open threads",
            get_open_thread_panel_data(active.open_threads, config.views.open_thread_panel_limit),
        ),
        ("Threats", get_threat_panel_data(active.active_threats, limit)),
        ("Constraints", get_constraint_panel_data(active.active_constraints, limit)),
        ("Inventory", get_keyed_entry_panel_data(current.accumulated_inventory, limit)),
        ("Health", get_keyed_entry_panel_data(current.accumulated_health, limit)),
    ]
    for heading, data in panels:
        if not data.rows:
            continue
        console.print(f"\n[bold]{heading}[/bold]")
        for row in data.rows:
            console.print(f"  [dim]{row.id}[/dim] {escape(row.display_label)}")
        if data.overflow_summary:
            console.print(f"  [dim]{data.overflow_summary}[/dim]")
