"""
CLI Interface
=============
Command-line interface for lookups, cache builds and the schedule.

Usage:
    solutionbot answer 5-10 [--source NAME]
    solutionbot build-cache [--force] [--source NAME]
    solutionbot sources
    solutionbot info <pdf_path>
    solutionbot schedule list [--include-past] [--page N]
    solutionbot schedule add quiz "Statics" 2025-11-03 [-d "Ch. 5"]
    solutionbot schedule remove <id or index>
"""

from __future__ import annotations

import getpass
import os
import sys
import zlib

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .cache_builder import CacheBuilder
from .config import AppContext, init_context, setup_logging
from .engine import AnswerEngine
from .errors import SolutionBotError
from .models import DocumentStatus, SchedulePage
from .rasterizer import configure_render_throttle
from .schedule import ScheduleStore, build_page

console = Console()


def _local_user_id() -> int:
    """Stable numeric id for the person at the terminal."""
    return zlib.crc32(getpass.getuser().encode("utf-8"))


def _fail(message: str):
    console.print(f"[red]Error:[/] {escape(message)}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="solutionbot")
@click.option(
    "--home",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding sources.json, schedule.json and cache/ "
         "(defaults to $SOLUTIONBOT_HOME or the project root)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.pass_context
def cli(ctx: click.Context, home: str, log_level: str, log_file: str):
    """SolutionBot: textbook problem pages and class schedule."""
    setup_logging(log_level, log_file)
    ctx.obj = init_context(home)


@cli.command()
@click.argument("problem")
@click.option("--source", "-s", default=None, help="Source name or PDF path")
@click.option("--dpi", default=None, type=click.IntRange(min=1), help="Render resolution")
@click.option("--quality", default=None, type=click.IntRange(1, 100), help="JPEG quality")
@click.option(
    "--max-width", default=None, type=click.IntRange(min=1),
    help="Maximum output width (pixels)",
)
@click.option(
    "--max-height", default=None, type=click.IntRange(min=1),
    help="Maximum output height (pixels)",
)
@click.option(
    "--no-flatten",
    is_flag=True,
    default=False,
    help="Keep the raw page background instead of flattening onto white",
)
@click.pass_obj
def answer(
    context: AppContext,
    problem: str,
    source: str,
    dpi: int,
    quality: int,
    max_width: int,
    max_height: int,
    no_flatten: bool,
):
    """Render the first page that mentions PROBLEM (e.g. 5-10)."""
    options = context.render_options.with_overrides(
        dpi=dpi,
        jpeg_quality=quality,
        max_width=max_width,
        max_height=max_height,
        force_white_background=False if no_flatten else None,
    )

    try:
        with console.status(f"Looking up {problem}..."):
            result = AnswerEngine(context).lookup(source, problem, options=options)
    except SolutionBotError as e:
        _fail(str(e))

    if not result.found:
        console.print(
            f"[yellow]Couldn't find '{result.token.display}' "
            f"in '{result.source_name}'.[/]"
        )
        sys.exit(2)

    origin = "cache" if result.from_cache else "rendered"
    console.print(
        f"[green]✓[/] {result.token.display} is on page "
        f"[bold]{result.page_number}[/] of '{result.source_name}' ({origin})"
    )
    click.echo(result.artifact_path)


@cli.command("build-cache")
@click.option("--force", is_flag=True, default=False, help="Re-render cached pages")
@click.option("--source", "-s", default=None, help="Only build this source")
@click.option(
    "--parallel", "-j",
    default=1,
    type=click.IntRange(min=1),
    help="Concurrent renders allowed (1 = strictly serial)",
)
@click.pass_obj
def build_cache(context: AppContext, force: bool, source: str, parallel: int):
    """Pre-render every problem of every configured source."""
    configure_render_throttle(parallel)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Cache Builder v{__version__}[/]\n"
            f"[dim]Cache: {context.cache_dir}[/]",
            border_style="cyan",
        )
    )
    console.print()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            tasks: dict[str, int] = {}

            def on_progress(name: str, done: int, total: int):
                if name not in tasks:
                    tasks[name] = progress.add_task(f"Rendering: {name}", total=total)
                progress.update(tasks[name], completed=done)

            reports = CacheBuilder(context).build(
                force=force,
                only_source=source,
                progress_callback=on_progress,
            )
    except SolutionBotError as e:
        _fail(f"Cache build failed: {e}")

    _display_cache_summary(reports)


@cli.command()
@click.pass_obj
def sources(context: AppContext):
    """List configured sources."""
    try:
        cfg = context.sources
    except SolutionBotError as e:
        _fail(str(e))

    table = Table(title="Sources", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("PDF")
    table.add_column("Status", justify="center")

    for name in cfg.names():
        path = cfg.sources[name]
        label = f"{name} (default)" if name.lower() == cfg.default_source.lower() else name
        status = "[green]✓[/]" if os.path.exists(path) else "[red]✗ missing[/]"
        table.add_row(label, path, status)

    console.print(table)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
def info(pdf_path: str):
    """Display PDF file information."""
    from .search import open_document

    try:
        doc = open_document(pdf_path)
    except SolutionBotError as e:
        _fail(str(e))

    with doc:
        console.print()
        table = Table(title="PDF Information", border_style="cyan")
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("File", os.path.basename(pdf_path))
        table.add_row("Pages", str(doc.page_count))
        table.add_row(
            "File Size",
            f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
        )
        if doc.page_count:
            rect = doc[0].rect
            table.add_row("Page Size", f"{rect.width:.0f} x {rect.height:.0f} pt")

        metadata = doc.metadata or {}
        for key in ["title", "author", "subject", "creator", "producer"]:
            val = metadata.get(key, "")
            if val:
                table.add_row(key.title(), val)

    console.print(table)
    console.print()


# ─── Schedule ─────────────────────────────────────────────────────────────────


@cli.group()
def schedule():
    """Manage the test/quiz schedule."""
    pass


@schedule.command("list")
@click.option("--include-past", is_flag=True, default=False, help="Show past items too")
@click.option("--page", default=1, type=int, help="Page to show (1-indexed)")
@click.pass_obj
def schedule_list(context: AppContext, include_past: bool, page: int):
    """Show upcoming tests and quizzes."""
    try:
        items = ScheduleStore(context.schedule_path).load()
    except SolutionBotError as e:
        _fail(f"Failed to build schedule: {e}")

    view = build_page(items, include_past, page - 1, _local_user_id())
    _display_schedule(view)


@schedule.command("add")
@click.argument("kind", type=click.Choice(["test", "quiz"], case_sensitive=False))
@click.argument("title")
@click.argument("date")
@click.option("--description", "-d", default=None, help="Topics covered")
@click.pass_obj
def schedule_add(context: AppContext, kind: str, title: str, date: str, description: str):
    """Add a test/quiz on DATE (YYYY-MM-DD)."""
    try:
        item = ScheduleStore(context.schedule_path).add(kind, title, date, description)
    except SolutionBotError as e:
        _fail(str(e))

    console.print(
        "[green]✓[/] " + escape(
            f"Added [{item.kind.label}] {item.date.strftime('%m/%d/%Y')} — "
            f"{item.title} (id: {item.id})"
        ),
        highlight=False,
    )


@schedule.command("remove")
@click.argument("id_or_index")
@click.pass_obj
def schedule_remove(context: AppContext, id_or_index: str):
    """Remove an item by id or by its number in the full list."""
    try:
        item = ScheduleStore(context.schedule_path).remove(id_or_index)
    except SolutionBotError as e:
        _fail(str(e))

    console.print(
        f"Removed [{item.kind.label}] {item.date.strftime('%m/%d/%Y')} — "
        f"{item.title} (id: {item.id})",
        highlight=False,
        markup=False,
    )


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_schedule(view: SchedulePage):
    console.print()
    table = Table(title=view.title, caption=view.description, border_style="blue")
    table.add_column("Item", style="bold")
    table.add_column("Details")

    for entry in view.entries:
        table.add_row(escape(entry.name), escape(entry.value))

    console.print(table)
    if view.footer:
        console.print(f"[dim]{view.footer}[/]", highlight=False)
    console.print()


def _display_cache_summary(reports):
    """Display cache build summary."""
    console.print()

    table = Table(title="Cache Build Summary", border_style="cyan")
    table.add_column("Source", style="bold")
    table.add_column("Rendered", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Status", justify="center")

    icons = {
        DocumentStatus.BUILT: "[green]✓[/]",
        DocumentStatus.EMPTY: "[yellow]⚠ no problems[/]",
        DocumentStatus.MISSING: "[red]✗ missing[/]",
        DocumentStatus.FAILED: "[red]✗ FAILED[/]",
    }

    for r in reports:
        status = icons[r.status]
        if r.status == DocumentStatus.BUILT and r.failures:
            status = "[yellow]⚠[/]"
        table.add_row(
            r.source,
            str(r.rendered),
            str(r.skipped),
            str(r.total),
            str(len(r.failures)),
            status,
        )

    console.print(table)
    console.print()

    total_failures = sum(len(r.failures) for r in reports)
    console.print(
        f"[bold]Total:[/] {sum(r.rendered for r in reports)} rendered, "
        f"{sum(r.skipped for r in reports)} skipped, {total_failures} failures "
        f"across {len(reports)} sources"
    )
    console.print()


# ─── Entry point (for python -m solutionbot.cli) ──────────────────────────────


if __name__ == "__main__":
    cli()
