"""Guardian Command Line Interface.

Inspection and maintenance commands for the review memory: history,
search, learned associations, rendered context and Engram export.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from guardian.core.config import get_settings
from guardian.core.errors import GuardianError
from guardian.core.logging import configure_logging
from guardian.export import engram
from guardian.memory.models import ReviewStatus
from guardian.memory.review_memory import ReviewMemory
from guardian.memory.store import build_match_query, split_search_text

app = typer.Typer(
    name="guardian",
    help="Guardian - associative memory for AI code review",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    ReviewStatus.PASSED: "green",
    ReviewStatus.FAILED: "red",
    ReviewStatus.ERROR: "yellow",
    ReviewStatus.UNKNOWN: "dim",
}


def _get_memory() -> ReviewMemory:
    """Get configured review memory instance."""
    return ReviewMemory.from_settings(get_settings())


def _format_timestamp(ts: Optional[datetime]) -> str:
    """Format timestamp for display."""
    if not ts:
        return "Never"
    return ts.strftime("%Y-%m-%d %H:%M")


def _status(status: ReviewStatus) -> str:
    style = STATUS_STYLES.get(status, "dim")
    return f"[{style}]{status.value}[/{style}]"


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
):
    """Guardian - associative memory for AI code review."""
    configure_logging(logging.DEBUG if verbose else None, quiet=quiet)


@app.command()
def stats():
    """Show review and association totals.

    Examples:
        guardian stats
    """
    try:
        memory = _get_memory()
        totals = memory.store.stats()

        summary = Table(show_header=False, box=None, padding=(0, 2))
        summary.add_column("Label", style="dim")
        summary.add_column("Value")
        summary.add_row("Total Reviews", str(totals.total_reviews))
        summary.add_row("Passed", str(totals.passed))
        summary.add_row("Failed", str(totals.failed))
        summary.add_row("Errors", str(totals.errors))
        summary.add_row("Projects", str(totals.projects))
        if totals.avg_duration_ms is not None:
            summary.add_row("Avg Duration", f"{totals.avg_duration_ms / 1000:.1f}s")

        console.print(Panel(summary, title="Review Statistics", border_style="blue"))

        projects = memory.store.stats_by_project()
        if projects:
            table = Table(show_header=True, title="By Project")
            table.add_column("Project", style="cyan")
            table.add_column("Reviews")
            table.add_column("Passed")
            table.add_column("Failed")
            table.add_column("Last Review", style="dim")
            for project in projects:
                table.add_row(
                    project.project_name,
                    str(project.review_count),
                    str(project.passed),
                    str(project.failed),
                    _format_timestamp(project.last_review),
                )
            console.print(table)

        associations = memory.memory.stats()
        if associations:
            console.print("[bold]Associations:[/bold]")
            for context, (count, avg_weight) in associations.items():
                console.print(f"  {context}: {count} (avg weight {avg_weight:.3f})")

    except GuardianError as e:
        _fail(e)


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of reviews to show"),
    status: Optional[ReviewStatus] = typer.Option(
        None, "--status", "-s", help="Only show reviews with this status"
    ),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
    review: Optional[int] = typer.Option(
        None, "--review", "-r", help="Show specific review details"
    ),
):
    """Display review history.

    Examples:
        guardian history                # Show last 10 reviews
        guardian history -s FAILED      # Show failed reviews
        guardian history -r 42          # Show review 42 with its insights
    """
    try:
        memory = _get_memory()

        # Show specific review
        if review is not None:
            found = memory.store.get_review(review)
            if not found:
                console.print(f"[yellow]Review #{review} not found.[/yellow]")
                raise typer.Exit(1)

            console.print(
                Panel(
                    f"Project: {found.project_name}\n"
                    f"Date: {_format_timestamp(found.created_at)}\n"
                    f"Status: {_status(found.status)}\n"
                    f"Files: {', '.join(found.files) or '-'}\n"
                    f"Provider: {found.provider}",
                    title=f"Review #{found.id}",
                    border_style="blue",
                )
            )
            for insight in memory.store.get_insights(found.id):
                tag = escape(f"[{insight.type.value}/{insight.severity.value}]")
                console.print(f"  • {tag} {escape(insight.what)}")
            return

        reviews = memory.store.get_reviews(limit=limit, status=status, project=project)
        if not reviews:
            console.print("[dim]No reviews yet.[/dim]")
            return

        table = Table(show_header=True, title="Review History")
        table.add_column("ID", style="cyan")
        table.add_column("Date", style="dim")
        table.add_column("Project")
        table.add_column("Status")
        table.add_column("Files")
        for item in reviews:
            table.add_row(
                str(item.id),
                _format_timestamp(item.created_at),
                item.project_name,
                _status(item.status),
                str(item.files_count),
            )
        console.print(table)
        console.print("[dim]Use 'guardian history -r <id>' to view a specific review.[/dim]")

    except GuardianError as e:
        _fail(e)


@app.command()
def search(
    query: str = typer.Argument(..., help="Words to search for"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
):
    """Full-text search over past reviews.

    Examples:
        guardian search "sql injection"
    """
    try:
        memory = _get_memory()
        match = build_match_query(split_search_text(query))
        results = memory.store.search_reviews(match, limit=limit, project=project)
        if not results:
            console.print(f"[dim]No reviews match '{escape(query)}'.[/dim]")
            return

        table = Table(show_header=True, title=f"Results for '{query}'")
        table.add_column("ID", style="cyan")
        table.add_column("Date", style="dim")
        table.add_column("Project")
        table.add_column("Status")
        table.add_column("Files")
        for found, _rank in results:
            table.add_row(
                str(found.id),
                _format_timestamp(found.created_at),
                found.project_name,
                _status(found.status),
                ", ".join(found.files[:3]),
            )
        console.print(table)

    except GuardianError as e:
        _fail(e)


@app.command()
def sessions(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of sessions to show"),
):
    """Display learning session history.

    Examples:
        guardian sessions
    """
    try:
        memory = _get_memory()
        history_rows = memory.session_history(limit)
        if not history_rows:
            console.print("[dim]No learning sessions yet.[/dim]")
            return

        table = Table(show_header=True, title="Session History")
        table.add_column("Session", style="cyan")
        table.add_column("Project")
        table.add_column("Started", style="dim")
        table.add_column("Ended", style="dim")
        table.add_column("Concepts")
        for summary in history_rows:
            table.add_row(
                summary.session_ref,
                summary.project or "-",
                _format_timestamp(summary.started_at),
                _format_timestamp(summary.ended_at) if summary.ended_at else "active",
                f"{summary.concept_count} concepts",
            )
        console.print(table)

    except GuardianError as e:
        _fail(e)


@app.command()
def related(
    concept: str = typer.Argument(..., help="Concept key, e.g. file:src/auth.ts"),
    min_weight: float = typer.Option(0.0, "--min-weight", "-w", help="Weight threshold"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results"),
):
    """Show concepts associated with a concept, strongest first.

    Examples:
        guardian related pattern:security
        guardian related file:src/auth.ts -w 0.2
    """
    try:
        memory = _get_memory()
        neighbours = memory.memory.query(concept, min_weight)
        if not neighbours:
            console.print(f"[dim]No associations for {concept}.[/dim]")
            return

        table = Table(show_header=True, title=f"Associated with {concept}")
        table.add_column("Concept", style="cyan")
        table.add_column("Context")
        table.add_column("Weight")
        for neighbour in neighbours[:limit]:
            table.add_row(neighbour.concept, neighbour.context.value, f"{neighbour.weight:.3f}")
        console.print(table)

    except GuardianError as e:
        _fail(e)


@app.command()
def context(
    files: list[str] = typer.Argument(..., help="Files of the change under review"),
    text: str = typer.Option("", "--text", "-t", help="Text describing the change"),
    limit: int = typer.Option(5, "--limit", "-n", help="Maximum past reviews"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
    records: bool = typer.Option(
        False, "--records", help="Print score|id|project|files records instead of context"
    ),
):
    """Show the past-review context a review of these files would receive.

    Examples:
        guardian context src/auth.ts -t "login token refresh"
        guardian context src/auth.ts --records
    """
    try:
        memory = _get_memory()
        if records:
            for ranked in memory.rank(files, text, limit=limit, project=project):
                typer.echo(ranked.to_record())
            return

        rendered = memory.build_context(files, text, limit=limit, project=project)
        if not rendered:
            console.print("[dim]No relevant past reviews.[/dim]")
            return
        typer.echo(rendered)

    except GuardianError as e:
        _fail(e)


@app.command()
def render():
    """Render score|id|project|files records from stdin as context.

    Examples:
        guardian context src/auth.ts --records | guardian render
    """
    try:
        memory = _get_memory()
        rendered = memory.disclosure.build_from_records(sys.stdin.read())
        if rendered:
            typer.echo(rendered)

    except GuardianError as e:
        _fail(e)


@app.command()
def decay(
    factor: float = typer.Option(0.9, "--factor", "-f", help="Multiplier in (0, 1]"),
    idle_days: float = typer.Option(
        30.0, "--idle-days", "-d", help="Only decay associations idle this long"
    ),
):
    """Weaken associations that have not been reinforced recently.

    Examples:
        guardian decay -f 0.8 -d 14
    """
    try:
        count = _get_memory().memory.decay(factor, idle_days)
        console.print(f"Decayed {count} associations.")
    except GuardianError as e:
        _fail(e)


@app.command()
def prune(
    min_weight: float = typer.Option(0.05, "--min-weight", "-w", help="Weight threshold"),
):
    """Delete associations weaker than a threshold.

    Examples:
        guardian prune -w 0.1
    """
    try:
        count = _get_memory().memory.prune(min_weight)
        console.print(f"Pruned {count} associations.")
    except GuardianError as e:
        _fail(e)


@app.command()
def cleanup(
    keep: int = typer.Option(100, "--keep", "-k", help="Reviews to keep per project"),
):
    """Delete old reviews, keeping the most recent per project.

    Examples:
        guardian cleanup -k 50
    """
    try:
        count = _get_memory().store.cleanup(keep)
        console.print(f"Removed {count} reviews.")
    except GuardianError as e:
        _fail(e)


@app.command()
def export(
    review: Optional[int] = typer.Option(None, "--review", "-r", help="Review to export"),
    days: int = typer.Option(7, "--days", "-d", help="Export reviews from the last N days"),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", help="Directory for export files (default: GGA_ENGRAM_OUTPUT_DIR)"
    ),
):
    """Export review insights as Engram observations.

    Examples:
        guardian export -r 42 -o ./engram
        guardian export -d 30
    """
    output_dir = output_dir or get_settings().engram_output_dir
    if output_dir is None:
        console.print("[red]Error: no output directory (use -o or GGA_ENGRAM_OUTPUT_DIR)[/red]")
        raise typer.Exit(1)

    try:
        memory = _get_memory()
        if review is not None:
            count = engram.export_review(memory.store, review, output_dir)
            console.print(f"Exported {count} insights from review #{review}.")
        else:
            count = engram.export_recent(memory.store, days, output_dir)
            console.print(f"Exported {count} insights from the last {days} days.")
    except GuardianError as e:
        _fail(e)


@app.command()
def check():
    """Check database integrity and the Engram bridge.

    Examples:
        guardian check
    """
    settings = get_settings()
    try:
        memory = _get_memory()
        integrity = memory.store.check()
    except GuardianError as e:
        _fail(e)

    if integrity == "ok":
        console.print(f"[green]Database OK:[/green] {settings.db_path}")
    else:
        console.print(f"[red]Database problem:[/red] {integrity}")
        raise typer.Exit(1)

    ready, message = engram.check(settings, memory.store)
    console.print(message if ready else f"[dim]{message}[/dim]")


if __name__ == "__main__":
    app()
