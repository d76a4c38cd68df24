"""Schoolday CLI.

Local tooling around the scheduling engine: create tables, try a pasted
date list, run the auto-scheduler for a curriculum and write the iCalendar
feed to a file. Uses the same services as the HTTP API.
"""

import os
import sys
from datetime import date
from pathlib import Path

import typer
import uvicorn
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

# Handle both direct execution (python cli/cli.py) and module execution (python -m cli.cli)
try:
    import cli.bootstrap  # noqa: F401
except ImportError:
    _project_root = Path(__file__).parent.parent
    if str(_project_root) not in sys.path:
        sys.path.insert(0, str(_project_root))

from schoolday.calendar.dates import WEEKDAY_NAMES, format_date_key, parse_date_key
from schoolday.calendar.recurrence import preview_imported_dates
from schoolday.config.settings import settings
from schoolday.core.errors import NoValidDatesError
from schoolday.core.logger import setup_logger
from schoolday.db.models import Base
from schoolday.db.session import check_connection, get_engine, get_session
from schoolday.export.ical import collect_export_rows, serialize_calendar
from schoolday.scheduling.auto_scheduler import ScheduleOutcome, auto_schedule, clear_schedule, reschedule_all

# Initialize Rich console for output
console = Console()

# Initialize Typer app
app = typer.Typer(
    name="schoolday",
    help="Schoolday CLI - school calendar and lesson scheduling",
    add_completion=False,
)

DEFAULT_HOST = os.getenv("SERVER_HOST", "127.0.0.1")


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    setup_logger(level="DEBUG" if debug else None)


def _parse_today(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return parse_date_key(value)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _print_outcome(outcome: ScheduleOutcome) -> None:
    if not outcome.ok:
        console.print(Panel(Text(outcome.message or "Scheduling failed", style="bold red"), subtitle=str(outcome.error), border_style="red"))
        raise typer.Exit(1)

    subtitle = f"{outcome.remaining_count} lessons did not fit in the school year" if outcome.remaining_count else None
    console.print(
        Panel(
            Text(f"Scheduled {outcome.scheduled_count} lessons", style="bold green"),
            subtitle=subtitle,
            border_style="yellow" if outcome.remaining_count else "green",
        )
    )


@app.command()
def server(
    host: str = typer.Option(DEFAULT_HOST, "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Run the FastAPI server."""
    logger.info(f"Starting FastAPI server on {host}:{port} (reload={reload})")
    uvicorn.run("schoolday.main:app", host=host, port=port, reload=reload)


@app.command()
def check_db() -> None:
    """Verify the configured database is reachable."""
    try:
        check_connection()
    except Exception as e:
        console.print(Panel(Text("Database connection failed", style="bold red"), subtitle=str(e), border_style="red"))
        raise typer.Exit(1) from e
    console.print(Panel(Text("Database connection OK", style="bold green"), subtitle=settings.database_url, border_style="green"))


@app.command()
def init_db() -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=get_engine())
    console.print("[green]Database tables created successfully.[/green]")


@app.command()
def preview_dates(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File with one date per line"),
) -> None:
    """Infer the recurrence behind a list of dates without storing anything."""
    try:
        imported = preview_imported_dates(file.read_text(encoding="utf-8"))
    except NoValidDatesError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    rule = imported.rule
    table = Table(title=f"Inferred rule: {rule.type}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    anchor = WEEKDAY_NAMES[rule.anchor_weekday] if rule.anchor_weekday is not None else "-"
    table.add_row("Anchor weekday", anchor)
    table.add_row("Start date", format_date_key(rule.start_date))
    table.add_row("End date", format_date_key(rule.end_date) if rule.end_date else "-")
    table.add_row("Dates", str(len(imported.dates)))
    table.add_row("Implied exceptions", ", ".join(format_date_key(day) for day in imported.implied_exceptions) or "-")
    console.print(table)


@app.command("auto-schedule")
def auto_schedule_cmd(
    curriculum_id: str = typer.Option(..., "--curriculum-id", help="Curriculum to schedule"),
    learner_id: str = typer.Option(..., "--learner-id", help="Learner whose assignment provides the calendar"),
    today: str | None = typer.Option(None, "--today", help="Start no earlier than this date (YYYY-MM-DD)"),
) -> None:
    """Give every unscheduled lesson of a curriculum a school date."""
    start = _parse_today(today)
    try:
        with get_session() as session:
            outcome = auto_schedule(session, curriculum_id, learner_id, today=start)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    _print_outcome(outcome)


@app.command()
def reschedule(
    curriculum_id: str = typer.Option(..., "--curriculum-id", help="Curriculum to reschedule"),
    learner_id: str = typer.Option(..., "--learner-id", help="Learner whose assignment provides the calendar"),
    today: str | None = typer.Option(None, "--today", help="Start no earlier than this date (YYYY-MM-DD)"),
) -> None:
    """Clear every non-completed lesson date and schedule again."""
    start = _parse_today(today)
    try:
        with get_session() as session:
            outcome = reschedule_all(session, curriculum_id, learner_id, today=start)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    _print_outcome(outcome)


@app.command("clear-schedule")
def clear_schedule_cmd(
    curriculum_id: str = typer.Option(..., "--curriculum-id", help="Curriculum to clear"),
    confirm: bool = typer.Option(False, "--confirm", help="Confirm clearing (required for safety)"),
) -> None:
    """Remove planned dates from all non-completed lessons of a curriculum."""
    if not confirm:
        console.print("[red]Error:[/red] --confirm flag is required for safety", style="bold red")
        console.print("Usage: clear-schedule --curriculum-id <id> --confirm")
        raise typer.Exit(1)

    with get_session() as session:
        cleared = clear_schedule(session, curriculum_id)
    console.print(f"[green]Cleared {cleared} planned dates[/green]")


@app.command()
def export_ical(
    output: Path = typer.Option(Path("schoolday.ics"), "--output", "-o", help="File to write"),
    learner_id: str | None = typer.Option(None, "--learner-id", help="Only this learner's lessons and events"),
) -> None:
    """Write upcoming lessons and external events to an .ics file."""
    with get_session() as session:
        lessons, events = collect_export_rows(session, learner_id=learner_id)
    output.write_text(serialize_calendar(lessons, events), encoding="utf-8", newline="")
    console.print(f"[green]Wrote {len(lessons)} lessons and {len(events)} events to {output}[/green]")

