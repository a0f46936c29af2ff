"""
Rate Change Notification Commands

Commands for the tracking table, the year view, and running the
mark sent / not applicable / undo actions and the attorney re-sync from
the terminal.
"""
import asyncio
import json
import logging
import sys
from typing import List, Optional, Tuple

import click
import psycopg2
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from config import get_config
from errors import RateChangeError
from progress import CompleteEvent, ErrorEvent, MatterCompleteEvent, ProgressEvent
from rate_changes import RateChangeService


console = Console()
logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def parse_matter_options(matters: Tuple[str, ...]) -> Tuple[List[str], List[str]]:
    """Split "--matter ID[:DISPLAY_NUMBER]" values into parallel id/label lists."""
    matter_ids, display_numbers = [], []
    for value in matters:
        matter_id, _, display_number = value.partition(":")
        if not matter_id.strip():
            raise click.BadParameter(f"missing matter id in {value!r}", param_hint="--matter")
        matter_ids.append(matter_id.strip())
        display_numbers.append(display_number.strip() or matter_id.strip())
    return matter_ids, display_numbers


async def _drive(make_events) -> Optional[CompleteEvent]:
    """Run one streaming action, rendering a progress bar as matters complete."""
    service = RateChangeService.from_config(get_config())
    complete = None
    try:
        events = make_events(service)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=None)
            async for event in events:
                if isinstance(event, ProgressEvent):
                    progress.update(task, description=event.message, total=event.total or None)
                elif isinstance(event, MatterCompleteEvent):
                    mark = "[green]ok[/green]" if event.success else "[red]failed[/red]"
                    if event.skipped:
                        mark = "[yellow]skipped[/yellow]"
                    progress.console.print(f"  {event.display_number}: {mark}")
                    progress.update(task, completed=event.index + 1)
                elif isinstance(event, ErrorEvent):
                    progress.console.print(f"[red]{event.message}[/red]")
                elif isinstance(event, CompleteEvent):
                    complete = event
    finally:
        await service.aclose()
    return complete


def _report(complete: Optional[CompleteEvent]) -> None:
    if complete is None:
        console.print("[yellow]Stopped before completion[/yellow]")
        sys.exit(1)

    updates = complete.clio_updates
    style = "green" if complete.success else "red"
    console.print(f"\n[{style}]Status: {complete.status or 'unchanged'}[/{style}]")
    console.print(
        f"Clio: {updates.get('success', 0)} updated, "
        f"{updates.get('skipped', 0)} skipped, {updates.get('failed', 0)} failed"
    )
    for error in updates.get("errors") or []:
        if isinstance(error, dict):
            error = f"{error['display_number']}: {error['error']}"
        console.print(f"  [red]{error}[/red]")
    if not complete.success:
        sys.exit(1)


def _database_error(e: psycopg2.Error) -> None:
    logger.debug("Database error", exc_info=e)
    console.print(f"[red]Database error: {str(e).strip() or type(e).__name__}[/red]")
    sys.exit(1)


def _run_action(make_events) -> None:
    try:
        complete = asyncio.run(_drive(make_events))
    except RateChangeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    _report(complete)


# ============================================================================
# Setup / Server
# ============================================================================

@click.command("init-db")
def init_db():
    """Create the rate change notification table."""
    from db import ensure_all_tables

    try:
        ensure_all_tables()
    except RateChangeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except psycopg2.Error as e:
        _database_error(e)
    console.print("[green]Rate change notification table ready[/green]")


@click.command("serve")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Launch the rate change API server."""
    from dashboard import config as dashboard_config
    from dashboard.app import run_server

    host = host or dashboard_config.HOST
    port = port or dashboard_config.PORT
    console.print(f"\n[bold]Starting {dashboard_config.APP_NAME}...[/bold]")
    console.print(f"API at [link=http://{host}:{port}/docs]http://{host}:{port}/docs[/link]\n")

    run_server(host=host, port=port, reload=reload)


# ============================================================================
# Clio / Year View
# ============================================================================

@click.command("custom-fields")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def custom_fields(json_output: bool):
    """List Clio matter custom fields and suggest the rate change date field."""

    async def fetch():
        service = RateChangeService.from_config(get_config())
        try:
            return await service.list_custom_fields()
        finally:
            await service.aclose()

    try:
        fields = asyncio.run(fetch())
    except RateChangeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if json_output:
        console.print(json.dumps(fields, indent=2, default=str))
        return

    table = Table(title="Rate/Change Custom Fields")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Type")
    for field in fields["rate_change_fields"]:
        table.add_row(str(field.get("id")), field.get("name") or "", field.get("field_type") or "")
    console.print(table)

    suggested = fields["suggested_field"]
    if suggested:
        console.print(f"\nSuggested: [bold]{suggested['name']}[/bold] (set CLIO_RATE_CHANGE_FIELD_ID={suggested['id']})")
    else:
        console.print("\n[yellow]No rate change date field found[/yellow]")


@click.command("year-view")
@click.argument("year", type=int)
@click.option("--status", type=click.Choice(["pending", "sent", "not_applicable"]), help="Only clients in this status")
@click.option("--solicitor", help="Only clients with this responsible solicitor")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def year_view(year: int, status: Optional[str], solicitor: Optional[str], json_output: bool):
    """Show clients with open matters and their notification status."""
    from dashboard.models import DashboardData

    try:
        view = DashboardData(get_config()).get_year_view(year, status, solicitor)
    except RateChangeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except psycopg2.Error as e:
        _database_error(e)

    if json_output:
        console.print(json.dumps(view, indent=2, default=str))
        return

    stats = view["stats"]
    table = Table(title=f"Rate Change Notifications {year}")
    table.add_column("Client ID")
    table.add_column("Client")
    table.add_column("Status")
    table.add_column("Open", justify="right")
    table.add_column("Solicitors")
    table.add_column("Sent")

    status_styles = {"pending": "yellow", "sent": "green", "not_applicable": "dim"}
    for client in view["clients"]:
        style = status_styles.get(client["status"], "white")
        table.add_row(
            client["client_id"],
            client["client_name"] or "",
            f"[{style}]{client['status']}[/{style}]",
            str(len(client["open_matters"])),
            ", ".join(client["responsible_solicitors"]),
            str(client["sent_date"] or ""),
        )

    console.print(table)
    console.print(
        f"\nTotal: {stats['total']}  Pending: {stats['pending']}  "
        f"Sent: {stats['sent']}  N/A: {stats['not_applicable']}"
    )


# ============================================================================
# Actions
# ============================================================================

matter_option = click.option(
    "--matter", "matters", multiple=True,
    help="Clio matter as ID[:DISPLAY_NUMBER]; repeat for each matter",
)


@click.command("mark-sent")
@click.argument("year", type=int)
@click.argument("client_id")
@matter_option
@click.option("--sent-by", help="Initials of whoever sent the notice")
@click.option("--sent-date", help="Date sent (YYYY-MM-DD), defaults to today")
def mark_sent(year: int, client_id: str, matters: Tuple[str, ...], sent_by: Optional[str], sent_date: Optional[str]):
    """Mark a client's rate change notice as sent."""
    matter_ids, display_numbers = parse_matter_options(matters)
    _run_action(lambda service: service.mark_sent_stream(
        year, client_id, matter_ids, display_numbers, sent_by=sent_by, sent_date=sent_date,
    ))


@click.command("mark-na")
@click.argument("year", type=int)
@click.argument("client_id")
@matter_option
@click.option("--reason", required=True, help="Why no notice is needed")
@click.option("--notes", help="Additional notes")
@click.option("--marked-by", help="Initials of whoever made the call")
def mark_na(year: int, client_id: str, matters: Tuple[str, ...], reason: str, notes: Optional[str], marked_by: Optional[str]):
    """Mark a client as not needing a rate change notice."""
    matter_ids, display_numbers = parse_matter_options(matters)
    _run_action(lambda service: service.mark_not_applicable_stream(
        year, client_id, reason, matter_ids, display_numbers, na_notes=notes, marked_by=marked_by,
    ))


@click.command("undo")
@click.argument("year", type=int)
@click.argument("client_id")
@matter_option
def undo(year: int, client_id: str, matters: Tuple[str, ...]):
    """Return a client to pending and clear the Clio field."""
    matter_ids, display_numbers = parse_matter_options(matters)
    to_clear = [
        {"matter_id": matter_id, "display_number": display_number}
        for matter_id, display_number in zip(matter_ids, display_numbers)
    ]
    _run_action(lambda service: service.undo_stream(year, client_id, to_clear))



@click.command("sync-attorneys")
@click.argument("display_numbers", nargs=-1, required=True)
def sync_attorneys(display_numbers: Tuple[str, ...]):
    """Copy responsible/originating attorneys from Clio into the practice database."""
    _run_action(lambda service: service.sync_attorneys_stream(list(display_numbers)))


COMMANDS = [init_db, serve, custom_fields, year_view, mark_sent, mark_na, undo, sync_attorneys]
