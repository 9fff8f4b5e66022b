"""Command-line interface for inspecting and maintaining the local event store.

A debugging and maintenance aid; it's not part of the library interface
(see :class:`calsync_store.repository.LocalEventRepository` for that).
"""

import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .config import Settings, create_example_config, load_settings
from .exceptions import InvalidResourceError, LocalStorageError
from .ical import events_from_ical, prodid, to_calendar
from .models import EventEntity
from .repository import LocalEventRepository
from .storage.database import SqlEventStore
from .timeutils import TimeZoneRegistry, to_temporal_value

console = Console()
logger = structlog.get_logger()


def setup_logging(level: str, debug: bool = False) -> None:
    """Set up structured logging."""
    import logging

    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def open_repository(settings: Settings, calendar_id: int) -> LocalEventRepository:
    store = SqlEventStore(settings)
    store.init_db()
    return LocalEventRepository(store, settings, calendar_id)


def format_time(millis: Optional[int], tz_id: Optional[str], all_day: bool, registry: TimeZoneRegistry) -> str:
    if millis is None:
        return "-"
    value = to_temporal_value(millis, tz_id, all_day, registry)
    return value.isoformat() if all_day else f"{value.isoformat()} [{tz_id or 'UTC'}]"


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--calendar-id', type=int, default=1, show_default=True,
              help='ID of the local calendar')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, config, calendar_id, debug, verbose):
    """calsync-store - local storage of recurring iCalendar events.

    Stores iCalendar events as main event rows with exception rows and maps
    them back to iCalendar.
    """
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config)
        if debug:
            settings.debug = True
        if verbose:
            settings.log_level = 'DEBUG'

        ctx.obj['settings'] = settings
        ctx.obj['calendar_id'] = calendar_id

        setup_logging(settings.log_level, settings.debug)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the database tables."""
    settings = ctx.obj['settings']
    try:
        SqlEventStore(settings).init_db()
        console.print(f"[green]✓ Database initialized[/green] ({settings.database_url})")
    except Exception as e:
        console.print(f"[red]Failed to initialize database: {e}[/red]")
        sys.exit(1)


@cli.command('import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--sync-id', '-s', help='Sync ID of the event (defaults to its UID)')
@click.option('--etag', help='ETag of the remote resource')
@click.pass_context
def import_events(ctx, file, sync_id, etag):
    """Import (add or update) the events of an iCalendar file."""
    settings = ctx.obj['settings']

    try:
        groups = events_from_ical(Path(file).read_text(encoding='utf-8'))
    except InvalidResourceError as e:
        console.print(f"[red]Invalid iCalendar file: {e}[/red]")
        sys.exit(1)

    if sync_id and len(groups) > 1:
        console.print("[red]--sync-id can only be used for files with one event[/red]")
        sys.exit(1)

    repository = open_repository(settings, ctx.obj['calendar_id'])
    imported = skipped = 0
    for associated in groups:
        event_sync_id = sync_id or associated.uid
        try:
            existing = repository.find_by_sync_id(event_sync_id)
            if existing is None:
                id = repository.add(associated, event_sync_id, etag=etag)
                console.print(f"[green]✓ Added[/green] {event_sync_id} as event {id}")
            else:
                id = repository.update(existing, associated, etag=etag)
                console.print(f"[green]✓ Updated[/green] {event_sync_id} (event {existing} → {id})")
            imported += 1
        except InvalidResourceError as e:
            console.print(f"[yellow]Skipping {event_sync_id}: {e}[/yellow]")
            skipped += 1
        except LocalStorageError as e:
            console.print(f"[red]Storage error: {e}[/red]")
            sys.exit(1)

    console.print(f"Imported {imported} event(s), skipped {skipped}")


@cli.command('export')
@click.argument('event_id', type=int)
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to file instead of stdout')
@click.pass_context
def export_event(ctx, event_id, output):
    """Export an event (with exceptions) as iCalendar."""
    settings = ctx.obj['settings']
    repository = open_repository(settings, ctx.obj['calendar_id'])

    try:
        associated = repository.get(event_id)
    except (InvalidResourceError, LocalStorageError) as e:
        console.print(f"[red]Failed to export event {event_id}: {e}[/red]")
        sys.exit(1)

    if associated is None:
        console.print(f"[red]Event {event_id} not found[/red]")
        sys.exit(1)

    ical = to_calendar(associated, prodid(settings)).to_ical().decode('utf-8')
    if output:
        Path(output).write_text(ical, encoding='utf-8')
        console.print(f"[green]✓ Exported event {event_id} to {output}[/green]")
    else:
        click.echo(ical)


def _event_table(title: str, entities, registry: TimeZoneRegistry) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Start")
    table.add_column("Instance")
    table.add_column("Status")
    table.add_column("Seq")
    table.add_column("Flags")

    for entity in entities:
        row = entity.row
        flags = [name for name, value in (('dirty', row.dirty), ('deleted', row.deleted)) if value]
        table.add_row(
            str(row.id),
            row.title or "",
            format_time(row.dtstart, row.event_timezone, row.all_day, registry),
            format_time(row.original_instance_time, row.event_timezone, bool(row.original_all_day), registry),
            row.status.value if row.status else "-",
            str(row.sequence) if row.sequence is not None else "-",
            ", ".join(flags),
        )
    return table


@cli.command('show')
@click.argument('event_id', type=int)
@click.pass_context
def show_event(ctx, event_id):
    """Show the stored rows of an event and its exceptions."""
    settings = ctx.obj['settings']
    repository = open_repository(settings, ctx.obj['calendar_id'])

    event_and_exceptions = repository.recurring.get_by_id(event_id)
    if event_and_exceptions is None:
        console.print(f"[red]Event {event_id} not found[/red]")
        sys.exit(1)

    main: EventEntity = event_and_exceptions.main
    row = main.row
    details = [
        f"[bold]UID:[/bold] {row.uid}",
        f"[bold]Sync ID:[/bold] {row.sync_id}",
        f"[bold]Start:[/bold] {format_time(row.dtstart, row.event_timezone, row.all_day, repository.registry)}",
        f"[bold]End:[/bold] {format_time(row.dtend, row.event_end_timezone or row.event_timezone, row.all_day, repository.registry)}",
        f"[bold]Duration:[/bold] {row.duration or '-'}",
        f"[bold]RRULE:[/bold] {row.rrule or '-'}",
        f"[bold]RDATE:[/bold] {row.rdate or '-'}",
        f"[bold]EXRULE:[/bold] {row.exrule or '-'}",
        f"[bold]EXDATE:[/bold] {row.exdate or '-'}",
        f"[bold]Reminders:[/bold] {len(main.reminders)}, [bold]Attendees:[/bold] {len(main.attendees)}, "
        f"[bold]Extended properties:[/bold] {len(main.extended_properties)}",
    ]
    console.print(Panel("\n".join(details), title=f"Event {event_id}: {row.title or ''}"))
    console.print(_event_table("Main event", [main], repository.registry))
    if event_and_exceptions.exceptions:
        console.print(_event_table("Exceptions", event_and_exceptions.exceptions, repository.registry))


@cli.command('list')
@click.pass_context
def list_events(ctx):
    """List all main events of the calendar."""
    settings = ctx.obj['settings']
    repository = open_repository(settings, ctx.obj['calendar_id'])

    mains = [event_and_exceptions.main for _, event_and_exceptions in repository.iterate()]
    if not mains:
        console.print("[yellow]No events stored[/yellow]")
        return
    console.print(_event_table(f"Calendar {ctx.obj['calendar_id']}", mains, repository.registry))


@cli.command('delete')
@click.argument('event_id', type=int)
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def delete_event(ctx, event_id, yes):
    """Delete an event with all its exceptions."""
    settings = ctx.obj['settings']
    if not yes and not Confirm.ask(f"Delete event {event_id} and its exceptions?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    repository = open_repository(settings, ctx.obj['calendar_id'])
    try:
        count = repository.delete(event_id)
    except LocalStorageError as e:
        console.print(f"[red]Failed to delete event {event_id}: {e}[/red]")
        sys.exit(1)

    if count:
        console.print(f"[green]✓ Deleted {count} row(s)[/green]")
    else:
        console.print(f"[yellow]Event {event_id} not found[/yellow]")


@cli.command('sweep')
@click.pass_context
def sweep(ctx):
    """Process locally deleted and modified exceptions."""
    settings = ctx.obj['settings']
    repository = open_repository(settings, ctx.obj['calendar_id'])
    try:
        deleted, dirty = repository.run_sweeps()
    except LocalStorageError as e:
        console.print(f"[red]Sweep failed: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Removed {deleted} deleted exception(s), processed {dirty} modified exception(s)[/green]")


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command('create')
@click.option('--path', '-p', type=click.Path(), default='.env',
              help='Path to create config file')
@click.option('--force', '-f', is_flag=True,
              help='Overwrite existing file')
def create_config(path, force):
    """Create an example configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        if not Confirm.ask(f"File {path} already exists. Overwrite?"):
            console.print("[yellow]Configuration creation cancelled[/yellow]")
            return

    try:
        create_example_config(config_path)
        console.print(f"[green]Configuration file created at {path}[/green]")
    except Exception as e:
        console.print(f"[red]Failed to create configuration file: {e}[/red]")
        sys.exit(1)


@config.command('validate')
@click.pass_context
def validate_config(ctx):
    """Validate the current configuration."""
    settings = ctx.obj['settings']

    missing_fields = settings.validate_required_settings()

    if missing_fields:
        console.print(Panel(
            f"[red]Missing required fields:[/red]\n" +
            "\n".join(f"• {field}" for field in missing_fields),
            title="Configuration Validation",
            border_style="red"
        ))
        sys.exit(1)
    else:
        console.print(Panel(
            "[green]✓ All required configuration fields are present[/green]",
            title="Configuration Validation",
            border_style="green"
        ))


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
