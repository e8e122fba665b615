"""Command line entry point: run the consumer and query the audit store."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .audit.export import export_document, format_timestamp
from .audit.query import AuditQueryService
from .audit.schemas import AuditLogEntry, AuditSearchResult, AuditStatistics
from .audit.store import AuditStore
from .config import AuditSettings
from .exceptions import (
    AuditLogNotFoundError,
    AuditServiceError,
    ExportError,
    InvalidQueryError,
    QueryError,
)
from .observability.logging import configure_logging
from .service import AuditService

logger = logging.getLogger(__name__)
console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

EXIT_STORAGE_ERROR = 1
EXIT_INVALID_QUERY = 2
EXIT_NOT_FOUND = 3


def _query(settings: AuditSettings, action: Callable[[AuditQueryService], Awaitable[T]]) -> T:
    """Run one query against a short-lived store, mapping errors to exit codes."""

    async def runner() -> T:
        store = AuditStore.from_settings(settings)
        try:
            service = AuditQueryService(
                store,
                default_limit=settings.search_default_limit,
                max_limit=settings.search_max_limit,
            )
            return await action(service)
        finally:
            await store.dispose()

    try:
        return asyncio.run(runner())
    except AuditLogNotFoundError as e:
        err_console.print(f"[yellow]{e}[/yellow]")
        sys.exit(EXIT_NOT_FOUND)
    except InvalidQueryError as e:
        err_console.print(f"[red]Invalid query: {e}[/red]")
        sys.exit(EXIT_INVALID_QUERY)
    except (QueryError, ExportError) as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(EXIT_STORAGE_ERROR)


def _entries_table(entries: list[AuditLogEntry], title: str | None = None) -> Table:
    table = Table(title=title)
    table.add_column("Occurred", style="cyan", no_wrap=True)
    table.add_column("Action", style="bold")
    table.add_column("Resource")
    table.add_column("User")
    table.add_column("Service")
    table.add_column("Severity")
    table.add_column("OK")
    table.add_column("ID", style="dim")
    for entry in entries:
        table.add_row(
            format_timestamp(entry.occurred_at),
            entry.action_type,
            f"{entry.resource_type}:{entry.resource_id or ''}",
            entry.user_id or "",
            entry.service_name,
            entry.severity.value,
            "[green]yes[/green]" if entry.success else "[red]no[/red]",
            entry.id,
        )
    return table


def _print_result(result: AuditSearchResult, as_json: bool) -> None:
    if as_json:
        click.echo(
            json.dumps(
                {
                    "data": [export_document(entry) for entry in result.entries],
                    "pagination": {
                        "total": result.total,
                        "limit": result.limit,
                        "offset": result.offset,
                        "page": result.page,
                        "totalPages": result.total_pages,
                        "hasMore": result.has_more,
                    },
                },
                indent=2,
            )
        )
        return
    console.print(_entries_table(result.entries))
    console.print(
        f"Page {result.page} of {result.total_pages} ({result.total} entries)"
        + (", more available" if result.has_more else "")
    )


def _print_statistics(stats: AuditStatistics) -> None:
    console.print(
        f"[bold]Last {stats.time_range.days} days[/bold]: {stats.total_logs} entries, "
        f"[green]{stats.successful} successful[/green], [red]{stats.failed} failed[/red]"
    )
    for title, buckets in (("Top services", stats.top_services), ("Top actions", stats.top_actions)):
        table = Table(title=title)
        table.add_column("Name", style="cyan")
        table.add_column("Count", justify="right")
        for bucket in buckets:
            table.add_row(bucket.name, str(bucket.count))
        console.print(table)

    severity_table = Table(title="Severity")
    severity_table.add_column("Level", style="cyan")
    severity_table.add_column("Count", justify="right")
    for level, count in stats.severity_breakdown.items():
        severity_table.add_row(level, str(count))
    console.print(severity_table)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Audit event consumer and audit log query tool."""
    settings = AuditSettings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    configure_logging(settings.service_name, settings.log_level, settings.log_format)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--create-tables", is_flag=True, help="Create audit tables before consuming")
@click.option("--shutdown-after", type=float, help="Stop after this many seconds")
@click.pass_context
def serve(ctx: click.Context, create_tables: bool, shutdown_after: float | None) -> None:
    """Consume events from the bus and record them."""
    settings: AuditSettings = ctx.obj["settings"]

    service = AuditService(settings)
    try:
        asyncio.run(service.run(shutdown_after=shutdown_after, create_tables=create_tables))
    except AuditServiceError as e:
        err_console.print(f"[red]Audit service failed to start: {e}[/red]")
        sys.exit(EXIT_STORAGE_ERROR)
    except KeyboardInterrupt:
        logger.info("Audit service stopped by user")


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the audit tables and indexes."""
    settings: AuditSettings = ctx.obj["settings"]

    async def run() -> None:
        store = AuditStore.from_settings(settings)
        try:
            await store.create_tables()
        finally:
            await store.dispose()

    asyncio.run(run())
    console.print("[green]✓ Audit tables ready[/green]")


@cli.command()
@click.option("--service", "service_name", help="Service name")
@click.option("--action", "action_type", help="Action type, e.g. ORDER_PLACED")
@click.option("--event-type", help="Event type, e.g. order.placed")
@click.option("--user", "user_id", help="User id")
@click.option("--user-type", type=click.Choice(["customer", "admin", "system", "guest"]))
@click.option("--resource-type", help="Resource type")
@click.option("--resource-id", help="Resource id")
@click.option("--correlation-id", help="Correlation id")
@click.option("--success/--failed", default=None, help="Outcome filter")
@click.option("--severity", type=click.Choice(["low", "medium", "high", "critical"]))
@click.option("--from", "from_date", help="ISO-8601 lower bound, inclusive")
@click.option("--to", "to_date", help="ISO-8601 upper bound, inclusive")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, help="Page size")
@click.option("--sort-by", type=click.Choice(["occurred_at", "severity", "service_name"]))
@click.option("--sort-order", type=click.Choice(["asc", "desc"]))
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def search(ctx: click.Context, as_json: bool, **filters: Any) -> None:
    """Search audit entries."""
    result = _query(ctx.obj["settings"], lambda service: service.search(filters))
    _print_result(result, as_json)


@cli.command()
@click.argument("entry_id")
@click.pass_context
def show(ctx: click.Context, entry_id: str) -> None:
    """Show one audit entry as JSON."""
    entry = _query(ctx.obj["settings"], lambda service: service.get_entry(entry_id))
    click.echo(json.dumps(export_document(entry), indent=2))


@cli.command()
@click.argument("resource_type")
@click.argument("resource_id")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, help="Page size")
@click.option("--sort-order", type=click.Choice(["asc", "desc"]), default="asc", show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def trail(
    ctx: click.Context,
    resource_type: str,
    resource_id: str,
    page: int,
    limit: int | None,
    sort_order: str,
    as_json: bool,
) -> None:
    """Audit trail of one resource.

    RESOURCE_TYPE: e.g. order
    RESOURCE_ID: e.g. o1
    """
    result = _query(
        ctx.obj["settings"],
        lambda service: service.resource_trail(
            resource_type, resource_id, sort_order=sort_order, page=page, limit=limit
        ),
    )
    _print_result(result, as_json)


@cli.command()
@click.argument("correlation_id")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def correlation(ctx: click.Context, correlation_id: str, as_json: bool) -> None:
    """Every entry sharing a correlation id, oldest first."""
    entries = _query(ctx.obj["settings"], lambda service: service.correlation_trail(correlation_id))
    if as_json:
        click.echo(json.dumps([export_document(entry) for entry in entries], indent=2))
    else:
        console.print(_entries_table(entries, title=f"Correlation {correlation_id}"))


@cli.command()
@click.option("--format", "fmt", type=click.Choice(["csv", "json"]), default="csv", show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to file instead of stdout")
@click.option("--service", "service_name", help="Service name")
@click.option("--action", "action_type", help="Action type")
@click.option("--user", "user_id", help="User id")
@click.option("--resource-type", help="Resource type")
@click.option("--resource-id", help="Resource id")
@click.option("--success/--failed", default=None, help="Outcome filter")
@click.option("--severity", type=click.Choice(["low", "medium", "high", "critical"]))
@click.option("--from", "from_date", help="ISO-8601 lower bound, inclusive")
@click.option("--to", "to_date", help="ISO-8601 upper bound, inclusive")
@click.pass_context
def export(ctx: click.Context, fmt: str, output: str | None, **filters: Any) -> None:
    """Export matching entries as CSV or JSON."""
    settings: AuditSettings = ctx.obj["settings"]
    if output:
        count = _query(settings, lambda service: service.export_to_file(output, filters, fmt))
        err_console.print(f"[green]✓ Exported {count} entries to {output}[/green]")
        return
    content, _ = _query(settings, lambda service: service.export(filters, fmt))
    click.echo(content, nl=False)


@cli.command()
@click.option("--days", type=int, default=30, show_default=True, help="Trailing window in days")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
@click.pass_context
def stats(ctx: click.Context, days: int, as_json: bool) -> None:
    """Aggregate counts over a trailing window."""
    statistics = _query(ctx.obj["settings"], lambda service: service.statistics(days))
    if as_json:
        click.echo(statistics.model_dump_json(indent=2))
    else:
        _print_statistics(statistics)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
