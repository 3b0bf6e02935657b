"""CLI interface for ORCHESTRA.

This module provides the Typer-based command-line interface over the
ticket list service:

    orchestra list [--page-size N] [--page-token TOKEN] [--materialized FILE] [--json]
    orchestra show PROVIDER_ID:EXTERNAL_ID [--materialized FILE] [--json]
    orchestra providers

Integrations are read from configuration (see orchestra.config.manager).
"""

import asyncio
import json
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Annotated, NoReturn, TypeVar

import typer
from rich.markup import escape
from rich.table import Table

from orchestra.config.manager import ConfigManager
from orchestra.integrations.providers.base import PROVIDER_DISPLAY_NAMES, ProviderHandle
from orchestra.integrations.providers.exceptions import ProviderError, TicketIdFormatError
from orchestra.integrations.providers.registry import ProviderRegistry
from orchestra.tickets.models import MergedTicket, TicketPage
from orchestra.tickets.service import create_ticket_list_service
from orchestra.utils.console import (
    console,
    print_error,
    print_header,
    print_info,
    print_warning,
    show_version,
    styled_label,
)
from orchestra.utils.errors import AggregationCancelledError, ExitCode, OrchestraError
from orchestra.utils.logging import setup_logging

app = typer.Typer(
    name="orchestra",
    help="ORCHESTRA - Aggregate tickets from external trackers into one paged list",
    add_completion=False,
    no_args_is_help=True,
)

# Settings shown in the providers table, first present wins
_TARGET_SETTINGS = ("url", "repository", "project")

MaterializedOption = Annotated[
    Path | None,
    typer.Option(
        "--materialized",
        "-m",
        help="JSON file with local assignment records to overlay",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Print machine-readable JSON")]


def version_callback(value: bool) -> None:
    """Display version and exit."""
    if value:
        show_version()
        raise typer.Exit()


class AsyncLoopAlreadyRunningError(OrchestraError):
    """Raised when trying to run async code in an existing event loop."""

    _default_exit_code = ExitCode.GENERAL_ERROR


T = TypeVar("T")


def run_async(coro_factory: Callable[[], Coroutine[None, None, T]]) -> T:
    """Run an async coroutine from synchronous CLI code.

    The factory is only called once it is known that no loop is running,
    so no coroutine is created and then discarded.

    Raises:
        AsyncLoopAlreadyRunningError: If an event loop is already running
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        raise AsyncLoopAlreadyRunningError(
            "Cannot run async operation: an event loop is already running. "
            "Consider awaiting the ticket service directly."
        )

    return asyncio.run(coro_factory())


def _handle_error(exc: BaseException) -> NoReturn:
    """Map an exception to a user-facing message and raise typer.Exit."""
    if isinstance(exc, typer.Exit | SystemExit):
        raise exc
    if isinstance(exc, KeyboardInterrupt):
        exc = AggregationCancelledError("Interrupted, no tickets were returned")

    if isinstance(exc, OrchestraError):
        print_error(str(exc))
        raise typer.Exit(exc.exit_code) from exc
    if isinstance(exc, TicketIdFormatError | ValueError):
        print_error(str(exc))
        raise typer.Exit(ExitCode.INVALID_REQUEST) from exc
    if isinstance(exc, ProviderError):
        print_error(f"Provider request failed: {exc}")
    else:
        print_error(f"Unexpected error: {exc}")
    raise typer.Exit(ExitCode.GENERAL_ERROR) from exc


def _load_integrations() -> tuple[ConfigManager, list[ProviderHandle]]:
    """Load configuration and the configured provider handles.

    Raises:
        ConfigurationError: If an integration is invalid
    """
    config = ConfigManager()
    config.load()
    return config, config.get_integrations()


async def _list_async(
    config: ConfigManager,
    handles: list[ProviderHandle],
    page_size: int | None,
    page_token: str | None,
    materialized: Path | None,
) -> TicketPage:
    async with create_ticket_list_service(config, materialized_file=materialized) as service:
        return await service.list_tickets(handles, page_size=page_size, page_token=page_token)


async def _show_async(
    config: ConfigManager,
    handles: list[ProviderHandle],
    composite_id: str,
    materialized: Path | None,
) -> MergedTicket | None:
    async with create_ticket_list_service(config, materialized_file=materialized) as service:
        return await service.get_ticket(handles, composite_id)


def _assignment(ticket: MergedTicket) -> str:
    parts = [
        value for value in (ticket.assigned_agent_id, ticket.assigned_workflow_id) if value
    ]
    return " / ".join(parts) if parts else "-"


def _render_page(page: TicketPage) -> None:
    """Print a ticket page as a table followed by the continuation token."""
    if not page.tickets:
        print_info("No tickets found")
    else:
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", style="highlight", no_wrap=True)
        table.add_column("Source", no_wrap=True)
        table.add_column("Status")
        table.add_column("Priority")
        table.add_column("Title")
        table.add_column("Assigned")
        for ticket in page.tickets:
            table.add_row(
                ticket.composite_id,
                ticket.source,
                styled_label(ticket.status.name, ticket.status.color),
                styled_label(ticket.priority.name, ticket.priority.color),
                escape(ticket.title),
                _assignment(ticket),
            )
        console.print(table)

    console.print(f"{len(page.tickets)} ticket(s)")
    if page.has_more:
        console.print("More tickets available. Next page:")
        console.print(f"  orchestra list --page-token {page.next_page_token}", soft_wrap=True)


def _render_ticket(ticket: MergedTicket) -> None:
    print_header(escape(f"{ticket.composite_id}: {ticket.title}"))
    console.print(f"[bold]Source:[/bold] {ticket.source}")
    status = styled_label(ticket.status.name, ticket.status.color)
    priority = styled_label(ticket.priority.name, ticket.priority.color)
    console.print(f"[bold]Status:[/bold] {status}")
    console.print(f"[bold]Priority:[/bold] {priority} ({ticket.priority.value})")
    console.print(f"[bold]URL:[/bold] {escape(ticket.summary.external_url)}")
    if ticket.materialized:
        console.print(f"[bold]Assigned:[/bold] {_assignment(ticket)}")
    if ticket.summary.description:
        console.print()
        console.print(ticket.summary.description, markup=False)

    if ticket.comments:
        console.print()
        console.print(f"[bold]Comments ({len(ticket.comments)})[/bold]")
        for comment in ticket.comments:
            when = comment.timestamp.strftime("%Y-%m-%d %H:%M") if comment.timestamp else "undated"
            console.print(f"[highlight]{escape(comment.author)}[/highlight] [dim]{when}[/dim]")
            console.print(comment.content, markup=False)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """ORCHESTRA - Aggregate tickets from external trackers into one paged list."""
    setup_logging()


@app.command("list")
def list_tickets(
    page_size: Annotated[
        int | None,
        typer.Option("--page-size", "-n", min=1, help="Number of tickets per page"),
    ] = None,
    page_token: Annotated[
        str | None,
        typer.Option("--page-token", "-t", help="Continuation token from a previous page"),
    ] = None,
    materialized: MaterializedOption = None,
    json_output: JsonOption = False,
) -> None:
    """List one page of tickets across all configured integrations."""
    try:
        config, handles = _load_integrations()
        page = run_async(
            lambda: _list_async(config, handles, page_size, page_token, materialized)
        )
    except (Exception, KeyboardInterrupt) as e:
        _handle_error(e)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "tickets": [ticket.to_dict() for ticket in page.tickets],
                    "nextPageToken": page.next_page_token,
                    "hasMore": page.has_more,
                },
                indent=2,
            )
        )
        return
    _render_page(page)


@app.command("show")
def show_ticket(
    ticket_id: Annotated[
        str,
        typer.Argument(help="Ticket id as <provider-id>:<external-id>, e.g. work:OPS-12"),
    ],
    materialized: MaterializedOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show a single ticket with its comments."""
    try:
        config, handles = _load_integrations()
        ticket = run_async(lambda: _show_async(config, handles, ticket_id, materialized))
    except (Exception, KeyboardInterrupt) as e:
        _handle_error(e)

    if ticket is None:
        print_error(f"Ticket not found: {ticket_id}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if json_output:
        typer.echo(json.dumps(ticket.to_dict(), indent=2))
        return
    _render_ticket(ticket)


@app.command("providers")
def list_providers() -> None:
    """List the configured integrations in allocation order."""
    try:
        _, handles = _load_integrations()
    except Exception as e:
        _handle_error(e)

    if not handles:
        print_warning("No integrations configured (set INTEGRATION_<NAME>_KIND and friends)")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="highlight", no_wrap=True)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Name")
    table.add_column("Target")
    for handle in handles:
        target = next(
            (handle.settings[key] for key in _TARGET_SETTINGS if handle.settings.get(key)),
            "-",
        )
        kind = PROVIDER_DISPLAY_NAMES.get(handle.kind, handle.kind.value)
        if not ProviderRegistry.is_registered(handle.kind):
            kind += " (unsupported)"
        table.add_row(handle.id, kind, handle.name, str(target))
    console.print(table)


__all__ = [
    "app",
    "run_async",
]
