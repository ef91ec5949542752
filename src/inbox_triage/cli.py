"""Command-line interface for Inbox Triage.

Usage:
    python -m inbox_triage triage                 # dry run
    python -m inbox_triage triage --live          # mark noise as read
    python -m inbox_triage mark-read
    python -m inbox_triage validate-config
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from inbox_triage.config import validate_config_file
from inbox_triage.core.errors import TriageError
from inbox_triage.core.logging import configure_logging

if TYPE_CHECKING:
    from inbox_triage.classifier.rules import TriageRules
    from inbox_triage.config_schema import AppConfig
    from inbox_triage.core.models import Session, TriageResult
    from inbox_triage.transport.base import MailTransport

console = Console()

# Low-priority rows shown before collapsing into "...and N more"
LOW_PRIORITY_DISPLAY_LIMIT = 20

BADGE_STYLES = {"high": "bold red", "med": "yellow", "low": "dim"}

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    session: Session
    transport: MailTransport
    rules: TriageRules


def _init_cli_deps(
    debug: bool,
    backend: str | None,
    days: str | None,
    vip: str | None,
    noise: str | None,
) -> CLIDeps:
    """Load config, resolve rules, build the transport and sign in.

    Raises:
        TriageError: On config, auth or transport failures
    """
    from inbox_triage.auth import build_session, create_token_provider
    from inbox_triage.classifier.rules import resolve_rules
    from inbox_triage.config import get_config
    from inbox_triage.transport import create_transport

    config = get_config()
    if backend:
        config = config.model_copy(
            update={"transport": config.transport.model_copy(update={"backend": backend})}
        )

    configure_logging(
        log_level="DEBUG" if debug else config.logging.level,
        json_output=config.logging.json_output,
    )

    rules = resolve_rules(
        high_senders=vip,
        low_senders=noise,
        days_back=days,
        defaults=config.rules,
    )
    transport = create_transport(config.transport)
    session = build_session(config, create_token_provider(config))

    return CLIDeps(config=config, session=session, transport=transport, rules=rules)


def _run(coro_factory: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run an async command, mapping errors to exit codes."""
    try:
        return asyncio.run(coro_factory())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except TriageError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


def _status(message: str) -> None:
    console.print(f"[dim]{message}[/dim]")


def render_result(result: TriageResult, now: datetime | None = None) -> None:
    """Print the ranked reply list and the low-priority list."""
    from inbox_triage.classifier.scoring import badge_level
    from inbox_triage.engine.report import format_age

    now = now or datetime.now(UTC)

    if not result.priority_list:
        console.print("\n[green]No emails needing replies.[/green]")
    else:
        table = Table(title=f"Suggested reply order ({len(result.priority_list)} email(s))")
        table.add_column("#", justify="right")
        table.add_column("Badge")
        table.add_column("Score", justify="right")
        table.add_column("Subject", overflow="fold")
        table.add_column("From", overflow="fold")
        table.add_column("Age", justify="right")

        for rank, item in enumerate(result.priority_list, start=1):
            level = badge_level(item.score)
            table.add_row(
                str(rank),
                f"[{BADGE_STYLES[level]}]{level}[/]",
                f"{item.score}pts",
                escape(item.message.subject),
                escape(item.message.from_display),
                format_age(item.message.received_at, now),
            )
        console.print(table)

    low = result.low_priority_list
    if low:
        verb = "Would be marked" if result.dry_run else "Marked"
        console.print(f"\n[bold]{verb} as read ({len(low)} email(s))[/bold]")
        for item in low[:LOW_PRIORITY_DISPLAY_LIMIT]:
            age = format_age(item.message.received_at, now)
            console.print(
                f"  [dim]{escape(item.message.subject)} · {escape(item.message.from_display)}"
                f"{' · ' + age if age else ''}[/dim]",
                highlight=False,
            )
        if len(low) > LOW_PRIORITY_DISPLAY_LIMIT:
            console.print(f"  [dim]…and {len(low) - LOW_PRIORITY_DISPLAY_LIMIT} more[/dim]")


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Inbox Triage - rank unread mail and clear the noise."""
    ctx.ensure_object(dict)["debug"] = debug
    configure_logging(log_level="DEBUG" if debug else "INFO", json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    console.print(f"\n[red]✗[/red] {message}")
    sys.exit(1)


_backend_option = click.option(
    "--backend",
    type=click.Choice(["graph", "ews"]),
    default=None,
    help="Mail transport (default: from config)",
)
_days_option = click.option(
    "--days",
    default=None,
    help="Lookback window in days, 1-30 (invalid values fall back to 7)",
)
_noise_option = click.option(
    "--noise",
    default=None,
    help="Comma-separated noise sender substrings (overrides config)",
)


@cli.command("triage")
@click.option(
    "--live",
    is_flag=True,
    help="Mark low-priority messages as read (default is a dry run)",
)
@_days_option
@_backend_option
@click.option(
    "--vip",
    default=None,
    help="Comma-separated VIP sender substrings (overrides config)",
)
@_noise_option
@click.pass_obj
def triage(
    obj: dict,
    live: bool,
    days: str | None,
    backend: str | None,
    vip: str | None,
    noise: str | None,
) -> None:
    """Rank unread mail needing replies and find low-priority noise."""
    from inbox_triage.engine.report import summary_line
    from inbox_triage.engine.triage import TriageEngine

    async def run() -> TriageResult:
        deps = _init_cli_deps(obj["debug"], backend, days, vip, noise)
        if not live:
            console.print("[cyan]Dry-run mode:[/cyan] nothing will be marked as read\n")
        engine = TriageEngine(deps.transport, on_status=_status)
        return await engine.run(deps.session, deps.rules, dry_run=not live)

    result = _run(run)

    if not result.inbox_clear:
        render_result(result)
        tag = " [magenta](dry run)[/magenta]" if result.dry_run else ""
        console.print(f"\n[bold]{summary_line(result)}[/bold]{tag}")


@cli.command("mark-read")
@_days_option
@_backend_option
@_noise_option
@click.pass_obj
def mark_read(obj: dict, days: str | None, backend: str | None, noise: str | None) -> None:
    """Mark every low-priority unread message as read (no report)."""
    from inbox_triage.engine.triage import TriageEngine

    async def run() -> None:
        deps = _init_cli_deps(obj["debug"], backend, days, None, noise)
        engine = TriageEngine(deps.transport, on_status=_status)
        await engine.mark_low_priority(deps.session, deps.rules)

    _run(run)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
