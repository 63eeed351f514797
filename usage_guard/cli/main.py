"""
CLI interface for Usage Guard.

Inspect limits and usage, and dry-run workloads against the limit engines.
"""

import sqlite3
import sys
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from usage_guard.config.loader import LimitsConfig, load_config
from usage_guard.core.ocr_validation import PDF_BYTES_PER_PAGE, FileInfo
from usage_guard.core.results import Denied
from usage_guard.logging_config import setup_logging
from usage_guard.services import UsageGuard
from usage_guard.storage.db import DEFAULT_DB_PATH
from usage_guard.storage.sqlite_store import SQLiteUsageStore, initialize_schema
from usage_guard.storage.store import InMemoryUsageStore, UsageStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _load(config_file: Optional[str]) -> LimitsConfig:
    try:
        return load_config(overrides_path=config_file)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _store(db: Optional[str]) -> UsageStore:
    return SQLiteUsageStore(db) if db else InMemoryUsageStore()


def _format_limit(value: float) -> str:
    return "unlimited" if value == float("inf") else f"{int(value):,}"


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to LOG_LEVEL or WARNING)"
    ),
):
    """Usage Guard CLI."""
    setup_logging(level=log_level)
    if ctx.invoked_subcommand is None:
        console.print("Usage Guard - Use --help to see available commands")


@app.command()
def status():
    """Check that Usage Guard is installed."""
    console.print("[green]✓[/] Usage Guard is ready")


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
):
    """Initialize the usage database."""
    try:
        initialize_schema(db)
        console.print(f"[green]✓[/] Database initialized successfully ({db})")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("config")
def show_config(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML overrides file"
    ),
):
    """Show the effective limits."""
    config = _load(config_file)

    tokens = Table(title="Token limits")
    tokens.add_column("Limit")
    tokens.add_column("Value", justify="right")
    tokens.add_row("Per request", _format_limit(config.tokens.per_request))
    tokens.add_row("Per session", _format_limit(config.tokens.per_session))
    tokens.add_row("Per day", _format_limit(config.tokens.per_day))
    tokens.add_row("Per month", _format_limit(config.tokens.per_month))
    tokens.add_row("Output buffer", _format_limit(config.tokens.output_buffer))
    console.print(tokens)

    ocr = config.ocr
    ocr_table = Table(title="OCR limits")
    ocr_table.add_column("Limit")
    ocr_table.add_column("Value", justify="right")
    ocr_table.add_row("Max file size (MB)", _format_limit(ocr.max_file_size_mb))
    ocr_table.add_row("Pages per document", _format_limit(ocr.max_pages_per_document))
    ocr_table.add_row("Pages per session", _format_limit(ocr.max_pages_per_session))
    ocr_table.add_row("Pages per day", _format_limit(ocr.max_pages_per_day))
    ocr_table.add_row("Documents per session", _format_limit(ocr.max_documents_per_session))
    ocr_table.add_row("Documents per day", _format_limit(ocr.max_documents_per_day))
    ocr_table.add_row("Concurrent jobs", _format_limit(ocr.max_concurrent_jobs))
    console.print(ocr_table)

    rates = Table(title="Rate limits")
    for column in ("Tier", "Per minute", "Per hour", "Per day", "Min interval (ms)"):
        rates.add_column(column, justify="right" if column != "Tier" else "left")
    for tier in ("demo", "authenticated", "premium", "admin"):
        limits = config.rate_limits.for_tier(tier)
        rates.add_row(
            tier,
            _format_limit(limits.requests_per_minute),
            _format_limit(limits.requests_per_hour),
            _format_limit(limits.requests_per_day),
            _format_limit(limits.min_request_interval_ms),
        )
    console.print(rates)

    # Keys are never printed
    console.print(f"Admin override: {'enabled' if config.admin.override_enabled else 'disabled'}")
    console.print(f"OCR bypass: {'enabled' if config.admin.ocr_bypass_enabled else 'disabled'}")

    features = Table(title="Features")
    features.add_column("Feature")
    features.add_column("Status")
    for label, enabled in (
        ("Export", config.features.export),
        ("Bulk upload", config.features.bulk_upload),
        ("Advanced search", config.features.advanced_search),
        ("Research mode", config.features.research_mode),
        ("Customization", config.features.customization),
        ("API access", config.features.api_access),
    ):
        features.add_row(label, "[green]enabled[/]" if enabled else "disabled")
    console.print(features)
    disabled = config.features.disabled_features()
    if disabled:
        console.print(f"Available on upgrade: {', '.join(disabled)}")


@app.command()
def stats(
    user: str = typer.Option(..., "--user", "-u", help="User ID"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session ID"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML overrides file"),
):
    """Show a user's token and OCR usage from the usage database."""
    config = _load(config_file)
    try:
        guard = UsageGuard.create(config=config, store=SQLiteUsageStore(db, create_schema=False))
        session_id = session or f"{user}:{guard.ledger.now().date().isoformat()}"
        _display_usage(guard, user, session_id)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No usage data found[/]")
            console.print("\nRun `usage-guard init` to initialize the database.\n")
            sys.exit(EXIT_CODE_PASS)
        raise


@app.command("simulate-chat")
def simulate_chat(
    requests: int = typer.Option(10, "--requests", "-n", min=1, help="Number of requests"),
    tokens: int = typer.Option(1500, "--tokens", "-t", min=0, help="Estimated tokens per request"),
    user: str = typer.Option("simulated-user", "--user", "-u", help="User ID"),
    session: str = typer.Option("simulated-session", "--session", "-s", help="Session ID"),
    db: Optional[str] = typer.Option(None, "--db", help="Persist usage to this SQLite database"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML overrides file"),
    show_hits: bool = typer.Option(False, "--show-hits", help="Print the limit-hit summary"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if any request is denied"
    ),
):
    """
    Dry-run a sequence of chat requests against the token limits.

    Each allowed request is charged its estimate as actual usage.
    """
    guard = UsageGuard.create(config=_load(config_file), store=_store(db))

    table = Table(title="Chat simulation")
    table.add_column("#", justify="right")
    table.add_column("Verdict")
    table.add_column("Detail")

    denied = 0
    for number in range(1, requests + 1):
        result = guard.tokens.check_limits(user, session, tokens)
        if isinstance(result, Denied):
            denied += 1
            table.add_row(str(number), "[red]DENIED[/]", f"{result.limit_type.value}: {result.message}")
            continue
        guard.tokens.track_usage(user, session, tokens)
        table.add_row(str(number), "[green]ALLOWED[/]", f"{_format_limit(result.remaining)} daily tokens left before this request")

    console.print(table)
    console.print(f"\nAllowed: {requests - denied}  Denied: {denied}")
    _display_usage(guard, user, session)
    if show_hits:
        _display_hits(guard)

    if enforced and denied:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command("simulate-ocr")
def simulate_ocr(
    documents: int = typer.Option(5, "--documents", "-n", min=1, help="Number of documents"),
    pages: int = typer.Option(8, "--pages", "-p", min=1, help="Pages per document"),
    user: str = typer.Option("simulated-user", "--user", "-u", help="User ID"),
    session: str = typer.Option("simulated-session", "--session", "-s", help="Session ID"),
    db: Optional[str] = typer.Option(None, "--db", help="Persist usage to this SQLite database"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML overrides file"),
    show_hits: bool = typer.Option(False, "--show-hits", help="Print the limit-hit summary"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if any document is denied"
    ),
):
    """
    Dry-run a sequence of PDF uploads against the OCR limits.

    Each allowed document goes through the full job lifecycle and is
    charged its page count.
    """
    guard = UsageGuard.create(config=_load(config_file), store=_store(db))

    table = Table(title="OCR simulation")
    table.add_column("#", justify="right")
    table.add_column("Verdict")
    table.add_column("Detail")

    denied = 0
    for number in range(1, documents + 1):
        file = FileInfo(name=f"document-{number}.pdf", size=pages * PDF_BYTES_PER_PAGE, type="application/pdf")
        result = guard.ocr.validate_file(file)
        if not isinstance(result, Denied):
            result = guard.ocr.check_limits(user, session, pages)
        if isinstance(result, Denied):
            denied += 1
            table.add_row(str(number), "[red]DENIED[/]", f"{result.limit_type.value}: {result.message}")
            continue

        job = guard.ocr.reserve_job(user, session, file, pages)
        if job is None:
            denied += 1
            table.add_row(str(number), "[red]DENIED[/]", "queue_full: OCR queue is full")
            continue
        guard.ocr.start_job(job.id)
        guard.ocr.complete_job(job.id, pages)
        table.add_row(str(number), "[green]COMPLETED[/]", f"{job.id} ({pages} pages)")

    console.print(table)
    console.print(f"\nCompleted: {documents - denied}  Denied: {denied}")
    _display_ocr_usage(guard, user, session)
    if show_hits:
        _display_hits(guard)

    if enforced and denied:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


def _usage_row(table: Table, label: str, usage) -> None:
    table.add_row(
        label,
        f"{usage.used:,}",
        _format_limit(usage.limit),
        f"{usage.remaining:,}",
        f"{usage.percent_used}%",
    )


def _usage_table(title: str) -> Table:
    table = Table(title=title)
    table.add_column("Tier")
    for column in ("Used", "Limit", "Remaining", "Used %"):
        table.add_column(column, justify="right")
    return table


def _display_usage(guard: UsageGuard, user: str, session: str) -> None:
    token_stats = guard.tokens.get_usage_stats(user, session)
    table = _usage_table(f"Token usage for {user}")
    _usage_row(table, "Session", token_stats.session)
    _usage_row(table, "Daily", token_stats.daily)
    _usage_row(table, "Monthly", token_stats.monthly)
    console.print(table)
    console.print(f"Daily reset: {_format_time(token_stats.daily_reset_time)}")
    console.print(f"Monthly reset: {_format_time(token_stats.monthly_reset_time)}")
    _display_ocr_usage(guard, user, session)


def _display_ocr_usage(guard: UsageGuard, user: str, session: str) -> None:
    ocr_stats = guard.ocr.get_usage_stats(user, session)
    table = _usage_table(f"OCR usage for {user}")
    _usage_row(table, "Session pages", ocr_stats.session_pages)
    _usage_row(table, "Session documents", ocr_stats.session_documents)
    _usage_row(table, "Daily pages", ocr_stats.daily_pages)
    _usage_row(table, "Daily documents", ocr_stats.daily_documents)
    console.print(table)
    console.print(
        f"Queue: {ocr_stats.queue.active} active, {ocr_stats.queue.pending} pending "
        f"(max {ocr_stats.queue.max_concurrent})"
    )


def _display_hits(guard: UsageGuard) -> None:
    summary = guard.analytics.get_stats()
    console.print(f"\n[bold]Limit hits[/bold]: {summary.total_hits} total, {summary.hits_today} today")
    if not summary.hits_by_type:
        console.print("[dim]No limits were hit.[/]")
        return

    table = Table(title="Hits by limit type")
    table.add_column("Limit type")
    table.add_column("Hits", justify="right")
    rows = sorted(summary.hits_by_type.items(), key=lambda item: item[1], reverse=True)
    for limit_type, count in rows:
        table.add_row(limit_type, str(count))
    console.print(table)


if __name__ == "__main__":
    app()
