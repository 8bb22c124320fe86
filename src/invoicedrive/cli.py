"""CLI entry point for invoice archival to Google Drive.

Provides commands:
  - archive: Spool an invoice PDF and upload it to Drive
  - status: Show one artifact's storage status, or counts by status
  - list: List artifacts in a given storage status
  - retry: Re-upload one failed artifact
  - bulk-retry: Re-upload several failed artifacts concurrently
  - activity: Show the storage audit trail of an artifact
  - config: Manage configuration (access token, enable/disable)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, AsyncIterator

import keyring
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from invoicedrive.config import (
    KEY_NAME,
    SERVICE_NAME,
    config_provider,
    get_access_token,
    load_storage_config,
    save_storage_config,
)
from invoicedrive.models import (
    ArtifactMetadata,
    StorageConfig,
    StorageStatus,
    StorageStatusRecord,
)
from invoicedrive.upload.client import DriveClient
from invoicedrive.upload.errors import describe_error, kind_from_message
from invoicedrive.upload.exceptions import StorageError
from invoicedrive.upload.pipeline import UploadPipeline
from invoicedrive.upload.retry import RetryEvent
from invoicedrive.upload.service import StorageService
from invoicedrive.upload.source import FileArtifactSource
from invoicedrive.upload.state import StorageStatusStore

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Invoice Drive - archive generated invoices to Google Drive",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (access token, settings)")
app.add_typer(config_app, name="config")

_STATUS_STYLES = {
    "pending": "yellow",
    "stored": "green",
    "failed": "red",
    "disabled": "dim",
}


@app.callback()
def app_callback(
    ctx: typer.Context,
    config_path: Annotated[
        Path,
        typer.Option("--config", "-c", help="Path to storage_config.json"),
    ] = Path("config/storage_config.json"),
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log retry attempts and Drive calls"),
    ] = False,
) -> None:
    """Remember the config path and set up logging."""
    ctx.obj = config_path
    if verbose:
        handler = RichHandler(console=console, show_path=False)
        pkg_logger = logging.getLogger("invoicedrive")
        pkg_logger.addHandler(handler)
        pkg_logger.setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config_path(ctx: typer.Context) -> Path:
    return ctx.obj if isinstance(ctx.obj, Path) else Path("config/storage_config.json")


def _load_config(ctx: typer.Context) -> StorageConfig:
    try:
        return load_storage_config(_config_path(ctx))
    except (OSError, ValueError, TypeError) as e:
        console.print(f"[red]Error:[/red] Could not read configuration: {e}")
        raise typer.Exit(code=1)


def _print_retry(event: RetryEvent) -> None:
    console.print(
        f"[yellow]Retrying[/yellow] {event.operation_name} "
        f"(attempt {event.attempt}/{event.max_attempts}) in {event.delay:.1f}s: "
        f"{event.error.message}"
    )


@asynccontextmanager
async def _open_store(config: StorageConfig) -> AsyncIterator[StorageStatusStore]:
    Path(config.db_path).parent.mkdir(parents=True, exist_ok=True)
    async with StorageStatusStore(config.db_path) as store:
        yield store


@asynccontextmanager
async def _open_service(ctx: typer.Context) -> AsyncIterator[StorageService]:
    config = _load_config(ctx)
    try:
        token = get_access_token()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    async with DriveClient(token, timeout=config.request_timeout) as drive:
        async with _open_store(config) as store:
            provider = config_provider(_config_path(ctx))
            pipeline = UploadPipeline(drive, provider, on_retry=_print_retry)
            yield StorageService(
                pipeline, store, FileArtifactSource(config.artifact_dir), provider
            )


def _styled(status: StorageStatus | str) -> str:
    value = StorageStatus(status).value
    style = _STATUS_STYLES.get(value, "")
    return f"[{style}]{value}[/{style}]" if style else value


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def _print_guidance(error_message: str | None) -> None:
    guidance = describe_error(kind_from_message(error_message))
    lines = [guidance.message]
    if guidance.actions:
        lines.append(f"\n[dim]Suggested: {', '.join(guidance.actions)}[/dim]")
    console.print(Panel("\n".join(lines), title=guidance.title, border_style="red"))
    if guidance.requires_reauth:
        console.print(
            "Re-authenticate, then store the new token with: "
            "[bold]invoicedrive config set-token NEW_TOKEN[/bold]"
        )


def _print_record(record: StorageStatusRecord) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Artifact", record.artifact_id)
    table.add_row("Status", _styled(record.status))
    table.add_row("Drive file", record.remote_object_id or "-")
    table.add_row("Uploaded", _fmt(record.uploaded_at))
    table.add_row("Last attempt", _fmt(record.last_attempt_at))
    table.add_row("Retries", str(record.retry_count))
    table.add_row("Error", record.error_message or "-")
    console.print(Panel(table, title="Storage Status"))
    if record.status == StorageStatus.FAILED:
        _print_guidance(record.error_message)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def archive(
    ctx: typer.Context,
    pdf_path: Annotated[
        Path,
        typer.Argument(help="Rendered invoice file", exists=True, dir_okay=False),
    ],
    artifact_id: Annotated[str, typer.Option("--id", help="Artifact identifier")],
    number: Annotated[str, typer.Option("--number", "-n", help="Invoice number")],
    party: Annotated[str, typer.Option("--party", "-p", help="Client name")],
    invoice_date: Annotated[
        datetime,
        typer.Option("--date", formats=["%Y-%m-%d"], help="Invoice date (YYYY-MM-DD)"),
    ],
    recurring: Annotated[
        str | None,
        typer.Option("--recurring", help="Recurrence descriptor, e.g. Monthly"),
    ] = None,
) -> None:
    """Spool an invoice and upload it to Google Drive."""
    metadata = ArtifactMetadata(
        document_number=number,
        party_name=party,
        date=date(invoice_date.year, invoice_date.month, invoice_date.day),
        is_recurring=recurring is not None,
        recurrence_descriptor=recurring,
    )
    data = pdf_path.read_bytes()

    async def _run():
        async with _open_service(ctx) as service:
            return await service.archive(artifact_id, data, metadata)

    result = asyncio.run(_run())
    if result.success and result.remote_object_id:
        console.print(
            f"[green]✓[/green] Stored as [bold]{result.file_name or artifact_id}[/bold] "
            f"({result.remote_object_id})"
        )
    elif result.success:
        console.print("[yellow]Not uploaded[/yellow] (storage disabled or auto-upload off)")
    else:
        console.print(f"[red]Upload failed:[/red] {result.error}")
        _print_guidance(result.error)
        raise typer.Exit(code=1)


@app.command()
def status(
    ctx: typer.Context,
    artifact_id: Annotated[
        str | None,
        typer.Argument(help="Artifact to show; omit for counts by status"),
    ] = None,
) -> None:
    """Show one artifact's storage status, or record counts by status."""
    config = _load_config(ctx)

    async def _run():
        async with _open_store(config) as store:
            if artifact_id is None:
                return await store.count_by_status()
            return await store.get(artifact_id)

    outcome = asyncio.run(_run())

    if artifact_id is None:
        table = Table(title="Invoices by Storage Status")
        table.add_column("Status", style="bold")
        table.add_column("Count", justify="right")
        for s in StorageStatus:
            table.add_row(_styled(s), str(outcome.get(s.value, 0)))
        console.print(table)
        console.print(f"\n[bold]Storage enabled:[/bold] {config.enabled}")
        return

    if outcome is None:
        console.print(f"[yellow]No storage status for[/yellow] {artifact_id}")
        raise typer.Exit(code=1)
    _print_record(outcome)


@app.command("list")
def list_records(
    ctx: typer.Context,
    status_filter: Annotated[
        StorageStatus,
        typer.Option("--status", "-s", help="Status to list"),
    ] = StorageStatus.FAILED,
) -> None:
    """List artifacts in a storage status (default: failed)."""
    config = _load_config(ctx)

    async def _run():
        async with _open_store(config) as store:
            return await store.list_by_status(status_filter)

    records = asyncio.run(_run())
    if not records:
        console.print(f"[dim]No {status_filter.value} artifacts.[/dim]")
        return

    table = Table(title=f"{status_filter.value.capitalize()} Artifacts")
    table.add_column("Artifact", style="bold")
    table.add_column("Retries", justify="right")
    table.add_column("Last attempt")
    table.add_column("Drive file / error")
    for record in records:
        table.add_row(
            record.artifact_id,
            str(record.retry_count),
            _fmt(record.last_attempt_at),
            record.remote_object_id or record.error_message or "-",
        )
    console.print(table)


@app.command()
def retry(
    ctx: typer.Context,
    artifact_id: Annotated[str, typer.Argument(help="Failed artifact to re-upload")],
) -> None:
    """Re-upload one failed artifact."""

    async def _run():
        async with _open_service(ctx) as service:
            return await service.retry(artifact_id)

    try:
        result = asyncio.run(_run())
    except StorageError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if result.success:
        console.print(f"[green]✓[/green] {artifact_id} stored ({result.remote_object_id})")
    else:
        console.print(f"[red]Retry failed:[/red] {result.error}")
        _print_guidance(result.error)
        raise typer.Exit(code=1)


@app.command("bulk-retry")
def bulk_retry(
    ctx: typer.Context,
    artifact_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Artifacts to retry; omit with --all-failed"),
    ] = None,
    all_failed: Annotated[
        bool,
        typer.Option("--all-failed", help="Retry every failed artifact"),
    ] = False,
) -> None:
    """Re-upload several failed artifacts with bounded concurrency."""

    async def _run():
        async with _open_service(ctx) as service:
            ids = list(artifact_ids or [])
            if all_failed:
                ids.extend(
                    r.artifact_id for r in await service.list_by_status(StorageStatus.FAILED)
                )
            return await service.bulk_retry(list(dict.fromkeys(ids)))

    try:
        summary = asyncio.run(_run())
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Bulk Retry")
    table.add_column("Artifact", style="bold")
    table.add_column("Result")
    for item in summary.results:
        table.add_row(
            item.artifact_id,
            "[green]stored[/green]" if item.success else f"[red]{item.error}[/red]",
        )
    if summary.results:
        console.print(table)
    console.print(
        f"[bold]{summary.successful}[/bold] succeeded, "
        f"[bold]{summary.failed}[/bold] failed of {summary.total}"
    )
    if summary.failed:
        raise typer.Exit(code=1)


@app.command()
def activity(
    ctx: typer.Context,
    artifact_id: Annotated[str, typer.Argument(help="Artifact identifier")],
) -> None:
    """Show the storage audit trail of an artifact."""
    config = _load_config(ctx)

    async def _run():
        async with _open_store(config) as store:
            return await store.list_activity(artifact_id)

    events = asyncio.run(_run())
    if not events:
        console.print(f"[dim]No activity recorded for {artifact_id}.[/dim]")
        return

    table = Table(title=f"Activity: {artifact_id}")
    table.add_column("When")
    table.add_column("Event", style="bold")
    table.add_column("Details")
    for event in events:
        details = ", ".join(f"{k}={v}" for k, v in event["details"].items() if v is not None)
        table.add_row(event["created_at"], event["event"], details or "-")
    console.print(table)


# ---------------------------------------------------------------------------
# config subcommands
# ---------------------------------------------------------------------------


def _set_enabled(ctx: typer.Context, enabled: bool) -> None:
    config = _load_config(ctx)
    config.enabled = enabled
    path = save_storage_config(config, _config_path(ctx))
    word = "enabled" if enabled else "disabled"
    console.print(f"[green]✓[/green] Google Drive storage {word} ({path})")


@config_app.command("enable")
def enable(ctx: typer.Context) -> None:
    """Turn Google Drive storage on."""
    _set_enabled(ctx, True)


@config_app.command("disable")
def disable(ctx: typer.Context) -> None:
    """Turn Google Drive storage off; new invoices are marked disabled."""
    _set_enabled(ctx, False)


@config_app.command("show")
def show(ctx: typer.Context) -> None:
    """Display the effective storage configuration."""
    config = _load_config(ctx)
    table = Table(title="Storage Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in vars(config).items():
        table.add_row(key, str(value))
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    table.add_row("access token", "[green]set[/green]" if token else "[yellow]not set[/yellow]")
    console.print(table)


@config_app.command("set-token")
def set_token(
    token: Annotated[
        str,
        typer.Argument(help="Google Drive OAuth access token"),
    ],
) -> None:
    """Store the Drive access token in the system keyring."""
    if not token or token.strip() == "":
        console.print("[red]Error:[/red] Token cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, token)
        console.print(
            f"[green]✓[/green] Access token stored in system keyring (service: {SERVICE_NAME})"
        )
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store token: {e}")
        raise typer.Exit(code=1)


@config_app.command("remove-token")
def remove_token() -> None:
    """Delete the stored Drive access token from the system keyring."""
    try:
        if not keyring.get_password(SERVICE_NAME, KEY_NAME):
            console.print("[yellow]Warning:[/yellow] No token found in keyring.\nNothing to remove.")
            return
        keyring.delete_password(SERVICE_NAME, KEY_NAME)
        console.print(f"[green]✓[/green] Access token removed (service: {SERVICE_NAME})")
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to remove token: {e}")
        raise typer.Exit(code=1)
