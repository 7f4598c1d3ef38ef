"""Terminal output: logging setup and report rendering."""

import logging
from collections.abc import Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from chat_transfer.models import RecordMetadata, TransferReport, record_id_of
from chat_transfer.paths import WorkspaceDb
from chat_transfer.serialization import to_json

# Reports go to stdout, diagnostics to stderr.
stdout_console = Console()
stderr_console = Console(stderr=True)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    root = logging.getLogger("chat_transfer")
    root.handlers.clear()
    root.addHandler(RichHandler(console=stderr_console, show_path=verbose, rich_tracebacks=verbose))
    root.setLevel(level)
    root.propagate = False


def print_json(value: object) -> None:
    print(to_json(value).decode())


def render_report(report: TransferReport) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()

    table.add_row("Operation", report.operation)
    if report.records:
        table.add_row("Records", str(report.records))
    if report.fragments:
        table.add_row("Bubbles", str(report.fragments))
    if report.inserted or report.already_present:
        table.add_row("Inserted", f"{report.inserted} ({report.already_present} already present)")
    if report.removed:
        table.add_row("Removed", str(report.removed))
    if report.output_path:
        table.add_row("Path", report.output_path)
    if report.final_record_ids:
        table.add_row("Index size", str(len(report.final_record_ids)))

    stdout_console.print(table)
    for warning in report.warnings:
        stderr_console.print(Text(f"Warning: {warning}", style="yellow"))


def render_records(records: Sequence[RecordMetadata]) -> None:
    if not records:
        stdout_console.print("No chats found.")
        return

    table = Table("composerId", "Name", "Last updated")
    for record in records:
        name = record.get("name")
        updated = record.get("lastUpdatedAt")
        table.add_row(
            record_id_of(record) or "",
            name if isinstance(name, str) else "",
            str(updated) if isinstance(updated, int) else "",
        )
    stdout_console.print(table)


def render_workspaces(workspaces: Sequence[WorkspaceDb]) -> None:
    if not workspaces:
        stdout_console.print("No workspace stores found.")
        return

    table = Table("Name", "Folder", "Store")
    for workspace in workspaces:
        table.add_row(workspace.name or workspace.hash, workspace.folder or "", str(workspace.path))
    stdout_console.print(table)
