from __future__ import annotations

"""Typer sub-app for backup, restore and statistics of the local journal."""

from pathlib import Path

import typer
from rich.table import Table

from .cli_common import (
    console,
    data_dir_option,
    fail,
    load_store,
    print_notification,
)
from .cli_entries import answer_confirmation
from .client import ProxyClient
from .errors import JournalError
from .journal import JournalController
from .storage import write_text_atomic
from .utils.time_utils import utc_now


def build_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        context_settings={"help_option_names": ["-h", "--help"]},
        help="Export, import, clear and summarise journal data.",
    )

    @app.command("export")
    def export_data(
        path: Path | None = typer.Argument(
            None,
            help="Output file (default: dream-journal-export-YYYY-MM-DD.json).",
        ),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Write every entry and setting to a JSON file."""

        store = load_store(data_dir)
        target = path or Path(
            f"dream-journal-export-{utc_now().date().isoformat()}.json"
        )
        write_text_atomic(target, store.export_all())
        console.print(f"[green]Exported to[/] [cyan]{target}[/]")

    @app.command("import")
    def import_data(
        path: Path = typer.Argument(..., help="A file written by 'data export'."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Replace local entries with those in an export file."""

        if not path.exists():
            fail(f"File not found: {path}", title="Import")
        store = load_store(data_dir)
        try:
            imported = store.import_all(path.read_text(encoding="utf-8"))
        except JournalError as exc:
            fail(exc.message, title="Import")
            return
        if not imported:
            fail("Local storage is not available.", title="Import")
        count = len(store.list_entries())
        console.print(f"[green]Imported {count} entries.[/]")

    @app.command("clear")
    def clear_data(
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Delete all entries and settings."""

        store = load_store(data_dir)
        with ProxyClient() as proxy:
            controller = JournalController(store, proxy, notifier=print_notification)
            pending = controller.request_clear_all()
            answer_confirmation(pending, yes)
            controller.shutdown()
        if not pending.future.result():
            raise typer.Exit(code=1)

    @app.command("stats")
    def stats(data_dir: Path | None = data_dir_option()) -> None:
        """Show totals, average length and date range."""

        store = load_store(data_dir)
        summary = store.compute_statistics()
        table = Table(show_header=False)
        table.add_column("metric", style="cyan")
        table.add_column("value")
        table.add_row("Entries", str(summary.total_entries))
        table.add_row("Analyses", str(summary.total_analyses))
        table.add_row("Average length", f"{summary.average_entry_length} chars")
        table.add_row("This month", str(summary.entries_this_month))
        table.add_row("Oldest", summary.oldest_entry or "-")
        table.add_row("Newest", summary.newest_entry or "-")
        console.print(table)

    return app
