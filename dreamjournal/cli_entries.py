from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .analysis import analysis_title
from .cli_common import (
    console,
    data_dir_option,
    fail,
    load_store,
    print_notification,
)
from .client import ProxyClient
from .journal import JournalController, PendingConfirmation


def build_app() -> typer.Typer:
    """Build the Typer sub-app for entry management."""

    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        context_settings={"help_option_names": ["-h", "--help"]},
        help="Journal entries (list, show, add, delete).",
    )

    @app.command("list")
    def list_entries(
        data_dir: Path | None = data_dir_option(),
        nchars: int = typer.Option(
            60,
            "--nchars",
            help="Limit the text snippet to N characters (0 = full text).",
        ),
    ) -> None:
        """List entries, most recent first."""

        store = load_store(data_dir)
        entries = store.list_entries()
        if not entries:
            console.print("[yellow]No entries yet.[/]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("id", no_wrap=True)
        table.add_column("date", no_wrap=True)
        table.add_column("analyses")
        table.add_column("text")
        for entry in entries:
            normalized = " ".join(entry.text.split())
            snippet = normalized[:nchars] if nchars > 0 else normalized
            table.add_row(
                str(entry.id),
                entry.date[:16].replace("T", " "),
                ", ".join(sorted(entry.analyses)) or "-",
                snippet,
            )
        console.print(table)

    @app.command("show")
    def show_entry(
        entry_id: int = typer.Argument(..., help="Entry id."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Show one entry with its analyses."""

        store = load_store(data_dir)
        entry = store.get_entry(entry_id)
        if entry is None:
            fail(f"Entry {entry_id} not found.", title="Not found")
            return

        body = Text(entry.text)
        if entry.context:
            body.append(f"\n\nMood: {entry.context}", style="dim")
        console.print(
            Panel.fit(body, title=f"{entry.id} · {entry.date}", border_style="cyan")
        )
        for method, analysis in sorted(entry.analyses.items()):
            console.print(
                Panel.fit(
                    Text(analysis.result),
                    title=f"{analysis_title(method)} · {analysis.timestamp[:10]}",
                    border_style="magenta",
                )
            )

    @app.command("add")
    def add_entry(
        text: str = typer.Argument(..., help="What you dreamt."),
        context: str = typer.Option("", "--context", help="Mood before sleeping."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Save a new entry."""

        store = load_store(data_dir)
        with ProxyClient() as proxy:
            controller = JournalController(store, proxy, notifier=print_notification)
            controller.update_draft(text=text, context=context)
            entry = controller.save()
            controller.shutdown()
        if entry is None:
            raise typer.Exit(code=2)
        console.print(f"Entry id: [cyan]{entry.id}[/]")

    @app.command("delete")
    def delete_entry(
        entry_id: int = typer.Argument(..., help="Entry id."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Delete an entry."""

        store = load_store(data_dir)
        with ProxyClient() as proxy:
            controller = JournalController(store, proxy, notifier=print_notification)
            pending = controller.request_delete(entry_id)
            answer_confirmation(pending, yes)
            controller.shutdown()
        if not pending.future.result():
            raise typer.Exit(code=1)

    return app


def build_analyses_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        context_settings={"help_option_names": ["-h", "--help"]},
        help="Stored analyses (remove).",
    )

    @app.command("remove")
    def remove(
        entry_id: int = typer.Argument(..., help="Entry id."),
        method: str | None = typer.Argument(None, help="Analysis method to remove."),
        remove_all: bool = typer.Option(False, "--all", help="Remove every analysis."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        data_dir: Path | None = data_dir_option(),
    ) -> None:
        """Remove one analysis, or all of them with --all."""

        if not remove_all and not method:
            fail("Give a METHOD or pass --all.", title="Usage")
        store = load_store(data_dir)
        with ProxyClient() as proxy:
            controller = JournalController(store, proxy, notifier=print_notification)
            if remove_all:
                pending = controller.request_remove_all_analyses(entry_id)
            else:
                pending = controller.request_remove_analysis(entry_id, str(method))
            answer_confirmation(pending, yes)
            controller.shutdown()
        if not pending.future.result():
            raise typer.Exit(code=1)

    return app


def answer_confirmation(pending: PendingConfirmation, assume_yes: bool) -> None:
    """Resolve a pending destructive action from ``--yes`` or an interactive prompt."""

    if assume_yes or typer.confirm(pending.prompt, default=False):
        pending.confirm()
    else:
        pending.decline()
        console.print("[cyan]Cancelled.[/]")
