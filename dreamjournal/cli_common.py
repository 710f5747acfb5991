from __future__ import annotations

"""Helpers shared by the Typer sub-apps."""

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .config import CONFIG
from .journal import Notification
from .store import RecordStore, open_store


console = Console()

_NOTIFICATION_STYLES = {"success": "green", "warning": "yellow", "error": "red"}


def data_dir_option() -> Path | None:
    return typer.Option(
        None,
        "--data-dir",
        help="Directory holding the journal's local data files.",
    )


def load_store(data_dir: Path | None) -> RecordStore:
    """Open the local store, exiting with code 2 when it is unusable."""

    target = data_dir or CONFIG.data_dir
    store = open_store(target)
    if not store.available:
        fail(f"Local storage at {target} is not usable.", title="Storage")
    return store


def print_notification(notification: Notification) -> None:
    style = _NOTIFICATION_STYLES.get(notification.level, "white")
    console.print(Text(notification.message, style=style))


def fail(message: str, *, title: str = "Error") -> None:
    console.print(
        Panel.fit(Text(message, style="red"), title=title, border_style="red")
    )
    raise typer.Exit(code=2)
