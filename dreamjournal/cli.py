from __future__ import annotations

from pathlib import Path

import typer
from typer.core import TyperGroup

from . import __version__
from .analysis import ANALYSIS_METHODS
from .cli_common import (
    console,
    data_dir_option,
    fail,
    load_store,
    print_notification,
)
from .cli_data import build_app as build_data_app
from .cli_entries import build_analyses_app, build_app as build_entries_app
from .cli_web import web as web_cmd
from .client import ProxyClient
from .config import CONFIG, load_user_config
from .errors import ConfigError
from .journal import JournalController
from .transcription import ALLOWED_MIME_TYPES


class _OrderedTopLevelGroup(TyperGroup):
    def list_commands(self, ctx):
        desired = [
            "version",
            "web",
            "entries",
            "analyze",
            "analyses",
            "transcribe",
            "data",
        ]
        names = list(self.commands.keys())
        ordered = [name for name in desired if name in names]
        remaining = [name for name in sorted(names) if name not in set(ordered)]
        return ordered + remaining


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=f"DreamJournal {__version__}\n\nDream journaling with AI interpretation.",
    cls=_OrderedTopLevelGroup,
)

_SUFFIX_MIME_TYPES = {
    ".webm": "audio/webm",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
}


@app.callback()
def _main_callback(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        help="Path to user_config.toml (default: ./user_config.toml).",
    ),
) -> None:
    try:
        load_user_config(config_file)
    except ConfigError as exc:
        fail(exc.message, title="Configuration")


app.add_typer(build_entries_app(), name="entries")
app.add_typer(build_analyses_app(), name="analyses")
app.add_typer(build_data_app(), name="data")

app.command("web")(web_cmd)


@app.command("version")
def version() -> None:
    """Show installed package version."""
    typer.echo(__version__)


@app.command("analyze")
def analyze(
    entry_id: int = typer.Argument(..., help="Entry to interpret."),
    method: str = typer.Argument(
        ..., help=f"One of: {', '.join(ANALYSIS_METHODS)}."
    ),
    server: str | None = typer.Option(
        None, "--server", help="Proxy base URL (default from config)."
    ),
    force: bool = typer.Option(
        False, "--force", help="Replace an existing analysis of this method."
    ),
    data_dir: Path | None = data_dir_option(),
) -> None:
    """Ask the proxy for an interpretation and store it on the entry."""

    if method not in ANALYSIS_METHODS:
        fail(f"Invalid analysis method: {method}", title="Analyze")
    store = load_store(data_dir)
    with ProxyClient(server) as proxy:
        controller = JournalController(store, proxy, notifier=print_notification)
        entry = controller.analyze(entry_id, method, force=force)
        controller.shutdown()
    if entry is None:
        raise typer.Exit(code=1)
    console.print(entry.analyses[method].result)


@app.command("transcribe")
def transcribe(
    audio_file: Path = typer.Argument(..., help="Recorded audio to transcribe."),
    context: str = typer.Option("", "--context", help="Mood before sleeping."),
    server: str | None = typer.Option(
        None, "--server", help="Proxy base URL (default from config)."
    ),
    data_dir: Path | None = data_dir_option(),
) -> None:
    """Upload a recording to the proxy and save the text as a new entry."""

    if not audio_file.is_file():
        fail(f"File not found: {audio_file}", title="Transcribe")
    content_type = _SUFFIX_MIME_TYPES.get(audio_file.suffix.lower(), "audio/webm")
    if content_type not in ALLOWED_MIME_TYPES:
        console.print(f"[yellow]Unrecognised audio type {content_type}[/]")
    data = audio_file.read_bytes()
    if len(data) > CONFIG.max_audio_bytes:
        fail(
            f"Audio file is larger than {CONFIG.max_audio_bytes} bytes.",
            title="Transcribe",
        )

    store = load_store(data_dir)
    with ProxyClient(server) as proxy:
        controller = JournalController(store, proxy, notifier=print_notification)
        controller.update_draft(context=context)
        text = controller.begin_transcription(
            data, audio_file.name, content_type
        ).result()
        # Empty draft here means the autoSave setting already stored it
        entry = controller.save() if controller.draft_text else None
        controller.shutdown()

    if not text:
        raise typer.Exit(code=1)
    console.print(text)
    if entry is not None:
        console.print(f"Entry id: [cyan]{entry.id}[/]")
