from __future__ import annotations

"""Typer command that launches the proxy web server."""

from pathlib import Path

import typer
from rich.console import Console

from .config import CONFIG
from .events import get_event_log_path, init_event_logger
from .web.app import WebAppConfig, build_services, run_app


console = Console()


def web(
    state_dir: Path | None = typer.Option(
        None,
        "--state-dir",
        help="Directory for rate limit ledgers and the event log.",
    ),
    host: str = typer.Option(
        "127.0.0.1",
        "--host",
        help="Interface to bind the server to.",
    ),
    port: int = typer.Option(
        8765,
        "--port",
        help="Port to serve the proxy on.",
    ),
) -> None:
    """Launch the analysis/transcription proxy."""

    config = WebAppConfig(
        state_dir=state_dir or CONFIG.state_dir,
        host=host,
        port=port,
        user_config_path=CONFIG.user_config_path,
    )
    resolved = config.resolved()
    resolved.state_dir.mkdir(parents=True, exist_ok=True)
    init_event_logger(resolved.state_dir / "events.log")

    # Surface missing credentials before the first request does
    services = build_services(resolved)
    for name, service in (
        ("/analyze", services.analysis),
        ("/transcribe", services.transcriber),
    ):
        if service.config_error is not None:
            console.print(
                f"[yellow]{name} disabled:[/] {service.config_error.message}"
            )

    console.print(f"[green]Starting dream journal proxy on {host}:{port}[/]")
    console.print(f"State directory: [cyan]{resolved.state_dir}[/]")
    console.print(f"Event log: [cyan]{get_event_log_path()}[/]")

    try:
        run_app(resolved, services)
    except KeyboardInterrupt:  # pragma: no cover - direct CLI interrupt
        console.print("\n[cyan]Server stopped.[/]")
