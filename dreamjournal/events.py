from __future__ import annotations

"""Structured event log (JSON lines) for operational metadata.

Events never contain journal text; callers pass sizes, ids and error types.
"""

from datetime import datetime, timezone
import json
import logging
import threading
from pathlib import Path
from typing import Any, Mapping

_LOGGER = logging.getLogger(__name__)

_EVENT_LOGGER_NAME = "dreamjournal.events"
_lock = threading.Lock()
_event_log_path: Path | None = None


def init_event_logger(path: Path) -> Path:
    """Attach a JSON-lines file handler for events at ``path``."""

    global _event_log_path
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    event_logger = logging.getLogger(_EVENT_LOGGER_NAME)
    with _lock:
        for handler in list(event_logger.handlers):
            event_logger.removeHandler(handler)
            handler.close()
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        event_logger.addHandler(handler)
        event_logger.setLevel(logging.INFO)
        event_logger.propagate = False
        _event_log_path = path
    return path


def get_event_log_path() -> Path | None:
    return _event_log_path


def log_event(event: str, metadata: Mapping[str, Any] | None = None) -> None:
    """Record a single event; falls back to debug logging when not initialised."""

    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        **{key: _jsonable(value) for key, value in (metadata or {}).items()},
    }
    if _event_log_path is None:
        _LOGGER.debug("event %s", record)
        return
    logging.getLogger(_EVENT_LOGGER_NAME).info(
        json.dumps(record, ensure_ascii=False, sort_keys=True)
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)
