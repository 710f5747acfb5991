from __future__ import annotations

"""Client-local key-value persistence areas.

An area maps short string keys to serialized JSON documents, in the manner of a
browser's local storage. ``DirectoryArea`` keeps one ``<key>.json`` file per key;
``MemoryArea`` is used in tests and as a throwaway store.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

_LOGGER = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")


class KeyValueArea(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.fullmatch(key):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


def write_text_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` so readers see either the old or new content."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, ensure_ascii=False))


def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from ``path``; missing or corrupt files yield ``default``."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Ignoring unreadable JSON file %s: %s", path, exc)
        return default


class DirectoryArea:
    """One JSON document per key inside ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def _path(self, key: str) -> Path:
        return self.root / f"{_check_key(key)}.json"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        write_text_atomic(self._path(key), value)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))


class MemoryArea:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(_check_key(key))

    def set(self, key: str, value: str) -> None:
        self.data[_check_key(key)] = value

    def remove(self, key: str) -> None:
        self.data.pop(_check_key(key), None)

    def keys(self) -> list[str]:
        return sorted(self.data)
