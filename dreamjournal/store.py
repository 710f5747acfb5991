from __future__ import annotations

"""Record store for journal entries and settings.

The store owns the persisted key space (``entries``, ``settings``,
``schemaVersion``) of a KeyValueArea. Every read decodes fresh Entry objects
from the persisted JSON, so callers never share mutable state with the store.
All read-modify-write operations run under a single re-entrant lock.
"""

from datetime import datetime
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from .config import CONFIG
from .errors import AnalysisNotFoundError, NotFoundError, ValidationError
from .events import log_event
from .models import DEFAULT_SETTINGS, AnalysisResult, Entry, Statistics
from .storage import DirectoryArea, KeyValueArea
from .utils.time_utils import iso_timestamp, parse_timestamp, utc_now

_LOGGER = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = "1.1.0"

ENTRIES_KEY = "entries"
SETTINGS_KEY = "settings"
VERSION_KEY = "schemaVersion"
_PROBE_KEY = "__storage_probe__"

# Fields a caller may supply; timestamps and schemaVersion are store-assigned
_DRAFT_FIELDS = ("id", "date", "text", "context", "tags", "analyses")


def migrate_entries(
    records: Iterable[Any], version: str
) -> tuple[list[Any], bool]:
    """Backfill fields missing from older records.

    Returns ``(migrated_records, changed)``. The input is not modified and
    running the function on its own output is a no-op.
    """

    migrated: list[Any] = []
    changed = False
    for record in records:
        if not isinstance(record, dict):
            migrated.append(record)
            continue
        updated = dict(record)
        if not updated.get("schemaVersion"):
            # 1.0.0 records carried the tag under "version"
            legacy = updated.pop("version", None)
            updated["schemaVersion"] = str(legacy) if legacy else version
        if updated.get("tags") is None:
            updated["tags"] = []
        if updated.get("analyses") is None:
            updated["analyses"] = {}
        if updated != record:
            changed = True
        migrated.append(updated)
    return migrated, changed


class RecordStore:
    """Durable CRUD over entries and settings with schema migration."""

    def __init__(
        self,
        area: KeyValueArea,
        *,
        schema_version: str = CURRENT_SCHEMA_VERSION,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.area = area
        self.schema_version = schema_version
        self._clock = clock
        self._lock = threading.RLock()
        self.available = False

    # ------------------------------------------------------------------ setup

    def initialize(self) -> bool:
        """Prepare the key space; safe to call repeatedly.

        Returns False (and leaves the store in no-op mode) when the area cannot
        be written.
        """

        with self._lock:
            if not self._probe():
                self.available = False
                _LOGGER.warning("Storage area is not usable; store disabled")
                log_event("store.unavailable", {})
                return False
            try:
                stored_version = self.area.get(VERSION_KEY)
                if stored_version != self.schema_version:
                    self.migrate(stored_version, self.schema_version)
                    self.area.set(VERSION_KEY, self.schema_version)
                if self.area.get(ENTRIES_KEY) is None:
                    self.area.set(ENTRIES_KEY, "[]")
                if self.area.get(SETTINGS_KEY) is None:
                    self.area.set(SETTINGS_KEY, json.dumps(DEFAULT_SETTINGS))
            except OSError as exc:
                self.available = False
                _LOGGER.warning("Storage initialisation failed: %s", exc)
                log_event("store.unavailable", {"error_type": exc.__class__.__name__})
                return False
            self.available = True
            return True

    def _probe(self) -> bool:
        try:
            self.area.set(_PROBE_KEY, _PROBE_KEY)
            self.area.remove(_PROBE_KEY)
            return True
        except OSError:
            return False

    def migrate(self, from_version: str | None, to_version: str) -> bool:
        """Backfill missing fields on all entries; persist once if anything changed."""

        with self._lock:
            raw = self._read_raw_entries()
            migrated, changed = migrate_entries(raw, to_version)
            if changed:
                self._write_raw_entries(migrated)
            _LOGGER.info(
                "Migrated entries from %s to %s (changed=%s)",
                from_version or "unknown",
                to_version,
                changed,
            )
            log_event(
                "store.migrated",
                {
                    "from_version": from_version,
                    "to_version": to_version,
                    "changed": changed,
                    "entries": len(migrated),
                },
            )
            return changed

    # ---------------------------------------------------------------- entries

    def list_entries(self) -> list[Entry]:
        """Entries, most recent ``date`` first (ties: higher id first)."""

        if not self.available:
            return []
        entries = self._decode_entries(self._read_raw_entries())
        return sorted(entries, key=lambda entry: entry.sort_key(), reverse=True)

    def get_entry(self, entry_id: int) -> Entry | None:
        for entry in self.list_entries():
            if entry.id == entry_id:
                return entry
        return None

    def save_entry(self, draft: Mapping[str, Any] | Entry) -> Entry | None:
        """Insert a new entry or shallow-merge a draft into an existing one.

        Keys present in the draft win, even when their value is empty; keys
        absent from the draft keep their stored value.
        """

        data = draft.to_dict() if isinstance(draft, Entry) else dict(draft)
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Entry text is required", field="text")
        entry_id = data.get("id")
        if entry_id is not None and (
            not isinstance(entry_id, int) or isinstance(entry_id, bool)
        ):
            raise ValidationError("Entry id must be an integer", field="id")
        if not self.available:
            return None

        with self._lock:
            raw = self._read_raw_entries()
            now = iso_timestamp(self._clock())
            index = _index_of(raw, entry_id) if entry_id is not None else None

            changes = {key: data[key] for key in _DRAFT_FIELDS if key in data}
            changes["text"] = text.strip()
            if changes.get("date") is None:
                changes.pop("date", None)
            if "context" in changes:
                context = changes["context"] or ""
                if not isinstance(context, str):
                    raise ValidationError(
                        "Entry context must be a string", field="context"
                    )
                changes["context"] = context.strip()
            if "tags" in changes and changes["tags"] is None:
                changes["tags"] = []
            if "analyses" in changes:
                changes["analyses"] = _analyses_to_dict(changes["analyses"])

            if index is None:
                if entry_id is None:
                    changes["id"] = self._next_id(raw)
                record = {
                    "date": now,
                    "context": "",
                    "tags": [],
                    "analyses": {},
                    **changes,
                    "createdAt": now,
                }
            else:
                existing = raw[index] if isinstance(raw[index], dict) else {}
                record = {**existing, **changes}
                record["createdAt"] = existing.get("createdAt") or now
            record["schemaVersion"] = self.schema_version
            record["updatedAt"] = now

            entry = Entry.from_dict(record)
            if index is None:
                raw.insert(0, entry.to_dict())
            else:
                raw[index] = entry.to_dict()
            self._write_raw_entries(raw)

        log_event(
            "store.entry.saved",
            {
                "entry_id": entry.id,
                "created": index is None,
                "text_len": len(entry.text),
            },
        )
        return entry

    def delete_entry(self, entry_id: int) -> bool:
        if not self.available:
            return False
        with self._lock:
            raw = self._read_raw_entries()
            index = _index_of(raw, entry_id)
            if index is None:
                raise NotFoundError(entry_id)
            del raw[index]
            self._write_raw_entries(raw)
        log_event("store.entry.deleted", {"entry_id": entry_id})
        return True

    # --------------------------------------------------------------- analyses

    def upsert_analysis(self, entry_id: int, method: str, result: str) -> Entry | None:
        """Store ``result`` under ``method``; last write wins per method."""

        if not self.available:
            return None
        with self._lock:
            entry = self._require(entry_id)
            entry.analyses[method] = AnalysisResult(
                result=result, timestamp=iso_timestamp(self._clock())
            )
            saved = self.save_entry(
                {"id": entry.id, "text": entry.text, "analyses": entry.analyses}
            )
        log_event("store.analysis.saved", {"entry_id": entry_id, "method": method})
        return saved

    def remove_analysis(self, entry_id: int, method: str) -> Entry | None:
        if not self.available:
            return None
        with self._lock:
            entry = self._require(entry_id)
            if method not in entry.analyses:
                raise AnalysisNotFoundError(entry_id, method)
            del entry.analyses[method]
            saved = self.save_entry(
                {"id": entry.id, "text": entry.text, "analyses": entry.analyses}
            )
        log_event("store.analysis.removed", {"entry_id": entry_id, "method": method})
        return saved

    def remove_all_analyses(self, entry_id: int) -> Entry | None:
        if not self.available:
            return None
        with self._lock:
            entry = self._require(entry_id)
            removed = len(entry.analyses)
            saved = self.save_entry(
                {"id": entry.id, "text": entry.text, "analyses": {}}
            )
        log_event(
            "store.analysis.cleared", {"entry_id": entry_id, "removed": removed}
        )
        return saved

    # --------------------------------------------------------------- settings

    def get_settings(self) -> dict[str, Any]:
        if not self.available:
            return {}
        raw = self.area.get(SETTINGS_KEY)
        if raw is None:
            return {}
        try:
            settings = json.loads(raw)
        except ValueError:
            _LOGGER.warning("Settings are corrupted; returning empty settings")
            return {}
        return settings if isinstance(settings, dict) else {}

    def save_settings(self, settings: Mapping[str, Any]) -> dict[str, Any]:
        """Merge ``settings`` into the stored settings (last write wins)."""

        if not self.available:
            return {}
        with self._lock:
            merged = {**self.get_settings(), **dict(settings)}
            self.area.set(SETTINGS_KEY, json.dumps(merged, ensure_ascii=False))
        return merged

    # ------------------------------------------------------ export and import

    def export_all(self) -> str:
        document = {
            "entries": [entry.to_dict() for entry in self.list_entries()],
            "settings": self.get_settings(),
            "schemaVersion": self.schema_version,
            "exportedAt": iso_timestamp(self._clock()),
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    def import_all(self, document: str | Mapping[str, Any]) -> bool:
        """Replace entries (and merge settings) from an exported document.

        The document is fully validated before anything is written; if a write
        fails part-way the previous entries, settings and schema tag are
        restored.
        """

        data = _parse_document(document)
        entries = data.get("entries")
        if not isinstance(entries, list):
            raise ValidationError("Invalid import format: 'entries' must be a list")
        settings = data.get("settings")
        if settings is not None and not isinstance(settings, dict):
            raise ValidationError("Invalid import format: 'settings' must be an object")

        migrated, _ = migrate_entries(entries, self.schema_version)
        normalized: list[dict[str, Any]] = []
        seen: set[int] = set()
        for position, record in enumerate(migrated):
            try:
                entry = Entry.from_dict(record)
            except ValidationError as exc:
                raise ValidationError(
                    f"Invalid entry at position {position}: {exc.message}",
                    field=exc.field,
                ) from exc
            if entry.id in seen:
                raise ValidationError(f"Duplicate entry id {entry.id} in import")
            seen.add(entry.id)
            normalized.append(entry.to_dict())

        if not self.available:
            return False

        with self._lock:
            snapshot = {
                key: self.area.get(key)
                for key in (ENTRIES_KEY, SETTINGS_KEY, VERSION_KEY)
            }
            try:
                self._write_raw_entries(normalized)
                if settings:
                    self.save_settings(settings)
                self.area.set(VERSION_KEY, self.schema_version)
            except Exception:
                _LOGGER.exception("Import failed; restoring previous data")
                self._restore(snapshot)
                log_event("store.import.rolled_back", {"entries": len(normalized)})
                raise
        log_event("store.import.completed", {"entries": len(normalized)})
        return True

    def clear_all(self) -> bool:
        with self._lock:
            for key in self.area.keys():
                self.area.remove(key)
            log_event("store.cleared", {})
            return self.initialize()

    # ------------------------------------------------------------- statistics

    def compute_statistics(self) -> Statistics:
        entries = self.list_entries()
        now = self._clock()
        count = len(entries)
        this_month = 0
        for entry in entries:
            moment = parse_timestamp(entry.date).astimezone(now.tzinfo)
            if (moment.year, moment.month) == (now.year, now.month):
                this_month += 1
        return Statistics(
            total_entries=count,
            total_analyses=sum(len(entry.analyses) for entry in entries),
            average_entry_length=(
                int(sum(len(entry.text) for entry in entries) / count + 0.5)
                if count
                else 0
            ),
            oldest_entry=entries[-1].date if entries else None,
            newest_entry=entries[0].date if entries else None,
            entries_this_month=this_month,
        )

    # -------------------------------------------------------------- internals

    def _require(self, entry_id: int) -> Entry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        return entry

    def _read_raw_entries(self) -> list[Any]:
        raw = self.area.get(ENTRIES_KEY)
        if raw is None:
            return []
        try:
            records = json.loads(raw)
        except ValueError:
            _LOGGER.warning("Entry data is corrupted; treating as empty")
            return []
        if not isinstance(records, list):
            _LOGGER.warning("Entry data is not a list; treating as empty")
            return []
        return records

    def _write_raw_entries(self, records: list[Any]) -> None:
        self.area.set(ENTRIES_KEY, json.dumps(records, ensure_ascii=False))

    def _decode_entries(self, records: list[Any]) -> list[Entry]:
        entries: list[Entry] = []
        for record in records:
            try:
                entries.append(Entry.from_dict(record))
            except ValidationError as exc:
                record_id = record.get("id") if isinstance(record, dict) else None
                _LOGGER.warning("Skipping invalid entry %s: %s", record_id, exc)
        return entries

    def _next_id(self, records: list[Any]) -> int:
        taken = {r.get("id") for r in records if isinstance(r, dict)}
        candidate = int(self._clock().timestamp() * 1000)
        while candidate in taken:
            candidate += 1
        return candidate

    def _restore(self, snapshot: Mapping[str, str | None]) -> None:
        for key, value in snapshot.items():
            if value is None:
                self.area.remove(key)
            else:
                self.area.set(key, value)


def open_store(data_dir: Path | None = None) -> RecordStore:
    """Build and initialise a store over a directory area."""

    store = RecordStore(DirectoryArea(data_dir or CONFIG.data_dir))
    store.initialize()
    return store


def _index_of(records: list[Any], entry_id: Any) -> int | None:
    for index, record in enumerate(records):
        if isinstance(record, dict) and record.get("id") == entry_id:
            return index
    return None


def _analyses_to_dict(analyses: Any) -> Any:
    if not isinstance(analyses, Mapping):
        return analyses
    return {
        method: value.to_dict() if isinstance(value, AnalysisResult) else value
        for method, value in analyses.items()
    }


def _parse_document(document: str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as exc:
            raise ValidationError(f"Invalid import document: {exc}") from exc
    if not isinstance(document, Mapping):
        raise ValidationError("Invalid import format: expected an object")
    return document
