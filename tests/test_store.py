from __future__ import annotations

from datetime import datetime, timezone
import json

import pytest

from dreamjournal.errors import AnalysisNotFoundError, NotFoundError, ValidationError
from dreamjournal.models import DEFAULT_SETTINGS, Entry
from dreamjournal.storage import DirectoryArea, MemoryArea
from dreamjournal.store import (
    CURRENT_SCHEMA_VERSION,
    RecordStore,
    migrate_entries,
    open_store,
)


def _fixed_clock(moment: datetime):
    return lambda: moment


def _make_store(area=None, moment=None) -> RecordStore:
    moment = moment or datetime(2024, 3, 15, 8, 30, tzinfo=timezone.utc)
    store = RecordStore(area or MemoryArea(), clock=_fixed_clock(moment))
    assert store.initialize() is True
    return store


class _ReadOnlyArea(MemoryArea):
    def set(self, key: str, value: str) -> None:
        raise PermissionError("read-only")


class _FailingVersionArea(MemoryArea):
    """Fails the next write of the schema tag once armed."""

    armed = False

    def set(self, key: str, value: str) -> None:
        if self.armed and key == "schemaVersion":
            self.armed = False
            raise OSError("disk full")
        super().set(key, value)


def test_initialize_seeds_empty_key_space():
    area = MemoryArea()
    store = _make_store(area)

    assert json.loads(area.data["entries"]) == []
    assert json.loads(area.data["settings"]) == DEFAULT_SETTINGS
    assert area.data["schemaVersion"] == CURRENT_SCHEMA_VERSION
    assert "__storage_probe__" not in area.data
    assert store.list_entries() == []


def test_unavailable_area_degrades_to_noop():
    store = RecordStore(_ReadOnlyArea())

    assert store.initialize() is False
    assert store.available is False
    assert store.list_entries() == []
    assert store.save_entry({"text": "A dream about trains"}) is None
    assert store.get_settings() == {}


def test_save_entry_inserts_with_defaults():
    store = _make_store()

    entry = store.save_entry({"text": "  I was flying over the sea  "})

    assert entry is not None
    assert entry.text == "I was flying over the sea"
    assert entry.context == ""
    assert entry.tags == []
    assert entry.analyses == {}
    assert entry.schema_version == CURRENT_SCHEMA_VERSION
    assert entry.created_at == entry.updated_at == "2024-03-15T08:30:00.000Z"
    moment = datetime(2024, 3, 15, 8, 30, tzinfo=timezone.utc)
    assert entry.id == int(moment.timestamp() * 1000)
    assert store.get_entry(entry.id) == entry


def test_save_entry_rejects_empty_text():
    store = _make_store()

    with pytest.raises(ValidationError):
        store.save_entry({"text": "   "})
    with pytest.raises(ValidationError):
        store.save_entry({"context": "calm"})
    assert store.list_entries() == []


def test_save_entry_rejects_non_string_context():
    store = _make_store()

    with pytest.raises(ValidationError) as excinfo:
        store.save_entry({"text": "A dream about trains", "context": 42})

    assert excinfo.value.field == "context"
    assert store.list_entries() == []


def test_save_entry_accepts_tag_sets():
    store = _make_store()

    entry = store.save_entry({"text": "A dream about trains", "tags": {"b", "a"}})

    assert entry.tags == ["a", "b"]
    assert store.get_entry(entry.id).tags == ["a", "b"]


def test_ids_are_unique_under_a_frozen_clock():
    store = _make_store()

    first = store.save_entry({"text": "First dream"})
    second = store.save_entry({"text": "Second dream"})

    assert first is not None and second is not None
    assert second.id == first.id + 1


def test_update_preserves_created_at_and_merges_fields():
    area = MemoryArea()
    early = datetime(2024, 3, 1, tzinfo=timezone.utc)
    store = _make_store(area, early)
    entry = store.save_entry(
        {"text": "Original dream", "context": "anxious", "tags": ["sea"]}
    )
    assert entry is not None

    next_day = datetime(2024, 3, 2, tzinfo=timezone.utc)
    later = RecordStore(area, clock=_fixed_clock(next_day))
    later.initialize()
    updated = later.save_entry({"id": entry.id, "text": "Edited dream"})

    assert updated is not None
    assert updated.text == "Edited dream"
    assert updated.context == "anxious"
    assert updated.tags == ["sea"]
    assert updated.created_at == entry.created_at
    assert updated.updated_at == "2024-03-02T00:00:00.000Z"
    assert len(later.list_entries()) == 1


def test_present_empty_field_overwrites():
    store = _make_store()
    entry = store.save_entry({"text": "Dream text", "context": "tired"})
    assert entry is not None

    updated = store.save_entry({"id": entry.id, "text": "Dream text", "context": ""})

    assert updated is not None
    assert updated.context == ""


def test_duplicate_tags_collapse():
    store = _make_store()

    entry = store.save_entry({"text": "Dream text", "tags": ["a", "b", "a"]})

    assert entry is not None
    assert entry.tags == ["a", "b"]


def test_list_entries_sorted_by_date_descending():
    store = _make_store()
    store.save_entry({"id": 1, "text": "old", "date": "2024-01-01T00:00:00.000Z"})
    store.save_entry({"id": 2, "text": "new", "date": "2024-02-01T00:00:00.000Z"})
    store.save_entry({"id": 3, "text": "tie", "date": "2024-02-01T00:00:00.000Z"})

    assert [entry.id for entry in store.list_entries()] == [3, 2, 1]


def test_invalid_records_are_skipped_on_read_but_kept_on_write():
    area = MemoryArea()
    store = _make_store(area)
    area.data["entries"] = json.dumps(
        [
            {"id": "not-an-int", "text": "broken", "date": "2024-01-01"},
            {"id": 5, "text": "fine", "date": "2024-01-01T00:00:00Z"},
        ]
    )

    assert [entry.id for entry in store.list_entries()] == [5]

    store.save_entry({"text": "another"})
    raw = json.loads(area.data["entries"])
    assert any(record.get("id") == "not-an-int" for record in raw)


def test_delete_entry():
    store = _make_store()
    entry = store.save_entry({"text": "To be deleted"})
    assert entry is not None

    assert store.delete_entry(entry.id) is True
    assert store.get_entry(entry.id) is None
    with pytest.raises(NotFoundError):
        store.delete_entry(entry.id)


def test_analysis_upsert_and_removal():
    store = _make_store()
    entry = store.save_entry({"text": "Dream with analyses"})
    assert entry is not None

    store.upsert_analysis(entry.id, "jungian", "first")
    store.upsert_analysis(entry.id, "jungian", "second")
    saved = store.upsert_analysis(entry.id, "poem", "roses")

    assert saved is not None
    assert saved.analyses["jungian"].result == "second"
    assert set(saved.analyses) == {"jungian", "poem"}

    after = store.remove_analysis(entry.id, "jungian")
    assert after is not None and set(after.analyses) == {"poem"}
    with pytest.raises(AnalysisNotFoundError):
        store.remove_analysis(entry.id, "jungian")

    cleared = store.remove_all_analyses(entry.id)
    assert cleared is not None and cleared.analyses == {}
    assert cleared.text == "Dream with analyses"


def test_analysis_on_missing_entry_raises():
    store = _make_store()

    with pytest.raises(NotFoundError):
        store.upsert_analysis(42, "poem", "text")


def test_settings_merge():
    store = _make_store()

    merged = store.save_settings({"theme": "light", "extra": 1})

    assert merged["theme"] == "light"
    assert merged["extra"] == 1
    assert merged["autoSave"] is True
    assert store.get_settings() == merged


def test_migrate_entries_backfills_and_is_idempotent():
    records = [
        {"id": 1, "text": "legacy", "date": "2023-01-01", "version": "1.0.0"},
        {"id": 2, "text": "no tags", "date": "2023-01-02", "tags": None},
    ]

    migrated, changed = migrate_entries(records, "1.1.0")

    assert changed is True
    assert migrated[0]["schemaVersion"] == "1.0.0"
    assert "version" not in migrated[0]
    assert migrated[0]["tags"] == [] and migrated[0]["analyses"] == {}
    assert migrated[1]["schemaVersion"] == "1.1.0"
    assert "schemaVersion" not in records[1]

    again, changed_again = migrate_entries(migrated, "1.1.0")
    assert changed_again is False
    assert again == migrated


def test_initialize_migrates_on_version_mismatch(tmp_path):
    area = DirectoryArea(tmp_path)
    area.set("schemaVersion", "1.0.0")
    area.set(
        "entries",
        json.dumps([{"id": 7, "text": "old dream", "date": "2023-05-01T10:00:00Z"}]),
    )

    store = _make_store(area)

    assert area.get("schemaVersion") == CURRENT_SCHEMA_VERSION
    entries = store.list_entries()
    assert len(entries) == 1
    assert entries[0].tags == [] and entries[0].analyses == {}
    raw = json.loads(area.get("entries") or "[]")
    assert raw[0]["analyses"] == {}


def test_export_import_roundtrip_into_fresh_store():
    source = _make_store()
    source.save_entry({"text": "Exported dream", "context": "happy", "tags": ["x"]})
    source.save_settings({"theme": "light"})
    document = source.export_all()

    payload = json.loads(document)
    assert payload["schemaVersion"] == CURRENT_SCHEMA_VERSION
    assert "exportedAt" in payload

    target = _make_store()
    assert target.import_all(document) is True

    assert [e.to_dict() for e in target.list_entries()] == [
        e.to_dict() for e in source.list_entries()
    ]
    assert target.get_settings()["theme"] == "light"


def test_import_rejects_bad_documents_without_writing():
    store = _make_store()
    store.save_entry({"text": "keep me"})
    before = store.export_all()

    with pytest.raises(ValidationError):
        store.import_all("not json")
    with pytest.raises(ValidationError):
        store.import_all({"entries": "nope"})
    with pytest.raises(ValidationError):
        store.import_all({"entries": [{"id": 1, "text": "", "date": "2024-01-01"}]})
    with pytest.raises(ValidationError):
        store.import_all(
            {
                "entries": [
                    {"id": 1, "text": "a", "date": "2024-01-01"},
                    {"id": 1, "text": "b", "date": "2024-01-02"},
                ]
            }
        )

    assert [e.text for e in store.list_entries()] == ["keep me"]
    assert json.loads(store.export_all())["entries"] == json.loads(before)["entries"]


def test_import_rolls_back_on_write_failure():
    area = _FailingVersionArea()
    store = _make_store(area)
    store.save_entry({"text": "original"})
    area.armed = True

    with pytest.raises(OSError):
        store.import_all(
            {
                "entries": [{"id": 9, "text": "new", "date": "2024-01-01"}],
                "settings": {"theme": "light"},
            }
        )

    assert [e.text for e in store.list_entries()] == ["original"]
    assert store.get_settings()["theme"] == DEFAULT_SETTINGS["theme"]


def test_clear_all_resets_to_defaults():
    area = MemoryArea()
    store = _make_store(area)
    store.save_entry({"text": "gone soon"})
    store.save_settings({"theme": "light"})

    assert store.clear_all() is True

    assert store.list_entries() == []
    assert store.get_settings() == DEFAULT_SETTINGS


def test_compute_statistics():
    store = _make_store(moment=datetime(2024, 3, 15, tzinfo=timezone.utc))
    store.save_entry({"id": 1, "text": "abc", "date": "2024-01-10T00:00:00Z"})
    store.save_entry({"id": 2, "text": "abcdef", "date": "2024-03-01T00:00:00Z"})
    store.upsert_analysis(2, "poem", "verse")

    stats = store.compute_statistics()

    assert stats.total_entries == 2
    assert stats.total_analyses == 1
    # (3 + 6) / 2 = 4.5 rounds half up
    assert stats.average_entry_length == 5
    assert stats.oldest_entry == "2024-01-10T00:00:00Z"
    assert stats.newest_entry == "2024-03-01T00:00:00Z"
    assert stats.entries_this_month == 1
    assert stats.to_dict()["totalEntries"] == 2


def test_statistics_on_empty_store():
    stats = _make_store().compute_statistics()

    assert stats.total_entries == 0
    assert stats.average_entry_length == 0
    assert stats.oldest_entry is None and stats.newest_entry is None


def test_entry_from_dict_rejects_bool_id():
    with pytest.raises(ValidationError):
        Entry.from_dict({"id": True, "text": "x", "date": "2024-01-01"})


def test_open_store_uses_directory(tmp_path):
    store = open_store(tmp_path / "data")

    assert store.available is True
    assert (tmp_path / "data" / "entries.json").exists()
