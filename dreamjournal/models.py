from __future__ import annotations

"""Persisted entity schemas.

Records are stored as plain JSON objects using camelCase keys. The dataclasses
here are the only way records leave the store, and ``from_dict`` validates
every record on read so out-of-band edits to the data files are caught early.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import ValidationError
from .utils.time_utils import parse_timestamp

DEFAULT_SETTINGS: dict[str, Any] = {
    "theme": "dark",
    "language": "en",
    "notifications": True,
    "voiceRecognition": True,
    "autoSave": True,
}


@dataclass
class AnalysisResult:
    result: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"result": self.result, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Any) -> "AnalysisResult":
        if not isinstance(data, Mapping):
            raise ValidationError("Analysis must be an object", field="analyses")
        result = data.get("result")
        timestamp = data.get("timestamp")
        if not isinstance(result, str):
            raise ValidationError("Analysis result must be a string", field="analyses")
        if not isinstance(timestamp, str):
            raise ValidationError(
                "Analysis timestamp must be a string", field="analyses"
            )
        return cls(result=result, timestamp=timestamp)


@dataclass
class Entry:
    """Single journal record."""

    id: int
    date: str
    text: str
    context: str = ""
    tags: list[str] = field(default_factory=list)
    analyses: dict[str, AnalysisResult] = field(default_factory=dict)
    schema_version: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "text": self.text,
            "context": self.context,
            "tags": list(self.tags),
            "analyses": {
                method: analysis.to_dict()
                for method, analysis in self.analyses.items()
            },
            "schemaVersion": self.schema_version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Entry":
        if not isinstance(data, Mapping):
            raise ValidationError("Entry must be an object")

        entry_id = data.get("id")
        # bool is an int subclass; reject it explicitly
        if not isinstance(entry_id, int) or isinstance(entry_id, bool):
            raise ValidationError("Entry id must be an integer", field="id")

        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Entry text must be a non-empty string", field="text")

        date = data.get("date")
        if not isinstance(date, str):
            raise ValidationError("Entry date must be an ISO 8601 string", field="date")
        try:
            parse_timestamp(date)
        except ValueError as exc:
            raise ValidationError(
                f"Entry date is not ISO 8601: {date}", field="date"
            ) from exc

        context = data.get("context") or ""
        if not isinstance(context, str):
            raise ValidationError("Entry context must be a string", field="context")

        tags = data.get("tags") or []
        if isinstance(tags, (set, frozenset)):
            tags = sorted(tags, key=str)
        if not isinstance(tags, (list, tuple)) or not all(
            isinstance(tag, str) for tag in tags
        ):
            raise ValidationError("Entry tags must be a list of strings", field="tags")

        raw_analyses = data.get("analyses") or {}
        if not isinstance(raw_analyses, Mapping):
            raise ValidationError("Entry analyses must be an object", field="analyses")
        analyses = {
            str(method): AnalysisResult.from_dict(value)
            for method, value in raw_analyses.items()
        }

        return cls(
            id=entry_id,
            date=date,
            text=text,
            context=context,
            # tags form a set; keep first-seen order
            tags=list(dict.fromkeys(tags)),
            analyses=analyses,
            schema_version=str(data.get("schemaVersion") or ""),
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
        )

    def sort_key(self) -> tuple:
        return (parse_timestamp(self.date), self.id)


@dataclass
class Statistics:
    total_entries: int
    total_analyses: int
    average_entry_length: int
    oldest_entry: str | None
    newest_entry: str | None
    entries_this_month: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "totalAnalyses": self.total_analyses,
            "averageEntryLength": self.average_entry_length,
            "oldestEntry": self.oldest_entry,
            "newestEntry": self.newest_entry,
            "entriesThisMonth": self.entries_this_month,
        }
