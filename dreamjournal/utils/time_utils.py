from __future__ import annotations

"""Timestamp helpers.

These helpers standardize how timestamps are produced, parsed and bucketed
across the store and the rate limiter. All values are UTC.
"""

from datetime import datetime, timezone

HOUR_BUCKET_FORMAT = "%Y-%m-%d-%H"
HOUR_BUCKET_LENGTH = len("2000-01-01-00")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime | None = None) -> str:
    """Return an ISO 8601 string with millisecond precision and a Z suffix."""
    moment = (moment or utc_now()).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 string; naive values are taken as UTC.

    Raises ValueError for anything that is not ISO 8601.
    """
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hour_bucket(moment: datetime) -> str:
    """Truncate to hour granularity, e.g. ``2024-03-01-17``."""
    return moment.astimezone(timezone.utc).strftime(HOUR_BUCKET_FORMAT)


def parse_hour_bucket(bucket: str) -> datetime:
    return datetime.strptime(bucket, HOUR_BUCKET_FORMAT).replace(tzinfo=timezone.utc)
