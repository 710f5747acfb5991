from __future__ import annotations

"""Per-client, per-hour request limiting for the proxy endpoints.

The ledger is a flat map ``"{client_id}-{YYYY-MM-DD-HH}" -> count``. A client can
burst up to twice the threshold across an hour boundary; in exchange lookups
are O(1) and stale buckets are pruned inline on write, with no sweeper.
"""

from datetime import datetime, timedelta
import ipaddress
import logging
import threading
from pathlib import Path
from typing import Callable, Mapping

from .events import log_event
from .storage import read_json, write_json_atomic
from .utils.time_utils import (
    HOUR_BUCKET_LENGTH,
    hour_bucket,
    parse_hour_bucket,
    utc_now,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)
FALLBACK_CLIENT_ID = "0.0.0.0"
# Checked in order; the first plausible public address wins
CLIENT_ADDRESS_HEADERS = ("x-forwarded-for", "x-real-ip", "client-ip")


class RateLimiter:
    """Hourly request counter for one protected endpoint."""

    def __init__(
        self,
        threshold: int,
        *,
        ledger_path: Path | None = None,
        name: str = "default",
        clock: Callable[[], datetime] = utc_now,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        self.threshold = threshold
        self.ledger_path = ledger_path
        self.name = name
        self._clock = clock
        self._retention = retention
        self._lock = threading.Lock()
        # Used only when no ledger_path is configured
        self._memory_ledger: dict[str, int] = {}

    def is_allowed(self, client_id: str) -> bool:
        key = self._key(client_id)
        with self._lock:
            ledger = self._load()
        if ledger is None:
            return True
        return ledger.get(key, 0) < self.threshold

    def record(self, client_id: str) -> int:
        """Count one request for the current bucket and prune stale buckets.

        Returns the new count for the current bucket.
        """

        now = self._clock()
        key = self._key(client_id, now)
        with self._lock:
            ledger = self._prune(self._load() or {}, now)
            ledger[key] = ledger.get(key, 0) + 1
            self._save(ledger)
            count = ledger[key]
        if count >= self.threshold:
            _LOGGER.info(
                "Client reached %s limit (%s/%s)", self.name, count, self.threshold
            )
            log_event(
                "ratelimit.reached",
                {"limiter": self.name, "count": count, "threshold": self.threshold},
            )
        return count

    def count(self, client_id: str) -> int:
        with self._lock:
            ledger = self._load() or {}
        return ledger.get(self._key(client_id), 0)

    def _key(self, client_id: str, now: datetime | None = None) -> str:
        return f"{client_id}-{hour_bucket(now or self._clock())}"

    def _prune(self, ledger: dict[str, int], now: datetime) -> dict[str, int]:
        cutoff = now - self._retention
        kept: dict[str, int] = {}
        for key, count in ledger.items():
            try:
                bucket_start = parse_hour_bucket(key[-HOUR_BUCKET_LENGTH:])
            except ValueError:
                _LOGGER.debug("Dropping malformed ledger key %r", key)
                continue
            # A bucket is stale once its whole hour lies before the cutoff
            if bucket_start + timedelta(hours=1) <= cutoff:
                continue
            kept[key] = count
        return kept

    def _load(self) -> dict[str, int] | None:
        if self.ledger_path is None:
            return dict(self._memory_ledger) if self._memory_ledger else None
        raw = read_json(self.ledger_path, default=None)
        if raw is None:
            return None
        if not isinstance(raw, dict):
            _LOGGER.warning("Rate limit ledger %s is not a map", self.ledger_path)
            return {}
        return {
            str(key): int(value)
            for key, value in raw.items()
            if isinstance(value, int) and not isinstance(value, bool)
        }

    def _save(self, ledger: dict[str, int]) -> None:
        if self.ledger_path is None:
            self._memory_ledger = ledger
            return
        write_json_atomic(self.ledger_path, ledger)


def client_identifier(headers: Mapping[str, str], remote_addr: str | None) -> str:
    """Derive the client address used as the rate limit key.

    Forwarding headers are only trusted when they name a public address; the
    direct connection address is the fallback.
    """

    lowered = {str(key).lower(): value for key, value in headers.items()}
    for header in CLIENT_ADDRESS_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        candidate = value.split(",")[0].strip()
        if _is_public_address(candidate):
            return candidate
    return remote_addr or FALLBACK_CLIENT_ID


def _is_public_address(value: str) -> bool:
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_unspecified
        or addr.is_multicast
    )
