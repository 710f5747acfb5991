from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
import json

import pytest

from dreamjournal.ratelimit import (
    FALLBACK_CLIENT_ID,
    RateLimiter,
    client_identifier,
)


class _Clock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


def _clock() -> _Clock:
    return _Clock(datetime(2024, 3, 1, 17, 30, tzinfo=timezone.utc))


def test_fresh_client_is_allowed_without_ledger(tmp_path):
    limiter = RateLimiter(3, ledger_path=tmp_path / "rate_limit.json")

    assert limiter.is_allowed("1.2.3.4") is True
    assert not (tmp_path / "rate_limit.json").exists()


def test_threshold_blocks_within_the_same_hour(tmp_path):
    limiter = RateLimiter(3, ledger_path=tmp_path / "rate_limit.json", clock=_clock())

    for _ in range(3):
        assert limiter.is_allowed("1.2.3.4")
        limiter.record("1.2.3.4")

    assert limiter.is_allowed("1.2.3.4") is False
    assert limiter.is_allowed("5.6.7.8") is True
    assert limiter.count("1.2.3.4") == 3


def test_new_hour_resets_the_count():
    clock = _clock()
    limiter = RateLimiter(1, clock=clock)

    limiter.record("client")
    assert limiter.is_allowed("client") is False

    clock.advance(minutes=30)
    assert limiter.is_allowed("client") is True


def test_ledger_file_uses_client_and_hour_keys(tmp_path):
    path = tmp_path / "rate_limit.json"
    limiter = RateLimiter(10, ledger_path=path, clock=_clock())

    limiter.record("1.2.3.4")
    limiter.record("1.2.3.4")

    assert json.loads(path.read_text()) == {"1.2.3.4-2024-03-01-17": 2}


def test_stale_buckets_are_pruned_on_record(tmp_path):
    path = tmp_path / "rate_limit.json"
    path.write_text(
        json.dumps(
            {
                "old-client-2024-02-27-10": 4,
                "recent-client-2024-03-01-05": 2,
                "garbage": 1,
            }
        )
    )
    limiter = RateLimiter(10, ledger_path=path, clock=_clock())

    limiter.record("1.2.3.4")

    ledger = json.loads(path.read_text())
    assert "old-client-2024-02-27-10" not in ledger
    assert "garbage" not in ledger
    assert ledger["recent-client-2024-03-01-05"] == 2
    assert ledger["1.2.3.4-2024-03-01-17"] == 1


def test_ipv6_client_keys_survive_pruning(tmp_path):
    path = tmp_path / "rate_limit.json"
    limiter = RateLimiter(10, ledger_path=path, clock=_clock())

    limiter.record("2001:db8::1")
    limiter.record("2001:db8::1")

    assert limiter.count("2001:db8::1") == 2


def test_corrupt_ledger_is_treated_as_empty(tmp_path):
    path = tmp_path / "rate_limit.json"
    path.write_text("{not json")
    limiter = RateLimiter(2, ledger_path=path, clock=_clock())

    assert limiter.is_allowed("client") is True
    assert limiter.record("client") == 1


def test_concurrent_records_are_not_lost(tmp_path):
    limiter = RateLimiter(
        1000, ledger_path=tmp_path / "rate_limit.json", clock=_clock()
    )

    with ThreadPoolExecutor(max_workers=10) as pool:
        list(pool.map(lambda _: limiter.record("client"), range(50)))

    assert limiter.count("client") == 50


def test_negative_threshold_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter(-1)


def test_client_identifier_prefers_public_forwarded_address():
    headers = {"X-Forwarded-For": "8.8.8.8, 10.0.0.1"}

    assert client_identifier(headers, "10.0.0.2") == "8.8.8.8"


def test_client_identifier_skips_private_and_malformed_headers():
    headers = {
        "X-Forwarded-For": "192.168.1.5",
        "X-Real-IP": "not-an-ip",
        "Client-IP": "1.1.1.1",
    }

    assert client_identifier(headers, "127.0.0.1") == "1.1.1.1"


def test_client_identifier_falls_back_to_remote_address():
    assert client_identifier({"X-Real-IP": "127.0.0.1"}, "10.1.1.1") == "10.1.1.1"
    assert client_identifier({}, None) == FALLBACK_CLIENT_ID
