from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from profile_engine.clock import SteppingClock, from_utc_text, to_utc_text
from profile_engine.data_models import Credentials, credentials_fingerprint, mask_api_key


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("", "****"),
        ("short", "****"),
        ("12345678", "****"),
        ("sk-abcdefghij", "sk-a...ghij"),
    ],
)
def test_mask_api_key(key: str, expected: str) -> None:
    assert mask_api_key(key) == expected


def test_credentials_fingerprint_covers_every_field() -> None:
    base = Credentials("k", "https://u", None)

    assert credentials_fingerprint(base) == credentials_fingerprint(Credentials("k", "https://u"))
    assert credentials_fingerprint(base) != credentials_fingerprint(Credentials("k", "https://u", "chat"))
    assert credentials_fingerprint(base) != credentials_fingerprint(Credentials("k2", "https://u"))


def test_utc_text_roundtrip() -> None:
    value = datetime(2026, 1, 1, 1, 2, 3, tzinfo=timezone.utc)

    assert to_utc_text(value) == "2026-01-01T01:02:03Z"
    assert from_utc_text(to_utc_text(value)) == value


def test_stepping_clock_is_strictly_increasing() -> None:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    clock = SteppingClock(start=start, step=timedelta(milliseconds=5))

    assert [clock.now() for _ in range(3)] == [
        start,
        start + timedelta(milliseconds=5),
        start + timedelta(milliseconds=10),
    ]
