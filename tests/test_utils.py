from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from curatorsync.utils import parse_iso, to_iso


def test_to_iso_treats_naive_datetimes_as_utc() -> None:
    assert to_iso(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03:04:05+00:00"
    assert to_iso(None) is None


def test_to_iso_keeps_offsets() -> None:
    value = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=-3)))

    assert to_iso(value) == "2025-01-02T03:04:05-03:00"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2025-01-02T03:04:05Z", datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)),
        ("2025-01-02T03:04:05+00:00", datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)),
        ("2025-01-02T03:04:05", datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)),
        ("not a date", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_iso(raw: str | None, expected: datetime | None) -> None:
    assert parse_iso(raw) == expected
