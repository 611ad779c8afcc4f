"""Tests for time utilities."""

from datetime import datetime, timezone

from convoy.infra.time import from_unix, parse_iso, to_iso, utc_now


class TestUtcNow:
    """Tests for utc_now()."""

    def test_returns_utc_datetime(self):
        assert utc_now().tzinfo == timezone.utc

    def test_returns_current_time(self):
        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert before <= now <= after


class TestFromUnix:
    def test_string_seconds(self):
        assert from_unix("1704067200") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_int_seconds(self):
        assert from_unix(1704067200) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_missing_or_garbage(self):
        assert from_unix(None) is None
        assert from_unix("") is None
        assert from_unix("yesterday") is None


class TestIso:
    def test_round_trip(self):
        value = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
        assert parse_iso(to_iso(value)) == value

    def test_none(self):
        assert to_iso(None) is None
        assert parse_iso(None) is None

    def test_datetime_passthrough(self):
        value = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parse_iso(value) is value
