"""Tests for remote date-time parsing and formatting."""

from datetime import datetime, timedelta, timezone

import pytest

from graph_renewal.utils.timestamps import (
    expiry_from_now,
    expiry_from_seconds,
    format_remote_datetime,
    parse_remote_datetime,
    utc_now,
)


class TestParseRemoteDatetime:
    def test_trailing_z(self):
        parsed = parse_remote_datetime("2026-10-22T06:30:00Z")
        assert parsed == datetime(2026, 10, 22, 6, 30, tzinfo=timezone.utc)

    def test_seven_digit_fraction_is_truncated(self):
        parsed = parse_remote_datetime("2026-10-22T06:30:00.1234567Z")
        assert parsed.microsecond == 123456
        assert parsed.tzinfo == timezone.utc

    def test_short_fraction_is_padded(self):
        parsed = parse_remote_datetime("2026-10-22T06:30:00.5Z")
        assert parsed.microsecond == 500000

    def test_explicit_offset_converted_to_utc(self):
        parsed = parse_remote_datetime("2026-10-22T08:30:00+02:00")
        assert parsed == datetime(2026, 10, 22, 6, 30, tzinfo=timezone.utc)

    def test_naive_value_taken_as_utc(self):
        parsed = parse_remote_datetime("2026-10-22T06:30:00")
        assert parsed.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["", "not-a-date", None])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(ValueError):
            parse_remote_datetime(value)


class TestFormatRemoteDatetime:
    def test_millisecond_precision_with_z(self):
        value = datetime(2026, 10, 22, 6, 30, 0, 123456, tzinfo=timezone.utc)
        assert format_remote_datetime(value) == "2026-10-22T06:30:00.123Z"

    def test_offset_normalized_to_utc(self):
        value = datetime(2026, 10, 22, 8, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_remote_datetime(value) == "2026-10-22T06:30:00.000Z"

    def test_naive_rejected(self):
        with pytest.raises(ValueError):
            format_remote_datetime(datetime(2026, 10, 22, 6, 30))


class TestExpiryHelpers:
    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is not None

    def test_expiry_from_now(self):
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert expiry_from_now(4230, now=now) == now + timedelta(minutes=4230)

    def test_expiry_from_seconds_accepts_string(self):
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert expiry_from_seconds("3599", now=now) == now + timedelta(seconds=3599)
