"""Tests for the shared date helpers."""

from datetime import UTC, date, datetime, timedelta, timezone

from library_circulation.dates import as_datetime, late_days, utcnow


class TestAsDatetime:
    def test_date_is_midnight(self):
        assert as_datetime(date(2024, 3, 1)) == datetime(2024, 3, 1, 0, 0)

    def test_naive_datetime_is_unchanged(self):
        value = datetime(2024, 3, 1, 9, 30)
        assert as_datetime(value) is value

    def test_aware_datetime_becomes_naive_utc(self):
        tokyo = timezone(timedelta(hours=9))
        converted = as_datetime(datetime(2024, 3, 1, 9, 30, tzinfo=tokyo))

        assert converted == datetime(2024, 3, 1, 0, 30)
        assert converted.tzinfo is None

    def test_aware_and_naive_values_compare(self):
        stored = datetime(2024, 3, 1, 12, 0)
        assert as_datetime(datetime(2024, 3, 1, 12, 1, tzinfo=UTC)) > stored


def test_utcnow_is_naive():
    now = utcnow()
    assert now.tzinfo is None
    assert abs(datetime.now(UTC).replace(tzinfo=None) - now) < timedelta(seconds=5)


def test_late_days_accepts_mixed_inputs():
    due = datetime(2024, 3, 1, 10, 0)
    assert late_days(due, datetime(2024, 3, 2, 10, 0, tzinfo=UTC)) == 1
    assert late_days(due, datetime(2024, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=2)))) == 1
    assert late_days(due, date(2024, 3, 1)) == 0
