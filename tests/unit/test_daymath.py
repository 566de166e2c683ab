"""
test_daymath.py - UTC calendar-date helpers.
"""

from datetime import datetime, timezone

import pytest

from rewards_server.daymath import (
    MAX_UNIX_SECONDS,
    add_days,
    days_between_inclusive,
    is_iso_date,
    iso_date_from_unix,
    next_utc_midnight_ms,
    today_iso,
)


class TestDaysBetweenInclusive:

    def test_same_day_counts_as_one(self):
        assert days_between_inclusive("2025-03-15", "2025-03-15") == 1

    def test_ten_days(self):
        assert days_between_inclusive("2025-03-06", "2025-03-15") == 10

    def test_start_in_future_is_zero(self):
        assert days_between_inclusive("2025-03-16", "2025-03-15") == 0

    def test_crosses_month_and_leap_day(self):
        assert days_between_inclusive("2024-02-28", "2024-03-01") == 3

    def test_unparseable_is_zero(self):
        assert days_between_inclusive("not-a-date", "2025-03-15") == 0
        assert days_between_inclusive("", "2025-03-15") == 0


class TestConversions:

    def test_iso_date_from_unix_uses_utc(self):
        # 2025-03-15 23:30 UTC is already the 16th in UTC+2 but must stay the 15th
        ts = int(datetime(2025, 3, 15, 23, 30, tzinfo=timezone.utc).timestamp())
        assert iso_date_from_unix(ts) == "2025-03-15"

    def test_iso_date_from_unix_range(self):
        assert iso_date_from_unix(MAX_UNIX_SECONDS) == "9999-12-31"
        with pytest.raises(ValueError):
            iso_date_from_unix(2 ** 64)
        with pytest.raises(ValueError):
            iso_date_from_unix(-1)

    def test_today_iso_normalizes_offset(self):
        from datetime import timedelta
        local = datetime(2025, 3, 16, 1, 0, tzinfo=timezone(timedelta(hours=3)))
        assert today_iso(local) == "2025-03-15"

    def test_add_days(self):
        assert add_days("2025-01-31", 30) == "2025-03-02"

    def test_is_iso_date(self):
        assert is_iso_date("2025-03-15")
        assert not is_iso_date("2025-3-15")
        assert not is_iso_date("2025-02-30")
        assert not is_iso_date(None)

    def test_next_utc_midnight(self):
        now = datetime(2025, 3, 15, 9, 30, tzinfo=timezone.utc)
        expected = datetime(2025, 3, 16, tzinfo=timezone.utc)
        assert next_utc_midnight_ms(now) == int(expected.timestamp() * 1000)
