"""Tests for date-range chunk planning."""

from datetime import date, datetime, timedelta, timezone

import pytest

from services.date_chunks import (
    DateChunk,
    format_exchange_date,
    shift_months,
    split_date_range,
    subtract_months,
    sync_window,
)


def _assert_covers(chunks, start, end, max_days):
    assert chunks[0].start == start
    assert chunks[-1].end == end
    for chunk in chunks:
        assert chunk.start <= chunk.end
        assert chunk.days <= max_days
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start == previous.end + timedelta(days=1)


class TestSplitDateRange:
    def test_six_month_window_yields_six_chunks(self):
        chunks = split_date_range(date(2024, 2, 10), date(2024, 8, 10), 31)

        assert len(chunks) == 6
        assert chunks[0] == DateChunk(date(2024, 2, 10), date(2024, 3, 11))
        assert chunks[-1] == DateChunk(date(2024, 7, 14), date(2024, 8, 10))
        assert chunks[-1].days <= 31
        _assert_covers(chunks, date(2024, 2, 10), date(2024, 8, 10), 31)

    @pytest.mark.parametrize("max_days", [1, 7, 30, 31, 90])
    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2023, 12, 31), date(2024, 1, 1)),
            (date(2024, 1, 1), date(2024, 12, 31)),
            (date(2024, 2, 28), date(2024, 3, 1)),
            (date(2023, 6, 15), date(2024, 6, 14)),
        ],
    )
    def test_chunks_are_contiguous_and_cover_range(self, start, end, max_days):
        chunks = split_date_range(start, end, max_days)

        _assert_covers(chunks, start, end, max_days)
        assert sum(c.days for c in chunks) == (end - start).days + 1

    def test_single_day_range(self):
        chunks = split_date_range(date(2024, 5, 5), date(2024, 5, 5))
        assert chunks == [DateChunk(date(2024, 5, 5), date(2024, 5, 5))]

    def test_exact_multiple_has_no_short_tail(self):
        chunks = split_date_range(date(2024, 1, 1), date(2024, 1, 31), 31)
        assert len(chunks) == 1
        chunks = split_date_range(date(2024, 1, 1), date(2024, 3, 2), 31)
        assert [c.days for c in chunks] == [31, 31]

    def test_start_after_end_returns_empty(self):
        assert split_date_range(date(2024, 5, 2), date(2024, 5, 1)) == []

    def test_accepts_datetimes(self):
        chunks = split_date_range(
            datetime(2024, 1, 1, 15, 30), datetime(2024, 1, 10, 1, 0), 31
        )
        assert chunks == [DateChunk(date(2024, 1, 1), date(2024, 1, 10))]

    def test_invalid_max_days_rejected(self):
        with pytest.raises(ValueError, match="max_days"):
            split_date_range(date(2024, 1, 1), date(2024, 2, 1), 0)


class TestFormatting:
    def test_whole_day_with_exchange_offset(self):
        assert format_exchange_date(date(2024, 2, 10), "-05:00") == "2024-02-10T00:00:00-05:00"

    def test_datetime_time_component_dropped(self):
        assert (
            format_exchange_date(datetime(2024, 2, 10, 18, 45), "+01:00")
            == "2024-02-10T00:00:00+01:00"
        )

    def test_chunk_formatted_bounds(self):
        chunk = DateChunk(date(2024, 3, 12), date(2024, 4, 11))
        assert chunk.formatted("-05:00") == (
            "2024-03-12T00:00:00-05:00",
            "2024-04-11T00:00:00-05:00",
        )


class TestMonthArithmetic:
    def test_subtract_clamps_to_month_end(self):
        assert subtract_months(date(2024, 3, 31), 1) == date(2024, 2, 29)
        assert subtract_months(date(2023, 3, 31), 1) == date(2023, 2, 28)

    def test_subtract_crosses_year(self):
        assert subtract_months(date(2024, 2, 10), 6) == date(2023, 8, 10)

    def test_shift_forward(self):
        assert shift_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert shift_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_shift_keeps_time_of_datetime(self):
        assert shift_months(datetime(2024, 1, 15, 9, 30), 3) == datetime(2024, 4, 15, 9, 30)


class TestSyncWindow:
    def test_full_sync_looks_back_six_months(self):
        now = datetime(2024, 8, 10, 12, 0, tzinfo=timezone.utc)
        assert sync_window(True, now=now) == (date(2024, 2, 10), date(2024, 8, 10))

    def test_incremental_sync_looks_back_one_month(self):
        now = datetime(2024, 8, 10, 12, 0, tzinfo=timezone.utc)
        assert sync_window(False, now=now) == (date(2024, 7, 10), date(2024, 8, 10))

    def test_today_is_taken_in_exchange_timezone(self):
        """03:00 UTC is still the previous evening at -05:00."""
        now = datetime(2024, 8, 10, 3, 0, tzinfo=timezone.utc)
        start, end = sync_window(False, now=now, utc_offset="-05:00")
        assert end == date(2024, 8, 9)
        assert start == date(2024, 7, 9)
