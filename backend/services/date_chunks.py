"""Date-range planning for the transaction history fetch.

The brokerage caps each history request at a fixed number of days, so a
sync window is split into contiguous, ordered, non-overlapping chunks.
Everything here is pure and deterministic.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


@dataclass(frozen=True)
class DateChunk:
    """An inclusive ``[start, end]`` window of whole days."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def formatted(self, utc_offset: str) -> tuple[str, str]:
        """Return the (start, end) request bounds for this chunk."""
        return (
            format_exchange_date(self.start, utc_offset),
            format_exchange_date(self.end, utc_offset),
        )


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def split_date_range(
    start: date | datetime, end: date | datetime, max_days: int = 31
) -> list[DateChunk]:
    """Split ``[start, end]`` into windows of at most ``max_days`` days.

    Each window starts the day after the previous one ends; the final
    window may be shorter. An empty list is returned when start > end.

    Raises:
        ValueError: If max_days is less than 1.
    """
    if max_days < 1:
        raise ValueError(f"max_days must be at least 1, got {max_days}")

    current = _as_date(start)
    final_end = _as_date(end)
    chunks: list[DateChunk] = []
    while current <= final_end:
        chunk_end = min(current + timedelta(days=max_days - 1), final_end)
        chunks.append(DateChunk(start=current, end=chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks


def parse_utc_offset(utc_offset: str) -> timezone:
    """Convert ``"-05:00"`` into a fixed-offset tzinfo."""
    sign = -1 if utc_offset.startswith("-") else 1
    hours, minutes = utc_offset.lstrip("+-").split(":")
    return timezone(sign * timedelta(hours=int(hours), minutes=int(minutes)))


def format_exchange_date(day: date | datetime, utc_offset: str = "-05:00") -> str:
    """Format a day as ``YYYY-MM-DDT00:00:00±HH:MM`` (whole-day granularity)."""
    return f"{_as_date(day):%Y-%m-%d}T00:00:00{utc_offset}"


def shift_months(d: date, months: int) -> date:
    """Move a date by whole months (negative goes back), clamping the day."""
    year, month_index = divmod(d.year * 12 + (d.month - 1) + months, 12)
    month = month_index + 1
    max_day = calendar.monthrange(year, month)[1]
    return d.replace(year=year, month=month, day=min(d.day, max_day))


def subtract_months(d: date, months: int) -> date:
    """Subtract months from a date, clamping to valid day."""
    return shift_months(d, -months)


def sync_window(
    full_sync: bool,
    now: datetime | None = None,
    full_months: int = 6,
    incremental_months: int = 1,
    utc_offset: str = "-05:00",
) -> tuple[date, date]:
    """Return the (start, end) days to fetch, ending today at the exchange.

    A full sync looks back ``full_months``; an incremental sync looks back
    ``incremental_months``.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(parse_utc_offset(utc_offset)).date()
    months = full_months if full_sync else incremental_months
    return subtract_months(today, months), today
