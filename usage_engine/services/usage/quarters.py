"""
Calendar-quarter date windows relative to "now".

Quarters are calendar aligned (Q1 = Jan-Mar). The current quarter (offset 0)
ends at today rather than at its last calendar day, so it reads as
"quarter to date".
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

TO_DATE_SUFFIX = " (to date)"


@dataclass(frozen=True)
class QuarterRange:
    """Date window of one calendar quarter."""

    label: str  # e.g. "Q1 2026"
    start_date: date
    end_date: date  # inclusive

    def display_label(self, offset: int) -> str:
        """Label shown to users; the current quarter reads "Qn YYYY (to date)"."""
        if offset == 0:
            return f"{self.label}{TO_DATE_SUFFIX}"
        return self.label


def _today(now: Optional[Union[date, datetime]]) -> date:
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        return now.date()
    return now


def quarter_range(
    offset: int = 0, now: Optional[Union[date, datetime]] = None
) -> QuarterRange:
    """
    Compute the quarter ``offset`` quarters away from the one containing now.

    Args:
        offset: 0 = current quarter, -1 = previous, -5 = five back, +1 = next
        now: Reference instant (defaults to the current UTC date)

    Returns:
        QuarterRange with the current quarter clamped to today
    """
    today = _today(now)

    # 0-based quarter index: Jan-Mar = 0
    target = (today.month - 1) // 3 + offset
    year = today.year + target // 4
    target %= 4

    start_month = target * 3 + 1
    end_month = start_month + 2
    start = date(year, start_month, 1)
    end = date(year, end_month, calendar.monthrange(year, end_month)[1])

    if offset == 0 and end > today:
        end = today

    return QuarterRange(label=f"Q{target + 1} {year}", start_date=start, end_date=end)


def trailing_quarters(
    count: int = 3, now: Optional[Union[date, datetime]] = None
) -> list[tuple[int, QuarterRange]]:
    """Return (offset, range) for the current quarter and the ``count - 1`` before it."""
    if count < 1:
        raise ValueError("count must be >= 1")
    return [(-i, quarter_range(-i, now)) for i in range(count)]


def lookback_window(
    days: int, now: Optional[Union[date, datetime]] = None
) -> tuple[date, date]:
    """Rolling window ending today and starting ``days`` days earlier."""
    if days < 1:
        raise ValueError("days must be >= 1")
    today = _today(now)
    return today - timedelta(days=days), today


def format_api_date(value: Union[date, datetime]) -> str:
    """Format a date as YYYYMMDD for the Amplitude API."""
    return value.strftime("%Y%m%d")
