"""
Timeframe Resolution

Converts a timeframe selector into the half-open UTC window every aggregation
is computed against.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from listen_analytics.services.analytics_types import TimeWindow

TimeframeKind = Literal["all", "year", "month"]

# The window end is the first instant of the following year
MIN_YEAR = 1
MAX_YEAR = 9998


@dataclass(frozen=True)
class Timeframe:
    """Dashboard timeframe selector: all-time, a year, or a (year, month)."""

    kind: TimeframeKind = "all"
    year: int | None = None
    month: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in ("all", "year", "month"):
            raise ValueError(f"Unknown timeframe kind: {self.kind}")
        if self.kind in ("year", "month") and self.year is None:
            raise ValueError(f"A {self.kind} timeframe needs a year")
        if self.year is not None and not MIN_YEAR <= self.year <= MAX_YEAR:
            raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {self.year}")
        if self.kind == "month":
            if self.month is None or not 1 <= self.month <= 12:
                raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def all_time(cls) -> Timeframe:
        return cls("all")

    @classmethod
    def for_year(cls, year: int) -> Timeframe:
        return cls("year", year=year)

    @classmethod
    def for_month(cls, year: int, month: int) -> Timeframe:
        return cls("month", year=year, month=month)

    def __str__(self) -> str:
        if self.kind == "year":
            return f"{self.year:04d}"
        if self.kind == "month":
            return f"{self.year:04d}-{self.month:02d}"
        return "all"


def resolve_window(timeframe: Timeframe) -> TimeWindow:
    """
    Convert a timeframe to its time window.

    Args:
        timeframe: Selector to resolve

    Returns:
        TimeWindow with UTC bounds, both None for all-time
    """
    if timeframe.kind == "all":
        return TimeWindow(None, None)

    year = timeframe.year
    if timeframe.kind == "year":
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        return TimeWindow(start, end)

    month = timeframe.month
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return TimeWindow(start, end)


def parse_timeframe(period: str | None) -> Timeframe:
    """
    Parse the query-string form of a timeframe.

    Args:
        period: One of 'all', 'YYYY', or 'YYYY-MM' (None means 'all')

    Returns:
        The matching Timeframe

    Raises:
        ValueError: If the period is not recognised
    """
    if period is None or period == "" or period == "all":
        return Timeframe.all_time()
    if re.match(r"^\d{4}$", period):
        return Timeframe.for_year(int(period))
    if re.match(r"^\d{4}-\d{2}$", period):
        year, month = map(int, period.split("-"))
        return Timeframe.for_month(year, month)
    raise ValueError(f"Unrecognised period '{period}', expected all, YYYY or YYYY-MM")
