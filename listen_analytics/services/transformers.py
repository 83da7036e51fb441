"""
Metric Transformers

Map precomputed-aggregation rows and local engine results onto the shared
payload types. Hours and shares are rounded here and nowhere else.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from listen_analytics.services.analytics_types import (
    ClockCell,
    DashboardSummary,
    DiscoveryPoint,
    HistoryPage,
    HistoryRow,
    LoyaltyGauge,
    LoyaltyMonth,
    RepeatTrack,
    StreakStats,
    TimeframeOption,
    TopArtistEntry,
    TopTrackEntry,
    TrendPoint,
    WeeklyTrendPoint,
)
from listen_analytics.services.local_engine import (
    DEFAULT_REPEAT_THRESHOLD,
    ClockTotal,
    DiscoveryTotal,
    LoyaltyTotals,
    MonthTotal,
    RankedTotal,
    SummaryTotals,
    TimeframeTotal,
    WeekTotal,
)

Row = Mapping[str, Any]

MS_PER_HOUR = Decimal(3_600_000)
HOURS_QUANTUM = Decimal("0.1")
SHARE_QUANTUM = Decimal("0.0001")

MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


# ============================================================================
# Rounding and formatting
# ============================================================================

def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def ms_to_hours(ms: Any) -> Decimal:
    return _to_decimal(ms) / MS_PER_HOUR


def _quantize_hours(hours: Any) -> Decimal:
    return _to_decimal(hours).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def round_hours(hours: Any) -> float:
    """Round an exact hour total to one decimal, half away from zero."""
    return float(_quantize_hours(hours))


def hours_label(hours: Any) -> str:
    return f"{_quantize_hours(hours):.1f}"


def round_share(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    share = Decimal(numerator) / Decimal(denominator)
    return float(share.quantize(SHARE_QUANTUM, rounding=ROUND_HALF_UP))


def _round_share_value(value: Any) -> float:
    return float(_to_decimal(value).quantize(SHARE_QUANTUM, rounding=ROUND_HALF_UP))


def month_label(key: str) -> str:
    """'2024-01' -> 'Jan 2024'."""
    year, month = key.split("-")[:2]
    return f"{MONTH_ABBR[int(month) - 1]} {int(year)}"


def _month_key_of(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"
    return str(value)[:7]


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value).replace("Z", "+00:00")
    if len(text) == 10:
        return date.fromisoformat(text)
    return _as_date(datetime.fromisoformat(text))


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _as_duration(value: Any) -> int | float | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def _weekly_point(week_start: date, hours: Any, count: int) -> WeeklyTrendPoint:
    week_end = week_start + timedelta(days=6)
    iso_year, week_number, _ = week_start.isocalendar()
    start_label = f"{MONTH_ABBR[week_start.month - 1]} {week_start.day}"
    end_label = f"{MONTH_ABBR[week_end.month - 1]} {week_end.day}"
    return WeeklyTrendPoint(
        period_key=f"{iso_year:04d}-W{week_number:02d}",
        label=f"{start_label} - {end_label}",
        description=f"{start_label}, {week_start.year} - {end_label}, {week_end.year}",
        week_start=week_start,
        week_end=week_end,
        week_number=week_number,
        year=iso_year,
        hours=round_hours(hours),
        count=int(count),
    )


# ============================================================================
# Summary
# ============================================================================

def summary_from_row(row: Row | None) -> DashboardSummary:
    if row is None:
        return summary_from_local(SummaryTotals(0, 0, 0, 0, None, None))
    year = row.get("most_active_year")
    return DashboardSummary(
        total_hours_label=hours_label(row.get("total_hours")),
        distinct_artists=int(row.get("unique_artists") or 0),
        distinct_tracks=int(row.get("unique_tracks") or 0),
        total_listens=int(row.get("total_listens") or 0),
        top_artist=row.get("top_artist"),
        most_active_year=str(year) if year is not None else None,
    )


def summary_from_local(totals: SummaryTotals) -> DashboardSummary:
    return DashboardSummary(
        total_hours_label=hours_label(ms_to_hours(totals.total_ms)),
        distinct_artists=totals.distinct_artists,
        distinct_tracks=totals.distinct_tracks,
        total_listens=totals.total_listens,
        top_artist=totals.top_artist,
        most_active_year=str(totals.most_active_year) if totals.most_active_year is not None else None,
    )


# ============================================================================
# Rankings
# ============================================================================

def top_artist_from_row(row: Row) -> TopArtistEntry:
    return TopArtistEntry(
        name=row["artist"],
        hours=round_hours(row.get("total_hours")),
        listen_count=int(row.get("listen_count") or 0),
    )


def top_artist_from_local(total: RankedTotal) -> TopArtistEntry:
    return TopArtistEntry(
        name=total.name,
        hours=round_hours(ms_to_hours(total.total_ms)),
        listen_count=total.listen_count,
    )


def top_track_from_row(row: Row) -> TopTrackEntry:
    return TopTrackEntry(
        track=row["track"],
        artist=row.get("artist"),
        hours=round_hours(row.get("total_hours")),
        listen_count=int(row.get("listen_count") or 0),
    )


def top_track_from_local(total: RankedTotal) -> TopTrackEntry:
    return TopTrackEntry(
        track=total.name,
        artist=total.artist,
        hours=round_hours(ms_to_hours(total.total_ms)),
        listen_count=total.listen_count,
    )


# ============================================================================
# Trends and clock
# ============================================================================

def trend_from_row(row: Row) -> TrendPoint:
    key = _month_key_of(row["month"])
    return TrendPoint(
        period_key=key,
        label=month_label(key),
        hours=round_hours(row.get("total_hours")),
        count=int(row.get("listen_count") or 0),
    )


def trend_from_local(total: MonthTotal) -> TrendPoint:
    return TrendPoint(
        period_key=total.month_key,
        label=month_label(total.month_key),
        hours=round_hours(ms_to_hours(total.total_ms)),
        count=total.listen_count,
    )


def weekly_trend_from_row(row: Row) -> WeeklyTrendPoint:
    # Week number and ISO year come from the Monday, whose ISO year is the week's
    return _weekly_point(
        _as_date(row["week_start"]),
        row.get("total_hours"),
        int(row.get("listen_count") or 0),
    )


def weekly_trend_from_local(total: WeekTotal) -> WeeklyTrendPoint:
    return _weekly_point(total.week_start, ms_to_hours(total.total_ms), total.listen_count)


def clock_from_row(row: Row) -> ClockCell:
    return ClockCell(
        day_of_week=int(row["day_of_week"]),
        hour_of_day=int(row["hour_of_day"]),
        hours=round_hours(row.get("total_hours")),
        count=int(row.get("listen_count") or 0),
    )


def clock_from_local(total: ClockTotal) -> ClockCell:
    return ClockCell(
        day_of_week=total.day_of_week,
        hour_of_day=total.hour_of_day,
        hours=round_hours(ms_to_hours(total.total_ms)),
        count=total.listen_count,
    )


# ============================================================================
# Streaks, discovery, loyalty
# ============================================================================

def streaks_from_row(row: Row | None) -> StreakStats:
    if row is None:
        return StreakStats()
    return StreakStats(
        longest_length=int(row.get("longest_streak") or 0),
        longest_start=_as_date(row.get("longest_streak_start")),
        longest_end=_as_date(row.get("longest_streak_end")),
        current_length=int(row.get("current_streak") or 0),
        current_start=_as_date(row.get("current_streak_start")),
        current_end=_as_date(row.get("current_streak_end")),
    )


def discovery_from_row(row: Row) -> DiscoveryPoint:
    key = _month_key_of(row["month"])
    return DiscoveryPoint(
        month_key=key,
        label=month_label(key),
        new_artist_count=int(row.get("new_artists") or 0),
        new_track_count=int(row.get("new_tracks") or 0),
    )


def discovery_from_local(total: DiscoveryTotal) -> DiscoveryPoint:
    return DiscoveryPoint(
        month_key=total.month_key,
        label=month_label(total.month_key),
        new_artist_count=total.new_artists,
        new_track_count=total.new_tracks,
    )


def _repeat_tracks_from_json(value: Any) -> list[RepeatTrack]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return [
        RepeatTrack(
            track=item["track"],
            artist=item.get("artist"),
            play_count=int(item.get("playCount", item.get("play_count", 0))),
        )
        for item in value
    ]


def loyalty_from_rows(rows: list[Row], default_threshold: int = DEFAULT_REPEAT_THRESHOLD) -> LoyaltyGauge:
    """Each remote row is one month; threshold and top tracks repeat on every row."""
    if not rows:
        return LoyaltyGauge(repeat_threshold=default_threshold)

    first = rows[0]
    monthly = []
    for row in rows:
        key = _month_key_of(row["month"])
        monthly.append(
            LoyaltyMonth(
                month_key=key,
                label=month_label(key),
                repeat_share=_round_share_value(row.get("repeat_listen_share")),
                repeat_count=int(row.get("repeat_listen_count") or 0),
                total_count=int(row.get("total_listen_count") or 0),
            )
        )

    threshold = first.get("threshold")
    return LoyaltyGauge(
        repeat_threshold=int(threshold) if threshold is not None else default_threshold,
        monthly=monthly,
        top_repeat_tracks=_repeat_tracks_from_json(first.get("top_tracks")),
    )


def loyalty_from_local(totals: LoyaltyTotals) -> LoyaltyGauge:
    return LoyaltyGauge(
        repeat_threshold=totals.threshold,
        monthly=[
            LoyaltyMonth(
                month_key=month.month_key,
                label=month_label(month.month_key),
                repeat_share=round_share(month.repeat_count, month.total_count),
                repeat_count=month.repeat_count,
                total_count=month.total_count,
            )
            for month in totals.months
        ],
        top_repeat_tracks=list(totals.top_tracks),
    )


# ============================================================================
# History and timeframes
# ============================================================================

def history_from_rows(rows: list[Row], total_count: int | None = None) -> HistoryPage:
    if total_count is None:
        total_count = int(rows[0].get("total_count") or 0) if rows else 0
    return HistoryPage(
        rows=[
            HistoryRow(
                track=row.get("track"),
                artist=row.get("artist"),
                timestamp=_as_datetime(row["ts"]),
                duration_ms=_as_duration(row.get("ms_played")),
            )
            for row in rows
        ],
        total_matching_count=total_count,
    )


def history_from_local(page: HistoryPage) -> HistoryPage:
    return page


def timeframe_from_row(row: Row) -> TimeframeOption:
    return TimeframeOption(
        year=int(row["year"]),
        month=int(row["month"]),
        listen_count=int(row.get("listen_count") or 0),
        hours=round_hours(row.get("total_hours")),
    )


def timeframe_from_local(total: TimeframeTotal) -> TimeframeOption:
    return TimeframeOption(
        year=total.year,
        month=total.month,
        listen_count=total.listen_count,
        hours=round_hours(ms_to_hours(total.total_ms)),
    )
