"""
Local Aggregation Engine

Computes every dashboard metric from the in-memory listen log. Used whenever
the store has no precomputed aggregations (or one of them is not installed),
and must agree with those aggregations for any event set and window.

All timestamps are UTC. Durations are summed exactly in milliseconds; hours
and rounding are left to the transformers.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

from listen_analytics.services.analytics_types import (
    HistoryPage,
    HistoryRow,
    ListenEvent,
    RepeatTrack,
    StreakStats,
    TimeWindow,
)

logger = logging.getLogger(__name__)

DEFAULT_REPEAT_THRESHOLD = 5
DEFAULT_TOP_REPEAT_TRACKS = 5


# ============================================================================
# Row validation
# ============================================================================

def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _parse_duration(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value) if value.is_integer() else value
    return None


def _parse_text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def parse_listen_row(row: Mapping[str, Any]) -> ListenEvent | None:
    """
    Validate one store row.

    Args:
        row: Mapping with ts, artist, track and ms_played keys

    Returns:
        The ListenEvent, or None if the timestamp or duration is unusable
    """
    ts = _parse_timestamp(row.get("ts"))
    if ts is None:
        return None
    duration = _parse_duration(row.get("ms_played"))
    if duration is None:
        return None
    return ListenEvent(
        timestamp=ts,
        artist=_parse_text(row.get("artist")),
        track=_parse_text(row.get("track")),
        duration_ms=duration,
    )


def parse_listen_rows(rows: Iterable[Mapping[str, Any]]) -> list[ListenEvent]:
    """Validate store rows, dropping invalid ones, sorted by timestamp."""
    events: list[ListenEvent] = []
    skipped = 0
    for row in rows:
        event = parse_listen_row(row)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    if skipped:
        logger.debug(f"Excluded {skipped} listen rows without a valid timestamp or duration")

    events.sort(key=lambda e: e.timestamp)
    return events


# ============================================================================
# Local result shapes
# ============================================================================

@dataclass(frozen=True)
class SummaryTotals:
    total_ms: int | float
    distinct_artists: int
    distinct_tracks: int
    total_listens: int
    top_artist: str | None
    most_active_year: int | None


@dataclass(frozen=True)
class RankedTotal:
    """An artist (artist is None) or a (track, artist) pair with its totals."""

    name: str
    artist: str | None
    total_ms: int | float
    listen_count: int


@dataclass(frozen=True)
class MonthTotal:
    month_key: str
    total_ms: int | float
    listen_count: int


@dataclass(frozen=True)
class WeekTotal:
    iso_year: int
    week_number: int
    week_start: date
    total_ms: int | float
    listen_count: int

    @property
    def week_key(self) -> str:
        return f"{self.iso_year:04d}-W{self.week_number:02d}"


@dataclass(frozen=True)
class ClockTotal:
    day_of_week: int
    hour_of_day: int
    total_ms: int | float
    listen_count: int


@dataclass(frozen=True)
class DiscoveryTotal:
    month_key: str
    new_artists: int
    new_tracks: int


@dataclass(frozen=True)
class LoyaltyMonthTotal:
    month_key: str
    repeat_count: int
    total_count: int


@dataclass(frozen=True)
class LoyaltyTotals:
    threshold: int
    months: list[LoyaltyMonthTotal]
    top_tracks: list[RepeatTrack]


@dataclass(frozen=True)
class TimeframeTotal:
    year: int
    month: int
    listen_count: int
    total_ms: int | float


# ============================================================================
# Helpers
# ============================================================================

def month_key(ts: datetime) -> str:
    return f"{ts.year:04d}-{ts.month:02d}"


def sunday_first_weekday(ts: datetime) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (ts.weekday() + 1) % 7


def _artist_sort_key(artist: str | None) -> tuple[bool, str]:
    return (artist is not None, artist or "")


def _in_window(events: list[ListenEvent], window: TimeWindow) -> list[ListenEvent]:
    if window.is_unbounded:
        return events
    return [e for e in events if window.contains(e.timestamp)]


def _paginate(items: list, offset: int, limit: int | None) -> list:
    if limit is None:
        return items[offset:]
    return items[offset:offset + limit]


# ============================================================================
# Metrics
# ============================================================================

def compute_summary(events: list[ListenEvent], window: TimeWindow) -> SummaryTotals:
    """Total duration, distinct counts, top artist and most active year."""
    scoped = _in_window(events, window)

    total_ms: int | float = 0
    artist_ms: dict[str, int | float] = {}
    year_ms: dict[int, int | float] = {}
    tracks: set[str] = set()

    for event in scoped:
        total_ms += event.duration_ms
        year_ms[event.timestamp.year] = year_ms.get(event.timestamp.year, 0) + event.duration_ms
        if event.artist is not None:
            artist_ms[event.artist] = artist_ms.get(event.artist, 0) + event.duration_ms
        if event.track is not None:
            tracks.add(event.track)

    top_artist = (
        min(artist_ms.items(), key=lambda item: (-item[1], item[0]))[0]
        if artist_ms
        else None
    )
    most_active_year = (
        min(year_ms.items(), key=lambda item: (-item[1], item[0]))[0]
        if year_ms
        else None
    )

    return SummaryTotals(
        total_ms=total_ms,
        distinct_artists=len(artist_ms),
        distinct_tracks=len(tracks),
        total_listens=len(scoped),
        top_artist=top_artist,
        most_active_year=most_active_year,
    )


def compute_top_artists(
    events: list[ListenEvent],
    window: TimeWindow,
    limit: int | None = 5,
    offset: int = 0,
) -> list[RankedTotal]:
    """Artists ranked by listening time, then by name; offset applied before limit."""
    totals: dict[str, list] = {}
    for event in _in_window(events, window):
        if event.artist is None:
            continue
        entry = totals.setdefault(event.artist, [0, 0])
        entry[0] += event.duration_ms
        entry[1] += 1

    ranked = sorted(totals.items(), key=lambda item: (-item[1][0], item[0]))
    return [
        RankedTotal(name=name, artist=None, total_ms=ms, listen_count=count)
        for name, (ms, count) in _paginate(ranked, offset, limit)
    ]


def compute_top_tracks(
    events: list[ListenEvent],
    window: TimeWindow,
    limit: int | None = 5,
    offset: int = 0,
) -> list[RankedTotal]:
    """
    Tracks ranked by listening time.

    Tracks are keyed by (track, artist) so same-named tracks by different
    artists stay separate. Ties sort by track name, then artist.
    """
    totals: dict[tuple[str, str | None], list] = {}
    for event in _in_window(events, window):
        if event.track is None:
            continue
        entry = totals.setdefault((event.track, event.artist), [0, 0])
        entry[0] += event.duration_ms
        entry[1] += 1

    ranked = sorted(
        totals.items(),
        key=lambda item: (-item[1][0], item[0][0], _artist_sort_key(item[0][1])),
    )
    return [
        RankedTotal(name=track, artist=artist, total_ms=ms, listen_count=count)
        for (track, artist), (ms, count) in _paginate(ranked, offset, limit)
    ]


def compute_monthly_trends(events: list[ListenEvent], window: TimeWindow) -> list[MonthTotal]:
    buckets: dict[str, list] = {}
    for event in _in_window(events, window):
        entry = buckets.setdefault(month_key(event.timestamp), [0, 0])
        entry[0] += event.duration_ms
        entry[1] += 1

    return [
        MonthTotal(month_key=key, total_ms=ms, listen_count=count)
        for key, (ms, count) in sorted(buckets.items())
    ]


def compute_weekly_trends(events: list[ListenEvent], window: TimeWindow) -> list[WeekTotal]:
    """Bucket by ISO-8601 week (Monday start, week 1 holds the first Thursday)."""
    buckets: dict[tuple[int, int], list] = {}
    for event in _in_window(events, window):
        day = event.timestamp.date()
        iso_year, week, weekday = day.isocalendar()
        entry = buckets.setdefault((iso_year, week), [day - timedelta(days=weekday - 1), 0, 0])
        entry[1] += event.duration_ms
        entry[2] += 1

    return [
        WeekTotal(
            iso_year=iso_year,
            week_number=week,
            week_start=week_start,
            total_ms=ms,
            listen_count=count,
        )
        for (iso_year, week), (week_start, ms, count) in sorted(buckets.items())
    ]


def compute_clock(events: list[ListenEvent], window: TimeWindow) -> list[ClockTotal]:
    """Listening by (day of week, hour); empty cells are omitted."""
    buckets: dict[tuple[int, int], list] = {}
    for event in _in_window(events, window):
        key = (sunday_first_weekday(event.timestamp), event.timestamp.hour)
        entry = buckets.setdefault(key, [0, 0])
        entry[0] += event.duration_ms
        entry[1] += 1

    return [
        ClockTotal(day_of_week=day, hour_of_day=hour, total_ms=ms, listen_count=count)
        for (day, hour), (ms, count) in sorted(buckets.items())
    ]


def compute_streaks(events: list[ListenEvent], window: TimeWindow) -> StreakStats:
    """
    Longest and current runs of consecutive active UTC days.

    The longest run keeps the later run when two have equal length. The
    current run always ends on the latest active day, however long ago that is.
    """
    days = sorted({event.timestamp.date() for event in _in_window(events, window)})
    if not days:
        return StreakStats()

    longest_length = 0
    longest_start: date | None = None
    longest_end: date | None = None
    run_start = days[0]
    run_length = 0
    previous: date | None = None

    for day in days:
        if previous is not None and (day - previous).days == 1:
            run_length += 1
        else:
            run_start = day
            run_length = 1
        if run_length >= longest_length:
            longest_length, longest_start, longest_end = run_length, run_start, day
        previous = day

    active = set(days)
    current_end = days[-1]
    current_start = current_end
    while current_start - timedelta(days=1) in active:
        current_start -= timedelta(days=1)

    return StreakStats(
        longest_length=longest_length,
        longest_start=longest_start,
        longest_end=longest_end,
        current_length=(current_end - current_start).days + 1,
        current_start=current_start,
        current_end=current_end,
    )


def compute_discoveries(events: list[ListenEvent], window: TimeWindow) -> list[DiscoveryTotal]:
    """
    New artists and tracks per month.

    First occurrences are taken over the entire history, not the window. A
    discovery is counted only when that global first occurrence falls inside
    the window; hearing an artist for the first time *within* the window is not
    enough if they were already heard before it. Changing the timeframe filter
    therefore removes discoveries rather than re-dating them.
    """
    first_artist: dict[str, datetime] = {}
    first_track: dict[tuple[str, str | None], datetime] = {}

    for event in events:
        if event.artist is not None:
            seen = first_artist.get(event.artist)
            if seen is None or event.timestamp < seen:
                first_artist[event.artist] = event.timestamp
        if event.track is not None:
            key = (event.track, event.artist)
            seen = first_track.get(key)
            if seen is None or event.timestamp < seen:
                first_track[key] = event.timestamp

    artist_months = Counter(
        month_key(ts) for ts in first_artist.values() if window.contains(ts)
    )
    track_months = Counter(
        month_key(ts) for ts in first_track.values() if window.contains(ts)
    )

    return [
        DiscoveryTotal(
            month_key=key,
            new_artists=artist_months.get(key, 0),
            new_tracks=track_months.get(key, 0),
        )
        for key in sorted(set(artist_months) | set(track_months))
    ]


def compute_loyalty(
    events: list[ListenEvent],
    window: TimeWindow,
    threshold: int = DEFAULT_REPEAT_THRESHOLD,
    top_n: int = DEFAULT_TOP_REPEAT_TRACKS,
) -> LoyaltyTotals:
    """
    Share of plays going to repeat tracks, per month in the window.

    A (track, artist) pair is a repeat track when its lifetime play count,
    over the unfiltered history, reaches ``threshold``. The top list holds the
    repeat tracks played in the window, ranked by lifetime play count; a repeat
    track with no plays inside the window is left out of it, however high its
    lifetime count. With an unbounded window every repeat track is eligible.
    """
    lifetime = Counter(
        (event.track, event.artist) for event in events if event.track is not None
    )
    repeat_keys = {key for key, count in lifetime.items() if count >= threshold}

    monthly: dict[str, list[int]] = {}
    played_repeats: set[tuple[str, str | None]] = set()
    for event in _in_window(events, window):
        if event.track is None:
            continue
        key = (event.track, event.artist)
        bucket = monthly.setdefault(month_key(event.timestamp), [0, 0])
        bucket[1] += 1
        if key in repeat_keys:
            bucket[0] += 1
            played_repeats.add(key)

    top = sorted(
        played_repeats,
        key=lambda key: (-lifetime[key], key[0], _artist_sort_key(key[1])),
    )[:top_n]

    return LoyaltyTotals(
        threshold=threshold,
        months=[
            LoyaltyMonthTotal(month_key=key, repeat_count=repeat, total_count=total)
            for key, (repeat, total) in sorted(monthly.items())
        ],
        top_tracks=[
            RepeatTrack(track=track, artist=artist, play_count=lifetime[(track, artist)])
            for track, artist in top
        ],
    )


def compute_history(
    events: list[ListenEvent],
    window: TimeWindow,
    search: str | None = None,
    offset: int = 0,
    limit: int | None = 50,
) -> HistoryPage:
    """Newest-first listens matching an optional track/artist substring."""
    needle = search.strip().casefold() if search and search.strip() else None

    matches = [
        event
        for event in _in_window(events, window)
        if needle is None
        or needle in (event.track or "").casefold()
        or needle in (event.artist or "").casefold()
    ]
    matches.sort(key=lambda e: e.timestamp, reverse=True)

    return HistoryPage(
        rows=[
            HistoryRow(
                track=event.track,
                artist=event.artist,
                timestamp=event.timestamp,
                duration_ms=event.duration_ms,
            )
            for event in _paginate(matches, offset, limit)
        ],
        total_matching_count=len(matches),
    )


def compute_available_timeframes(events: list[ListenEvent]) -> list[TimeframeTotal]:
    """Every (year, month) with listening data, newest first."""
    buckets: dict[tuple[int, int], list] = {}
    for event in events:
        entry = buckets.setdefault((event.timestamp.year, event.timestamp.month), [0, 0])
        entry[0] += 1
        entry[1] += event.duration_ms

    return [
        TimeframeTotal(year=year, month=month, listen_count=count, total_ms=ms)
        for (year, month), (count, ms) in sorted(buckets.items(), reverse=True)
    ]
