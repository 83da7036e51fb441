"""
Analytics Types

Typed payloads produced by the analytics service. Both the precomputed and the
local aggregation paths are transformed into these shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class ListenEvent:
    """A single validated playback record."""

    timestamp: datetime
    artist: str | None
    track: str | None
    duration_ms: int | float


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end); a None bound is unbounded."""

    start: datetime | None = None
    end: datetime | None = None

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts >= self.end:
            return False
        return True

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def to_params(self) -> dict[str, str | None]:
        return {
            "start_date": self.start.isoformat() if self.start else None,
            "end_date": self.end.isoformat() if self.end else None,
        }


@dataclass(frozen=True)
class DashboardSummary:
    total_hours_label: str
    distinct_artists: int
    distinct_tracks: int
    total_listens: int
    top_artist: str | None
    most_active_year: str | None


@dataclass(frozen=True)
class TopArtistEntry:
    name: str
    hours: float
    listen_count: int


@dataclass(frozen=True)
class TopTrackEntry:
    track: str
    artist: str | None
    hours: float
    listen_count: int


@dataclass(frozen=True)
class TrendPoint:
    """Monthly bucket keyed by YYYY-MM."""

    period_key: str
    label: str
    hours: float
    count: int


@dataclass(frozen=True)
class WeeklyTrendPoint:
    """ISO-8601 week bucket keyed by YYYY-Www."""

    period_key: str
    label: str
    description: str
    week_start: date
    week_end: date
    week_number: int
    year: int
    hours: float
    count: int


@dataclass(frozen=True)
class ClockCell:
    day_of_week: int  # 0 = Sunday
    hour_of_day: int
    hours: float
    count: int


@dataclass(frozen=True)
class StreakStats:
    longest_length: int = 0
    longest_start: date | None = None
    longest_end: date | None = None
    current_length: int = 0
    current_start: date | None = None
    current_end: date | None = None


@dataclass(frozen=True)
class DiscoveryPoint:
    month_key: str
    label: str
    new_artist_count: int
    new_track_count: int


@dataclass(frozen=True)
class LoyaltyMonth:
    month_key: str
    label: str
    repeat_share: float
    repeat_count: int
    total_count: int


@dataclass(frozen=True)
class RepeatTrack:
    track: str
    artist: str | None
    play_count: int


@dataclass(frozen=True)
class LoyaltyGauge:
    repeat_threshold: int = 5
    monthly: list[LoyaltyMonth] = field(default_factory=list)
    top_repeat_tracks: list[RepeatTrack] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryRow:
    track: str | None
    artist: str | None
    timestamp: datetime
    duration_ms: int | float | None


@dataclass(frozen=True)
class HistoryPage:
    rows: list[HistoryRow]
    total_matching_count: int


@dataclass(frozen=True)
class TimeframeOption:
    year: int
    month: int
    listen_count: int
    hours: float


@dataclass(frozen=True)
class DashboardData:
    """All dashboard metrics for one timeframe, computed against one window."""

    summary: DashboardSummary
    top_artists: list[TopArtistEntry]
    top_tracks: list[TopTrackEntry]
    listening_trends: list[TrendPoint]
    weekly_trends: list[WeeklyTrendPoint]
    listening_clock: list[ClockCell]
    streaks: StreakStats
    discovery: list[DiscoveryPoint]
    loyalty: LoyaltyGauge
