"""Tests for the in-process aggregation engine."""

import random
from datetime import date, datetime, timezone
from decimal import Decimal

from conftest import make_listen

from listen_analytics.services import local_engine as engine
from listen_analytics.services.analytics_types import StreakStats, TimeWindow
from listen_analytics.services.timeframes import Timeframe, resolve_window

ALL = TimeWindow()


def events_of(rows):
    return engine.parse_listen_rows(rows)


def window_for(period: str) -> TimeWindow:
    year, _, month = period.partition("-")
    if month:
        return resolve_window(Timeframe.for_month(int(year), int(month)))
    return resolve_window(Timeframe.for_year(int(year)))


def test_parse_accepts_strings_and_decimals():
    event = engine.parse_listen_row(
        {"ts": "2024-05-01T12:30:00Z", "artist": "A", "track": "T", "ms_played": Decimal("1500")}
    )

    assert event.timestamp == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert event.duration_ms == 1500
    assert isinstance(event.duration_ms, int)


def test_parse_treats_naive_timestamps_as_utc():
    event = engine.parse_listen_row(
        {"ts": datetime(2024, 5, 1, 23, 0), "artist": "A", "track": "T", "ms_played": 10}
    )

    assert event.timestamp.tzinfo is not None
    assert event.timestamp.hour == 23


def test_invalid_rows_are_excluded():
    rows = [
        make_listen("2024-01-01T00:00:00", "A", "T", 1000),
        {"ts": "not a date", "artist": "A", "track": "T", "ms_played": 1000},
        {"ts": None, "artist": "A", "track": "T", "ms_played": 1000},
        make_listen("2024-01-02T00:00:00", "A", "T", None),
        {"ts": "2024-01-03T00:00:00Z", "artist": "A", "track": "T", "ms_played": "1000"},
        {"ts": "2024-01-04T00:00:00Z", "artist": "A", "track": "T", "ms_played": True},
        {"ts": "2024-01-05T00:00:00Z", "artist": "A", "track": "T", "ms_played": float("nan")},
    ]

    events = events_of(rows)

    assert len(events) == 1
    assert engine.compute_summary(events, ALL).total_listens == 1


def test_missing_names_count_toward_totals_only():
    events = events_of([
        make_listen("2024-01-01T00:00:00", None, None, 3_600_000),
        make_listen("2024-01-02T00:00:00", "A", "T", 3_600_000),
    ])

    summary = engine.compute_summary(events, ALL)

    assert summary.total_ms == 7_200_000
    assert summary.distinct_artists == 1
    assert summary.distinct_tracks == 1
    assert [r.name for r in engine.compute_top_artists(events, ALL)] == ["A"]


def test_worked_example_summary(worked_example_rows):
    summary = engine.compute_summary(events_of(worked_example_rows), ALL)

    assert summary.total_ms == 8_701_200
    assert summary.distinct_artists == 3
    assert summary.distinct_tracks == 4
    assert summary.total_listens == 4
    assert summary.top_artist == "Artist B"
    assert summary.most_active_year == 2024


def test_worked_example_rankings_and_trends(worked_example_rows):
    events = events_of(worked_example_rows)

    artists = engine.compute_top_artists(events, ALL)
    assert [(a.name, a.total_ms, a.listen_count) for a in artists] == [
        ("Artist B", 3_600_000, 1),
        ("Artist A", 2_700_000, 2),
        ("Artist C", 2_401_200, 1),
    ]

    trends = engine.compute_monthly_trends(events, ALL)
    assert [(t.month_key, t.total_ms, t.listen_count) for t in trends] == [
        ("2023-12", 2_401_200, 1),
        ("2024-01", 6_300_000, 3),
    ]


def test_ranked_totals_add_up_to_summary(worked_example_rows):
    events = events_of(worked_example_rows)

    summary = engine.compute_summary(events, ALL)
    artists = engine.compute_top_artists(events, ALL, limit=None)

    assert sum(a.total_ms for a in artists) == summary.total_ms


def test_ranking_ties_break_by_name():
    events = events_of([
        make_listen("2024-01-01T00:00:00", "Beta", "Song", 1000),
        make_listen("2024-01-02T00:00:00", "Alpha", "Song", 1000),
    ])

    assert [a.name for a in engine.compute_top_artists(events, ALL)] == ["Alpha", "Beta"]
    tracks = engine.compute_top_tracks(events, ALL)
    assert [(t.name, t.artist) for t in tracks] == [("Song", "Alpha"), ("Song", "Beta")]


def test_top_tracks_offset_then_limit(worked_example_rows):
    events = events_of(worked_example_rows)

    page = engine.compute_top_tracks(events, ALL, limit=1, offset=1)

    assert [(t.name, t.artist) for t in page] == [("Track 4", "Artist C")]
    assert engine.compute_top_tracks(events, ALL, limit=5, offset=10) == []


def test_window_filters_metrics(worked_example_rows):
    events = events_of(worked_example_rows)
    january = window_for("2024-01")

    summary = engine.compute_summary(events, january)

    assert summary.total_ms == 6_300_000
    assert summary.distinct_artists == 2
    assert summary.most_active_year == 2024
    assert engine.compute_summary(events, window_for("2022")).total_listens == 0


def test_empty_log_summary():
    summary = engine.compute_summary([], ALL)

    assert summary.total_ms == 0
    assert summary.top_artist is None
    assert summary.most_active_year is None


def test_weekly_trends_follow_iso_weeks():
    events = events_of([
        make_listen("2024-12-29T12:00:00", "A", "T", 1000),
        make_listen("2024-12-30T12:00:00", "A", "T", 1000),
        make_listen("2025-01-05T23:00:00", "A", "T", 1000),
    ])

    weeks = engine.compute_weekly_trends(events, ALL)

    assert [(w.week_key, w.week_start, w.listen_count) for w in weeks] == [
        ("2024-W52", date(2024, 12, 23), 1),
        ("2025-W01", date(2024, 12, 30), 2),
    ]


def test_clock_uses_sunday_first_days(worked_example_rows):
    cells = engine.compute_clock(events_of(worked_example_rows), ALL)

    assert [(c.day_of_week, c.hour_of_day, c.listen_count) for c in cells] == [
        (0, 21, 1),
        (1, 10, 1),
        (1, 12, 1),
        (6, 8, 1),
    ]


def test_streaks_longest_and_current():
    events = events_of([
        make_listen("2024-03-01T10:00:00", "A", "T", 1000),
        make_listen("2024-03-01T18:00:00", "A", "T", 1000),
        make_listen("2024-03-02T10:00:00", "A", "T", 1000),
        make_listen("2024-03-03T10:00:00", "A", "T", 1000),
        make_listen("2024-03-06T10:00:00", "A", "T", 1000),
    ])

    streaks = engine.compute_streaks(events, ALL)

    assert streaks.longest_length == 3
    assert streaks.longest_start == date(2024, 3, 1)
    assert streaks.longest_end == date(2024, 3, 3)
    assert streaks.current_length == 1
    assert streaks.current_start == date(2024, 3, 6)
    assert streaks.current_end == date(2024, 3, 6)


def test_streak_tie_keeps_later_run():
    events = events_of([
        make_listen("2024-03-01T10:00:00", "A", "T", 1000),
        make_listen("2024-03-02T10:00:00", "A", "T", 1000),
        make_listen("2024-03-05T10:00:00", "A", "T", 1000),
        make_listen("2024-03-06T10:00:00", "A", "T", 1000),
    ])

    streaks = engine.compute_streaks(events, ALL)

    assert streaks.longest_length == 2
    assert streaks.longest_start == date(2024, 3, 5)


def test_streak_crosses_leap_day():
    events = events_of([
        make_listen("2024-02-28T10:00:00", "A", "T", 1000),
        make_listen("2024-02-29T10:00:00", "A", "T", 1000),
        make_listen("2024-03-01T10:00:00", "A", "T", 1000),
    ])

    assert engine.compute_streaks(events, ALL).longest_length == 3


def test_streaks_empty_window():
    assert engine.compute_streaks([], ALL) == StreakStats()


def discovery_events():
    return events_of([
        make_listen("2023-11-05T10:00:00", "X", "Song", 1000),
        make_listen("2024-02-10T10:00:00", "X", "Song", 1000),
        make_listen("2024-02-12T10:00:00", "Y", "New", 1000),
    ])


def test_discovery_uses_global_first_occurrence():
    february = engine.compute_discoveries(discovery_events(), window_for("2024-02"))

    assert [(d.month_key, d.new_artists, d.new_tracks) for d in february] == [("2024-02", 1, 1)]


def test_discovery_all_time():
    points = engine.compute_discoveries(discovery_events(), ALL)

    assert [(d.month_key, d.new_artists, d.new_tracks) for d in points] == [
        ("2023-11", 1, 1),
        ("2024-02", 1, 1),
    ]
    assert sum(d.new_artists for d in points) == 2


def test_discovery_keys_tracks_by_artist():
    events = events_of([
        make_listen("2024-01-01T10:00:00", "X", "Intro", 1000),
        make_listen("2024-01-02T10:00:00", "Y", "Intro", 1000),
    ])

    points = engine.compute_discoveries(events, ALL)

    assert [(d.new_artists, d.new_tracks) for d in points] == [(2, 2)]


def loyalty_rows():
    return [
        make_listen("2023-12-01T10:00:00", "P", "A", 1000),
        make_listen("2024-01-02T10:00:00", "P", "A", 1000),
        make_listen("2024-01-03T10:00:00", "P", "A", 1000),
        make_listen("2024-01-04T10:00:00", "P", "A", 1000),
        make_listen("2024-01-05T10:00:00", "Q", "B", 1000),
        make_listen("2024-02-01T10:00:00", "P", "A", 1000),
        make_listen("2024-02-02T10:00:00", "Q", "B", 1000),
    ]


def test_loyalty_uses_lifetime_counts():
    totals = engine.compute_loyalty(events_of(loyalty_rows()), window_for("2024-01"))

    assert totals.threshold == 5
    assert [(m.month_key, m.repeat_count, m.total_count) for m in totals.months] == [
        ("2024-01", 3, 4),
    ]
    assert [(t.track, t.artist, t.play_count) for t in totals.top_tracks] == [("A", "P", 5)]


def test_loyalty_all_time_months():
    totals = engine.compute_loyalty(events_of(loyalty_rows()), ALL)

    assert [(m.month_key, m.repeat_count, m.total_count) for m in totals.months] == [
        ("2023-12", 1, 1),
        ("2024-01", 3, 4),
        ("2024-02", 1, 2),
    ]


def test_loyalty_ignores_row_order():
    rows = loyalty_rows()
    expected = engine.compute_loyalty(events_of(rows), ALL, threshold=2)

    shuffled = list(rows)
    random.Random(7).shuffle(shuffled)

    assert engine.compute_loyalty(events_of(shuffled), ALL, threshold=2) == expected
    assert engine.compute_loyalty(events_of(list(reversed(rows))), ALL, threshold=2) == expected


def test_loyalty_lower_threshold_counts_more_repeats():
    totals = engine.compute_loyalty(events_of(loyalty_rows()), window_for("2024-02"), threshold=2)

    assert [(m.repeat_count, m.total_count) for m in totals.months] == [(2, 2)]
    assert [t.track for t in totals.top_tracks] == ["A", "B"]


def test_history_search_is_case_insensitive(worked_example_rows):
    page = engine.compute_history(events_of(worked_example_rows), ALL, search="artist a")

    assert page.total_matching_count == 2
    assert [row.track for row in page.rows] == ["Track 3", "Track 2"]


def test_history_paginates_after_counting(worked_example_rows):
    events = events_of(worked_example_rows)

    page = engine.compute_history(events, ALL, search="ARTIST A", offset=1, limit=1)

    assert page.total_matching_count == 2
    assert [row.track for row in page.rows] == ["Track 2"]

    past_end = engine.compute_history(events, ALL, offset=10, limit=5)
    assert past_end.rows == []
    assert past_end.total_matching_count == 4


def test_history_blank_search_matches_everything(worked_example_rows):
    events = events_of(worked_example_rows)

    page = engine.compute_history(events, ALL, search="   ")

    assert page.total_matching_count == 4
    assert page.rows[0].timestamp == datetime(2024, 1, 21, 21, 30, tzinfo=timezone.utc)
    assert engine.compute_history(events, window_for("2023-12")).total_matching_count == 1


def test_available_timeframes_newest_first(worked_example_rows):
    frames = engine.compute_available_timeframes(events_of(worked_example_rows))

    assert [(f.year, f.month, f.listen_count, f.total_ms) for f in frames] == [
        (2024, 1, 3, 6_300_000),
        (2023, 12, 1, 2_401_200),
    ]


def test_loyalty_top_list_only_holds_tracks_played_in_window():
    rows = loyalty_rows() + [
        make_listen(f"2022-06-0{day}T10:00:00", "R", "Old Favourite", 1000) for day in range(1, 8)
    ]
    events = events_of(rows)

    january = engine.compute_loyalty(events, window_for("2024-01"))
    all_time = engine.compute_loyalty(events, ALL)

    assert [(t.track, t.play_count) for t in january.top_tracks] == [("A", 5)]
    assert [(t.track, t.play_count) for t in all_time.top_tracks] == [("Old Favourite", 7), ("A", 5)]
