"""Tests for timeframe resolution."""

from datetime import datetime, timezone

import pytest

from listen_analytics.services.analytics_types import TimeWindow
from listen_analytics.services.timeframes import Timeframe, parse_timeframe, resolve_window


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_all_time_is_unbounded():
    window = resolve_window(Timeframe.all_time())

    assert window == TimeWindow(None, None)
    assert window.is_unbounded


def test_year_window():
    window = resolve_window(Timeframe.for_year(2024))

    assert window.start == utc(2024, 1, 1)
    assert window.end == utc(2025, 1, 1)


def test_month_window():
    window = resolve_window(Timeframe.for_month(2024, 2))

    assert window.start == utc(2024, 2, 1)
    assert window.end == utc(2024, 3, 1)


def test_december_rolls_into_next_year():
    window = resolve_window(Timeframe.for_month(2023, 12))

    assert window.start == utc(2023, 12, 1)
    assert window.end == utc(2024, 1, 1)


def test_window_is_half_open():
    window = resolve_window(Timeframe.for_month(2024, 1))

    assert window.contains(utc(2024, 1, 1))
    assert window.contains(utc(2024, 1, 31, 23, 59, 59))
    assert not window.contains(utc(2024, 2, 1))
    assert not window.contains(utc(2023, 12, 31, 23, 59, 59))


def test_window_params_use_iso_strings():
    params = resolve_window(Timeframe.for_year(2024)).to_params()

    assert params == {
        "start_date": "2024-01-01T00:00:00+00:00",
        "end_date": "2025-01-01T00:00:00+00:00",
    }
    assert TimeWindow().to_params() == {"start_date": None, "end_date": None}


def test_parse_timeframe_forms():
    assert parse_timeframe("all") == Timeframe.all_time()
    assert parse_timeframe(None) == Timeframe.all_time()
    assert parse_timeframe("2023") == Timeframe.for_year(2023)
    assert parse_timeframe("2024-07") == Timeframe.for_month(2024, 7)


def test_parse_timeframe_rejects_bad_input():
    for period in ["week", "2024-13", "2024-00", "24", "2024/01"]:
        with pytest.raises(ValueError):
            parse_timeframe(period)


def test_timeframe_validation():
    with pytest.raises(ValueError):
        Timeframe("month", year=2024)
    with pytest.raises(ValueError):
        Timeframe("year")
    with pytest.raises(ValueError):
        Timeframe("decade", year=2020)


def test_timeframe_str_round_trips_through_parser():
    for timeframe in [Timeframe.all_time(), Timeframe.for_year(2022), Timeframe.for_month(2021, 3)]:
        assert parse_timeframe(str(timeframe)) == timeframe


def test_years_outside_calendar_range_are_rejected():
    for period in ["9999", "0000", "9999-12", "0000-01"]:
        with pytest.raises(ValueError):
            parse_timeframe(period)
    with pytest.raises(ValueError):
        Timeframe.for_year(9999)


def test_last_supported_year_resolves():
    assert resolve_window(Timeframe.for_year(9998)).end == utc(9999, 1, 1)
    assert resolve_window(Timeframe.for_month(9998, 12)).end == utc(9999, 1, 1)
    assert resolve_window(Timeframe.for_year(1)).start == utc(1, 1, 1)
