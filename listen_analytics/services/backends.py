"""
Aggregation Backends

Two interchangeable ways to produce every metric: precomputed aggregations in
the store, or the local engine over the cached listen log. Both return the
same payload types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from listen_analytics.db.listen_store import ListenStore
from listen_analytics.services import local_engine
from listen_analytics.services import transformers as tx
from listen_analytics.services.analytics_types import (
    ClockCell,
    DashboardSummary,
    DiscoveryPoint,
    HistoryPage,
    LoyaltyGauge,
    StreakStats,
    TimeframeOption,
    TimeWindow,
    TopArtistEntry,
    TopTrackEntry,
    TrendPoint,
    WeeklyTrendPoint,
)
from listen_analytics.services.remote_dispatcher import RemoteAggregationDispatcher
from listen_analytics.services.row_cache import RawRowCache


class AggregationBackend(ABC):
    """Produces every dashboard metric for a time window."""

    name = "base"

    @abstractmethod
    async def dashboard_summary(self, window: TimeWindow) -> DashboardSummary: ...

    @abstractmethod
    async def top_artists(self, window: TimeWindow, limit: int, offset: int) -> list[TopArtistEntry]: ...

    @abstractmethod
    async def top_tracks(self, window: TimeWindow, limit: int, offset: int) -> list[TopTrackEntry]: ...

    @abstractmethod
    async def listening_trends(self, window: TimeWindow) -> list[TrendPoint]: ...

    @abstractmethod
    async def weekly_trends(self, window: TimeWindow) -> list[WeeklyTrendPoint]: ...

    @abstractmethod
    async def listening_clock(self, window: TimeWindow) -> list[ClockCell]: ...

    @abstractmethod
    async def listening_streaks(self, window: TimeWindow) -> StreakStats: ...

    @abstractmethod
    async def discovery_tracker(self, window: TimeWindow) -> list[DiscoveryPoint]: ...

    @abstractmethod
    async def loyalty_gauge(self, window: TimeWindow, threshold: int) -> LoyaltyGauge: ...

    @abstractmethod
    async def listening_history(
        self,
        window: TimeWindow,
        search: str | None,
        offset: int,
        limit: int,
    ) -> HistoryPage: ...

    @abstractmethod
    async def available_timeframes(self) -> list[TimeframeOption]: ...


class RemoteBackend(AggregationBackend):
    """Metrics from the store's precomputed aggregation functions."""

    name = "remote"

    def __init__(self, dispatcher: RemoteAggregationDispatcher) -> None:
        self._dispatcher = dispatcher

    async def _rows(self, aggregation: str, window: TimeWindow | None = None, **extra: Any) -> list:
        params: dict[str, Any] = window.to_params() if window is not None else {}
        params.update(extra)
        return await self._dispatcher.dispatch(aggregation, params)

    async def dashboard_summary(self, window: TimeWindow) -> DashboardSummary:
        rows = await self._rows("get_dashboard_summary", window)
        return tx.summary_from_row(rows[0] if rows else None)

    async def top_artists(self, window: TimeWindow, limit: int, offset: int) -> list[TopArtistEntry]:
        rows = await self._rows("get_top_artists", window, limit_count=limit, offset_count=offset)
        return [tx.top_artist_from_row(row) for row in rows]

    async def top_tracks(self, window: TimeWindow, limit: int, offset: int) -> list[TopTrackEntry]:
        rows = await self._rows("get_top_tracks", window, limit_count=limit, offset_count=offset)
        return [tx.top_track_from_row(row) for row in rows]

    async def listening_trends(self, window: TimeWindow) -> list[TrendPoint]:
        rows = await self._rows("get_listening_trends", window)
        return sorted((tx.trend_from_row(row) for row in rows), key=lambda p: p.period_key)

    async def weekly_trends(self, window: TimeWindow) -> list[WeeklyTrendPoint]:
        rows = await self._rows("get_weekly_listening_trends", window)
        return sorted((tx.weekly_trend_from_row(row) for row in rows), key=lambda p: p.period_key)

    async def listening_clock(self, window: TimeWindow) -> list[ClockCell]:
        rows = await self._rows("get_listening_clock", window)
        return sorted(
            (tx.clock_from_row(row) for row in rows),
            key=lambda c: (c.day_of_week, c.hour_of_day),
        )

    async def listening_streaks(self, window: TimeWindow) -> StreakStats:
        rows = await self._rows("get_listening_streaks", window)
        return tx.streaks_from_row(rows[0] if rows else None)

    async def discovery_tracker(self, window: TimeWindow) -> list[DiscoveryPoint]:
        rows = await self._rows("get_discovery_tracker", window)
        return sorted((tx.discovery_from_row(row) for row in rows), key=lambda p: p.month_key)

    async def loyalty_gauge(self, window: TimeWindow, threshold: int) -> LoyaltyGauge:
        extra: dict[str, Any] = {}
        # The installed function has the default threshold built in
        if threshold != local_engine.DEFAULT_REPEAT_THRESHOLD:
            extra["repeat_threshold"] = threshold
        rows = await self._rows("get_loyalty_gauge", window, **extra)
        return tx.loyalty_from_rows(rows, default_threshold=threshold)

    async def listening_history(
        self,
        window: TimeWindow,
        search: str | None,
        offset: int,
        limit: int,
    ) -> HistoryPage:
        rows = await self._rows(
            "get_listening_history",
            window,
            search_query=search,
            limit_count=limit,
            offset_count=offset,
        )
        if rows or offset == 0:
            return tx.history_from_rows(rows)

        # Past the last page the rows carry no total; ask for the first row
        count_rows = await self._rows(
            "get_listening_history",
            window,
            search_query=search,
            limit_count=1,
            offset_count=0,
        )
        total = int(count_rows[0].get("total_count") or 0) if count_rows else 0
        return tx.history_from_rows([], total_count=total)

    async def available_timeframes(self) -> list[TimeframeOption]:
        rows = await self._rows("get_available_timeframes")
        return [tx.timeframe_from_row(row) for row in rows]


class LocalBackend(AggregationBackend):
    """Metrics computed in-process from the cached listen log."""

    name = "local"

    def __init__(self, store: ListenStore, cache: RawRowCache, top_repeat_tracks: int = local_engine.DEFAULT_TOP_REPEAT_TRACKS) -> None:
        self._store = store
        self._cache = cache
        self._top_repeat_tracks = top_repeat_tracks

    async def _events(self) -> list:
        return await self._cache.get_listens(self._store)

    async def dashboard_summary(self, window: TimeWindow) -> DashboardSummary:
        return tx.summary_from_local(local_engine.compute_summary(await self._events(), window))

    async def top_artists(self, window: TimeWindow, limit: int, offset: int) -> list[TopArtistEntry]:
        totals = local_engine.compute_top_artists(await self._events(), window, limit, offset)
        return [tx.top_artist_from_local(total) for total in totals]

    async def top_tracks(self, window: TimeWindow, limit: int, offset: int) -> list[TopTrackEntry]:
        totals = local_engine.compute_top_tracks(await self._events(), window, limit, offset)
        return [tx.top_track_from_local(total) for total in totals]

    async def listening_trends(self, window: TimeWindow) -> list[TrendPoint]:
        totals = local_engine.compute_monthly_trends(await self._events(), window)
        return [tx.trend_from_local(total) for total in totals]

    async def weekly_trends(self, window: TimeWindow) -> list[WeeklyTrendPoint]:
        totals = local_engine.compute_weekly_trends(await self._events(), window)
        return [tx.weekly_trend_from_local(total) for total in totals]

    async def listening_clock(self, window: TimeWindow) -> list[ClockCell]:
        totals = local_engine.compute_clock(await self._events(), window)
        return [tx.clock_from_local(total) for total in totals]

    async def listening_streaks(self, window: TimeWindow) -> StreakStats:
        return local_engine.compute_streaks(await self._events(), window)

    async def discovery_tracker(self, window: TimeWindow) -> list[DiscoveryPoint]:
        totals = local_engine.compute_discoveries(await self._events(), window)
        return [tx.discovery_from_local(total) for total in totals]

    async def loyalty_gauge(self, window: TimeWindow, threshold: int) -> LoyaltyGauge:
        totals = local_engine.compute_loyalty(
            await self._events(), window, threshold, self._top_repeat_tracks
        )
        return tx.loyalty_from_local(totals)

    async def listening_history(
        self,
        window: TimeWindow,
        search: str | None,
        offset: int,
        limit: int,
    ) -> HistoryPage:
        page = local_engine.compute_history(await self._events(), window, search, offset, limit)
        return tx.history_from_local(page)

    async def available_timeframes(self) -> list[TimeframeOption]:
        totals = local_engine.compute_available_timeframes(await self._events())
        return [tx.timeframe_from_local(total) for total in totals]
