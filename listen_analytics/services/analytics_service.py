"""
Analytics Service

One facade per dashboard metric plus the composed dashboard bundle. The
precomputed path is chosen once, when the service is built, by checking the
store; a metric whose aggregation turns out not to be installed is computed
locally from then on. Every operation returns an AnalyticsResult.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from listen_analytics.app_settings import analytics_settings
from listen_analytics.db.listen_store import ListenStore, store_supports_aggregations
from listen_analytics.services.analytics_types import (
    ClockCell,
    DashboardData,
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
from listen_analytics.services.backends import AggregationBackend, LocalBackend, RemoteBackend
from listen_analytics.services.errors import (
    AnalyticsError,
    AnalyticsResult,
    CapabilityUnavailable,
    StoreError,
    TransportFailure,
    classify_code,
)
from listen_analytics.services.remote_dispatcher import RemoteAggregationDispatcher
from listen_analytics.services.row_cache import RawRowCache
from listen_analytics.services.timeframes import Timeframe, resolve_window

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALL_TIME = TimeWindow()


class AnalyticsService:
    """Dashboard metrics for one store handle."""

    def __init__(
        self,
        store: ListenStore,
        cache: RawRowCache | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            store: Listen store handle
            cache: Raw row cache to share; a private one is created if omitted
            settings: Settings dict (defaults to the settings file)
        """
        config = analytics_settings(settings)
        self._store = store
        self._cache = cache if cache is not None else RawRowCache()
        self.repeat_threshold: int = config["repeat_threshold"]
        self.top_limit: int = config["top_limit"]
        self.history_page_size: int = config["history_page_size"]

        self._local = LocalBackend(store, self._cache, config["top_repeat_tracks"])
        self._remote: RemoteBackend | None = None
        if config["remote_enabled"] and store_supports_aggregations(store):
            self._remote = RemoteBackend(RemoteAggregationDispatcher(store))
        self._not_installed: set[str] = set()

        logger.info(f"Analytics service using {self.mode} aggregations")

    @property
    def mode(self) -> str:
        backend: AggregationBackend = self._remote if self._remote is not None else self._local
        return backend.name

    @property
    def cache(self) -> RawRowCache:
        return self._cache

    def invalidate_cache(self) -> bool:
        """Drop the cached listen log, e.g. after an import finished."""
        return self._cache.invalidate(self._store)

    async def _run(
        self,
        metric: str,
        call: Callable[[AggregationBackend], Awaitable[T]],
    ) -> AnalyticsResult[T]:
        try:
            if self._remote is not None and metric not in self._not_installed:
                try:
                    return AnalyticsResult.ok(await call(self._remote))
                except CapabilityUnavailable as e:
                    self._not_installed.add(metric)
                    logger.info(
                        "Aggregation for %s is not installed (code=%s), computing locally",
                        metric,
                        e.code,
                    )
            return AnalyticsResult.ok(await call(self._local))
        except AnalyticsError as e:
            return AnalyticsResult.fail(e)
        except StoreError as e:
            error_cls = classify_code(e.code)
            if error_cls is CapabilityUnavailable:
                error_cls = AnalyticsError
            logger.warning("Listen fetch for %s failed (code=%s): %s", metric, e.code, e.message)
            return AnalyticsResult.fail(error_cls(f"Failed to fetch {metric}: {e.message}", e.code, e))
        except (ConnectionError, TimeoutError) as e:
            logger.warning("Listen fetch for %s could not reach the store: %s", metric, e)
            return AnalyticsResult.fail(
                TransportFailure(f"Store unreachable while fetching {metric}", "transport", e)
            )
        except Exception as e:
            logger.exception("Unexpected error fetching %s", metric)
            return AnalyticsResult.fail(AnalyticsError(f"Unexpected error fetching {metric}", None, e))

    @staticmethod
    def _check_page(limit: int, offset: int) -> AnalyticsError | None:
        if limit < 0 or offset < 0:
            return AnalyticsError(
                f"limit and offset must be non-negative (limit={limit}, offset={offset})",
                code="invalid_argument",
            )
        return None

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def get_dashboard_summary(self, window: TimeWindow = ALL_TIME) -> AnalyticsResult[DashboardSummary]:
        return await self._run("summary", lambda b: b.dashboard_summary(window))

    async def get_top_artists(
        self,
        window: TimeWindow = ALL_TIME,
        limit: int | None = None,
        offset: int = 0,
    ) -> AnalyticsResult[list[TopArtistEntry]]:
        limit = self.top_limit if limit is None else limit
        error = self._check_page(limit, offset)
        if error:
            return AnalyticsResult.fail(error)
        return await self._run("top_artists", lambda b: b.top_artists(window, limit, offset))

    async def get_top_tracks(
        self,
        window: TimeWindow = ALL_TIME,
        limit: int | None = None,
        offset: int = 0,
    ) -> AnalyticsResult[list[TopTrackEntry]]:
        limit = self.top_limit if limit is None else limit
        error = self._check_page(limit, offset)
        if error:
            return AnalyticsResult.fail(error)
        return await self._run("top_tracks", lambda b: b.top_tracks(window, limit, offset))

    async def get_listening_trends(self, window: TimeWindow = ALL_TIME) -> AnalyticsResult[list[TrendPoint]]:
        return await self._run("listening_trends", lambda b: b.listening_trends(window))

    async def get_weekly_listening_trends(
        self, window: TimeWindow = ALL_TIME
    ) -> AnalyticsResult[list[WeeklyTrendPoint]]:
        return await self._run("weekly_trends", lambda b: b.weekly_trends(window))

    async def get_listening_clock(self, window: TimeWindow = ALL_TIME) -> AnalyticsResult[list[ClockCell]]:
        return await self._run("listening_clock", lambda b: b.listening_clock(window))

    async def get_listening_streaks(self, window: TimeWindow = ALL_TIME) -> AnalyticsResult[StreakStats]:
        return await self._run("listening_streaks", lambda b: b.listening_streaks(window))

    async def get_discovery_tracker(self, window: TimeWindow = ALL_TIME) -> AnalyticsResult[list[DiscoveryPoint]]:
        return await self._run("discovery_tracker", lambda b: b.discovery_tracker(window))

    async def get_loyalty_gauge(
        self,
        window: TimeWindow = ALL_TIME,
        threshold: int | None = None,
    ) -> AnalyticsResult[LoyaltyGauge]:
        threshold = self.repeat_threshold if threshold is None else threshold
        if threshold < 1:
            return AnalyticsResult.fail(
                AnalyticsError(f"threshold must be at least 1, got {threshold}", code="invalid_argument")
            )
        return await self._run("loyalty_gauge", lambda b: b.loyalty_gauge(window, threshold))

    async def get_listening_history(
        self,
        search: str | None = None,
        window: TimeWindow = ALL_TIME,
        offset: int = 0,
        limit: int | None = None,
    ) -> AnalyticsResult[HistoryPage]:
        limit = self.history_page_size if limit is None else limit
        error = self._check_page(limit, offset)
        if error:
            return AnalyticsResult.fail(error)
        search = search.strip() if search and search.strip() else None
        logger.debug(
            "Fetching listening history (search=%r, offset=%d, limit=%d)", search, offset, limit
        )
        return await self._run(
            "listening_history",
            lambda b: b.listening_history(window, search, offset, limit),
        )

    async def get_available_timeframes(self) -> AnalyticsResult[list[TimeframeOption]]:
        return await self._run("available_timeframes", lambda b: b.available_timeframes())

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    async def get_dashboard_data(self, timeframe: Timeframe) -> AnalyticsResult[DashboardData]:
        """
        Fetch every dashboard metric for a timeframe.

        All metrics are requested concurrently against one resolved window.
        If any of them fails, the first failure (in bundle order) is returned
        instead of a partial bundle.

        Args:
            timeframe: Timeframe selector

        Returns:
            AnalyticsResult with the complete DashboardData
        """
        try:
            window = resolve_window(timeframe)
        except ValueError as e:
            return AnalyticsResult.fail(
                AnalyticsError(f"Invalid timeframe {timeframe}: {e}", code="invalid_argument", details=e)
            )

        results = await asyncio.gather(
            self.get_dashboard_summary(window),
            self.get_top_artists(window, limit=self.top_limit),
            self.get_top_tracks(window, limit=self.top_limit),
            self.get_listening_trends(window),
            self.get_weekly_listening_trends(window),
            self.get_listening_clock(window),
            self.get_listening_streaks(window),
            self.get_discovery_tracker(window),
            self.get_loyalty_gauge(window),
        )

        for result in results:
            if not result.success:
                logger.warning(f"Dashboard for {timeframe} failed: {result.error}")
                return AnalyticsResult.fail(result.error)

        return AnalyticsResult.ok(DashboardData(*(result.data for result in results)))


# Singleton instance
_service: AnalyticsService | None = None


def get_analytics_service() -> AnalyticsService:
    """Get the singleton AnalyticsService backed by Postgres."""
    global _service
    if _service is None:
        from listen_analytics.db.listen_store import PostgresListenStore

        _service = AnalyticsService(PostgresListenStore())
    return _service
