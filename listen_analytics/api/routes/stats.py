"""
Statistics API Routes

Endpoints for the listening dashboard metrics.
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from listen_analytics.services.analytics_service import AnalyticsService, get_analytics_service
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
from listen_analytics.services.errors import (
    AnalyticsResult,
    AuthorizationFailure,
    TransportFailure,
)
from listen_analytics.services.timeframes import Timeframe, parse_timeframe, resolve_window

router = APIRouter()
logger = logging.getLogger(__name__)

PERIOD_DESCRIPTION = "Time period: all, YYYY, or YYYY-MM"


class TimeframePayload(BaseModel):
    type: Literal["all", "year", "month"] = "all"
    year: int | None = Field(None, ge=1900, le=2100)
    month: int | None = Field(None, ge=1, le=12)


def _timeframe(period: str | None) -> Timeframe:
    try:
        return parse_timeframe(period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _window(period: str | None) -> TimeWindow:
    timeframe = _timeframe(period)
    try:
        return resolve_window(timeframe)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _unwrap(result: AnalyticsResult, what: str):
    if result.success:
        return result.data

    error = result.error
    if isinstance(error, AuthorizationFailure):
        status = 401
    elif isinstance(error, TransportFailure):
        status = 503
    elif error.code == "invalid_argument":
        status = 400
    else:
        status = 500
        logger.error(f"Failed to get {what}: {error}")
    raise HTTPException(status_code=status, detail=error.to_dict())


@router.get("/summary")
async def get_summary(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> DashboardSummary:
    """
    Get high-level listening statistics.

    Returns total hours, distinct artists/tracks, top artist and most active year.
    """
    return _unwrap(await service.get_dashboard_summary(_window(period)), "summary")


@router.get("/top-artists")
async def get_top_artists(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    limit: int = Query(5, ge=1, le=100, description="Max artists to return"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[TopArtistEntry]:
    """
    Get artists ranked by listening time.
    """
    return _unwrap(await service.get_top_artists(_window(period), limit, offset), "top artists")


@router.get("/top-tracks")
async def get_top_tracks(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    limit: int = Query(5, ge=1, le=100, description="Max tracks to return"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[TopTrackEntry]:
    """
    Get tracks ranked by listening time.
    """
    return _unwrap(await service.get_top_tracks(_window(period), limit, offset), "top tracks")


@router.get("/trends")
async def get_trends(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[TrendPoint]:
    """
    Get listening hours per calendar month.
    """
    return _unwrap(await service.get_listening_trends(_window(period)), "trends")


@router.get("/trends/weekly")
async def get_weekly_trends(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[WeeklyTrendPoint]:
    """
    Get listening hours per ISO week.
    """
    return _unwrap(await service.get_weekly_listening_trends(_window(period)), "weekly trends")


@router.get("/clock")
async def get_clock(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[ClockCell]:
    """
    Get the listening heatmap by day of week (0 = Sunday) and hour.

    Cells without listening are omitted.
    """
    return _unwrap(await service.get_listening_clock(_window(period)), "listening clock")


@router.get("/streaks")
async def get_streaks(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> StreakStats:
    """
    Get longest and current runs of consecutive listening days.
    """
    return _unwrap(await service.get_listening_streaks(_window(period)), "streaks")


@router.get("/discovery")
async def get_discovery(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[DiscoveryPoint]:
    """
    Get artists and tracks heard for the first time ever, per month.
    """
    return _unwrap(await service.get_discovery_tracker(_window(period)), "discovery tracker")


@router.get("/loyalty")
async def get_loyalty(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    threshold: int | None = Query(None, ge=1, le=1000, description="Lifetime plays that make a repeat track"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> LoyaltyGauge:
    """
    Get the monthly share of plays going to repeat tracks.
    """
    return _unwrap(await service.get_loyalty_gauge(_window(period), threshold), "loyalty gauge")


@router.get("/history")
async def get_history(
    search: str | None = Query(None, description="Case-insensitive track or artist filter"),
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    limit: int = Query(50, ge=1, le=200, description="Items per page"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: AnalyticsService = Depends(get_analytics_service),
) -> HistoryPage:
    """
    Get paginated listening history, newest first.

    Returns the page of rows plus the total number of matching listens.
    """
    result = await service.get_listening_history(search, _window(period), offset, limit)
    return _unwrap(result, "history")


@router.get("/timeframes")
async def get_timeframes(
    service: AnalyticsService = Depends(get_analytics_service),
) -> list[TimeframeOption]:
    """
    Get every year and month that has listening data.
    """
    return _unwrap(await service.get_available_timeframes(), "timeframes")


@router.get("/dashboard")
async def get_dashboard(
    period: str = Query("all", description=PERIOD_DESCRIPTION),
    service: AnalyticsService = Depends(get_analytics_service),
) -> DashboardData:
    """
    Get every dashboard metric for one timeframe in a single consistent bundle.
    """
    return _unwrap(await service.get_dashboard_data(_timeframe(period)), "dashboard")


@router.post("/dashboard")
async def post_dashboard(
    payload: TimeframePayload,
    service: AnalyticsService = Depends(get_analytics_service),
) -> DashboardData:
    """
    Same as GET /dashboard with the timeframe given as a JSON body.
    """
    try:
        timeframe = Timeframe(payload.type, year=payload.year, month=payload.month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _unwrap(await service.get_dashboard_data(timeframe), "dashboard")
