"""
Remote Aggregation Dispatcher

Invokes precomputed aggregation functions by name on a store that supports
them, and classifies failures. No computation happens here.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from listen_analytics.services.errors import (
    AnalyticsError,
    CapabilityUnavailable,
    StoreError,
    TransportFailure,
    classify_code,
)

logger = logging.getLogger(__name__)

AGGREGATIONS = frozenset({
    "get_dashboard_summary",
    "get_top_artists",
    "get_top_tracks",
    "get_listening_trends",
    "get_weekly_listening_trends",
    "get_listening_clock",
    "get_listening_streaks",
    "get_discovery_tracker",
    "get_loyalty_gauge",
    "get_listening_history",
    "get_available_timeframes",
})


class RemoteAggregationDispatcher:
    """Calls named aggregations and turns store errors into typed failures."""

    def __init__(self, store: Any) -> None:
        self._store = store

    async def dispatch(self, name: str, params: dict[str, Any] | None = None) -> list[Mapping[str, Any]]:
        """
        Run a precomputed aggregation.

        Args:
            name: Aggregation function name
            params: Window bounds plus metric-specific arguments

        Returns:
            Rows returned by the store

        Raises:
            CapabilityUnavailable: The aggregation is not installed
            AuthorizationFailure: The store rejected the caller
            TransportFailure: The store could not be reached
            AnalyticsError: Any other store failure
        """
        if name not in AGGREGATIONS:
            raise CapabilityUnavailable(f"Unknown aggregation: {name}", code="not_installed")

        params = dict(params or {})
        try:
            rows = await self._store.call_aggregation(name, params)
        except StoreError as e:
            error_cls = classify_code(e.code)
            if error_cls is not CapabilityUnavailable:
                logger.warning("Aggregation %s failed (code=%s): %s", name, e.code, e.message)
            raise error_cls(f"Failed to fetch {name}: {e.message}", code=e.code, details=e) from e
        except (ConnectionError, TimeoutError) as e:
            logger.warning("Aggregation %s could not reach the store: %s", name, e)
            raise TransportFailure(f"Store unreachable during {name}", code="transport", details=e) from e

        if rows is None:
            return []
        if not isinstance(rows, list):
            raise AnalyticsError(f"Aggregation {name} returned {type(rows).__name__}, expected rows")
        return rows
