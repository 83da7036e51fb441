"""
Listen Stores

Row sources the analytics engine reads from. Every store can return the full
listen log; stores that also expose precomputed aggregations implement
``call_aggregation`` and report it through ``supports_aggregations``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from listen_analytics.services.errors import StoreError

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]
AggregationHandler = Callable[[str, dict[str, Any]], list[Row]]

LISTEN_COLUMNS = ("ts", "artist", "track", "ms_played")


class ListenStore(Protocol):
    """Queryable listen log."""

    async def fetch_listens(self) -> list[Row]:
        """Return every listen row with ts, artist, track and ms_played."""
        ...


def store_supports_aggregations(store: Any) -> bool:
    """One-time capability check for the precomputed aggregation path."""
    call = getattr(store, "call_aggregation", None)
    if not callable(call):
        return False
    return bool(getattr(store, "supports_aggregations", True))


def _error_code(exc: psycopg.Error) -> str:
    if exc.sqlstate:
        return exc.sqlstate
    if isinstance(exc, psycopg.OperationalError):
        return "transport"
    return "unknown"


class PostgresListenStore:
    """Listen log and aggregation functions served from Postgres."""

    supports_aggregations = True

    def __init__(self, pool: AsyncConnectionPool | None = None, table: str = "listens") -> None:
        self._pool = pool
        self._table = table

    async def _get_pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            from listen_analytics.db.connection import get_pool

            self._pool = await get_pool()
        return self._pool

    async def _fetch(self, query: sql.Composable, params: dict[str, Any] | None = None) -> list[Row]:
        pool = await self._get_pool()
        try:
            async with pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except PoolTimeout as e:
            raise StoreError(f"Timed out waiting for a database connection: {e}", code="timeout") from e
        except psycopg.Error as e:
            raise StoreError(str(e), code=_error_code(e)) from e

    async def fetch_listens(self) -> list[Row]:
        query = sql.SQL("SELECT {} FROM {}").format(
            sql.SQL(", ").join(sql.Identifier(col) for col in LISTEN_COLUMNS),
            sql.Identifier(self._table),
        )
        rows = await self._fetch(query)
        logger.debug("Fetched %d listen rows", len(rows))
        return rows

    async def call_aggregation(self, name: str, params: dict[str, Any]) -> list[Row]:
        """Run ``SELECT * FROM name(arg => value, ...)``."""
        args = sql.SQL(", ").join(
            sql.SQL("{} => {}").format(sql.Identifier(key), sql.Placeholder(key))
            for key in params
        )
        query = sql.SQL("SELECT * FROM {}({})").format(sql.Identifier(name), args)
        return await self._fetch(query, params)


class InMemoryListenStore:
    """
    Listen log held in memory.

    Aggregations are optional: pass a mapping of aggregation name to handler
    (or a single handler for every name) to expose the precomputed path.
    Unknown names fail the way Postgres does for a missing function.
    """

    def __init__(
        self,
        rows: list[Row] | None = None,
        aggregations: Mapping[str, Callable[[dict[str, Any]], list[Row]]] | AggregationHandler | None = None,
        fetch_error: StoreError | None = None,
        fetch_delay: float = 0.0,
    ) -> None:
        self.rows = list(rows or [])
        self.fetch_error = fetch_error
        self.fetch_delay = fetch_delay
        self.fetch_count = 0
        self.aggregation_calls: list[tuple[str, dict[str, Any]]] = []
        self._aggregations = aggregations

    @property
    def supports_aggregations(self) -> bool:
        return self._aggregations is not None

    async def fetch_listens(self) -> list[Row]:
        self.fetch_count += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        else:
            await asyncio.sleep(0)
        if self.fetch_error is not None:
            raise self.fetch_error
        return [dict(row) for row in self.rows]

    async def call_aggregation(self, name: str, params: dict[str, Any]) -> list[Row]:
        self.aggregation_calls.append((name, dict(params)))
        await asyncio.sleep(0)
        if self._aggregations is None:
            raise StoreError(f"function {name} does not exist", code="42883")
        if callable(self._aggregations):
            return list(self._aggregations(name, params))
        handler = self._aggregations.get(name)
        if handler is None:
            raise StoreError(f"Could not find the function {name}", code="PGRST202")
        return list(handler(params))
