from __future__ import annotations

import asyncio
import logging

from psycopg_pool import AsyncConnectionPool

from listen_analytics.app_settings import database_url, load_settings

logger = logging.getLogger(__name__)

# Global pool instance (lazy initialized)
_pool: AsyncConnectionPool | None = None
_pool_lock = asyncio.Lock()


async def _create_pool() -> AsyncConnectionPool:
    """Create, open and return a new connection pool."""
    url = database_url()
    config = load_settings()["database"]

    pool = AsyncConnectionPool(
        conninfo=url,
        min_size=config["pool_min"],
        max_size=config["pool_max"],
        timeout=config["pool_timeout"],
        max_idle=config["pool_max_idle"],
        open=False,
        check=AsyncConnectionPool.check_connection,
    )
    await pool.open()

    logger.info(
        "Database connection pool initialized (min=%d, max=%d)",
        config["pool_min"],
        config["pool_max"],
    )
    return pool


async def get_pool() -> AsyncConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is not None:
        return _pool

    async with _pool_lock:
        if _pool is not None:
            return _pool
        _pool = await _create_pool()
        return _pool


async def close_pool() -> None:
    """Close the connection pool. Called at shutdown."""
    global _pool
    async with _pool_lock:
        if _pool is not None:
            try:
                await _pool.close()
                logger.info("Database connection pool closed")
            except Exception as e:
                logger.warning("Error closing connection pool: %s", e)
            _pool = None


def get_pool_stats() -> dict | None:
    """Get connection pool statistics for monitoring, or None before the pool is opened."""
    pool = _pool
    if pool is None:
        return None
    stats = pool.get_stats()
    return {
        "pool_size": stats.get("pool_size", 0),
        "pool_available": stats.get("pool_available", 0),
        "requests_waiting": stats.get("requests_waiting", 0),
        "pool_min": pool.min_size,
        "pool_max": pool.max_size,
    }
