import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from listen_analytics.api.routes import stats
from listen_analytics.db import connection as db_connection
from listen_analytics.services.analytics_service import get_analytics_service

app = FastAPI(
    title="Listen Analytics API",
    description="Listening dashboard metrics computed from a listen log",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("LISTEN_ANALYTICS_CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stats.router, prefix="/api/stats", tags=["stats"])


@app.on_event("shutdown")
async def shutdown_connection_pool() -> None:
    """Close the database connection pool on shutdown."""
    await db_connection.close_pool()


@app.get("/")
async def root():
    return {"message": "Listen Analytics API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check with aggregation mode, listen cache and connection pool stats."""
    service = get_analytics_service()
    return {
        "status": "ok",
        "mode": service.mode,
        "cache": service.cache.get_stats(),
        "database": db_connection.get_pool_stats(),
    }
