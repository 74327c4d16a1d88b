# eventseries/main.py

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from eventseries.api.v1.health import router as health_router
from eventseries.api.v1.series import router as series_router
from eventseries.config import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(__name__)

description = """
Recurring event series: creation with initial instance generation,
rolling extension, template updates, cancellation and per-date exceptions.
"""
tags_metadata = [
    {"name": "Series", "description": "Recurring event series and their instances."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    log.info("FastAPI application startup complete. Timezone: %s", settings.SERIES_TIMEZONE)
    yield
    log.info("FastAPI application shutdown.")


app = FastAPI(
    title="Event Series API",
    description=description,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

app.include_router(series_router)
app.include_router(health_router)

log.info("FastAPI application configured. Environment: %s", settings.ENVIRONMENT)


@app.get("/healthz", tags=["Health"], status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness check."""
    return {"status": "ok", "environment": settings.ENVIRONMENT}
