# eventseries/api/v1/health.py

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from eventseries.config import settings
from eventseries.db.base import engine

router = APIRouter(prefix="/v1/health", tags=["Health"])
log = logging.getLogger(__name__)


async def _ping_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _ping_broker() -> bool:
    client = Redis.from_url(settings.CELERY_BROKER_URL, socket_connect_timeout=2)
    try:
        return bool(await client.ping())
    finally:
        await client.aclose()


@router.get("/ready")
async def readiness() -> dict[str, str]:
    out: dict[str, str] = {}

    # DB
    try:
        await _ping_database()
        out["db"] = "ok"
    except SQLAlchemyError as exc:
        log.exception("DB health check failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="db error") from exc

    # Broker: без него не работает только периодическое продление
    try:
        out["broker"] = "ok" if await _ping_broker() else "error"
    except (RedisError, OSError):
        log.warning("Broker health check failed", exc_info=True)
        out["broker"] = "error"

    return out
