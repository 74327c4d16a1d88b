# eventseries/workers/tasks.py

from __future__ import annotations

import asyncio
from typing import Any, Dict

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from eventseries.config import settings
from eventseries.core.series.service import SeriesService
from eventseries.db.base import async_session_context

log = get_task_logger(__name__)

celery_app = Celery(
    "eventseries",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["eventseries.workers.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_track_started=True,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
)
celery_app.conf.beat_schedule = {
    "extend-active-series-daily": {
        "task": "eventseries.workers.tasks.extend_active_series_task",
        "schedule": crontab(hour=settings.EXTEND_SERIES_CRON_HOUR, minute=0),
    },
}


# --- Внутренняя асинхронная логика для задачи ---
async def _run_extend_series_logic(task_id: str | None = None) -> Dict[str, Any]:
    log.info(">>> [extend_series START] Task ID: %s", task_id)
    async with async_session_context() as session:
        summary = await SeriesService(db_session=session).extend_due_series()
    log.info(
        "<<< [extend_series DONE] Task ID: %s, extended %d series (%d instances), %d failed",
        task_id, len(summary.created), sum(summary.created.values()), len(summary.failed),
    )
    return summary.model_dump()


@celery_app.task(
    name="eventseries.workers.tasks.extend_active_series_task",
    bind=True,
    autoretry_for=(Exception,),
    retry_kwargs={"max_retries": 3},
    retry_backoff=True,
    retry_backoff_max=60 * 5,
    retry_jitter=True,
)
def extend_active_series_task(self) -> Dict[str, Any]:
    """Ежедневное продление активных серий до горизонта генерации."""
    # У воркера нет своего event loop: запускаем асинхронную логику отдельно
    return asyncio.run(_run_extend_series_logic(self.request.id))


__all__ = ["celery_app", "extend_active_series_task"]
