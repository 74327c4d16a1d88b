# eventseries/core/series/repository.py

"""
Persistence layer for series and their instances.

Каждый пишущий метод коммитит свою транзакцию: состояние рабочего
процесса (серия → вхождения → водяной знак) видно в БД по шагам.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import (
    OccurrencePersistenceError,
    SeriesPersistenceError,
    UniqueViolationError,
    WatermarkAdvanceError,
)
from .models import Event, EventSeries, SeriesException
from .timeutil import ensure_utc

log = logging.getLogger(__name__)

# Даты с такими исключениями больше не генерируются
SKIPPING_EXCEPTION_TYPES = ("cancelled", "rescheduled")


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    # asyncpg: sqlstate, psycopg: pgcode, sqlite: только текст
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == "23505"
    return "unique" in str(orig).lower()


class SeriesRepository:
    """
    Асинхронный репозиторий серий поверх ``AsyncSession``.
    Массовые UPDATE идут мимо identity map, поэтому чтения серий и
    вхождений перезаписывают уже загруженные объекты (``populate_existing``).

    Args:
        db_session (AsyncSession): Активная асинхронная сессия SQLAlchemy.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self.db: AsyncSession = db_session

    # ------------------------------------------------------------------ #
    #                      contract used by the workflow                 #
    # ------------------------------------------------------------------ #

    async def insert_series(self, values: Dict[str, Any]) -> EventSeries:
        """
        Insert a series row.

        Raises:
            UniqueViolationError: the slug is already taken.
            SeriesPersistenceError: any other store failure.
        """
        series = EventSeries(**values)
        self.db.add(series)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if is_unique_violation(exc):
                raise UniqueViolationError(str(exc.orig)) from exc
            raise SeriesPersistenceError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise SeriesPersistenceError(str(exc)) from exc
        log.info("Inserted series id=%s slug=%s", series.id, series.slug)
        return series

    async def insert_occurrences(self, rows: Sequence[Dict[str, Any]]) -> List[str]:
        """
        Insert an occurrence batch atomically.

        Returns:
            List[str]: ids of the inserted events, ordered by ``starts_at``.

        Raises:
            OccurrencePersistenceError: nothing from the batch was written.
        """
        if not rows:
            return []
        ordered = sorted(rows, key=lambda row: row["starts_at"])
        events = [Event(**row) for row in ordered]
        self.db.add_all(events)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise OccurrencePersistenceError(str(exc)) from exc
        log.info("Inserted %d occurrences for series %s", len(events), ordered[0].get("series_id"))
        return [event.id for event in events]

    async def update_watermark(self, series_id: str, watermark: datetime) -> bool:
        """
        Move the watermark forward; never moves it back.

        Returns:
            bool: True if the row was updated.

        Raises:
            WatermarkAdvanceError: the store rejected the update.
        """
        stmt = (
            update(EventSeries)
            .where(EventSeries.id == series_id)
            .where(
                or_(
                    EventSeries.instances_generated_until.is_(None),
                    EventSeries.instances_generated_until < watermark,
                )
            )
            .values(instances_generated_until=watermark)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise WatermarkAdvanceError(str(exc)) from exc
        return result.rowcount > 0

    async def delete_series(self, series_id: str) -> None:
        """Compensating delete: removes the series and anything generated for it."""
        await self.db.execute(delete(Event).where(Event.series_id == series_id))
        await self.db.execute(delete(SeriesException).where(SeriesException.series_id == series_id))
        await self.db.execute(delete(EventSeries).where(EventSeries.id == series_id))
        await self.db.commit()
        log.info("Deleted series id=%s", series_id)

    # ------------------------------------------------------------------ #
    #                                reads                               #
    # ------------------------------------------------------------------ #

    async def get_by_id(self, series_id: str) -> EventSeries | None:
        return await self.db.get(EventSeries, series_id, populate_existing=True)

    async def get_by_slug(self, slug: str) -> EventSeries | None:
        result = await self.db.scalars(
            select(EventSeries).where(EventSeries.slug == slug).execution_options(populate_existing=True)
        )
        return result.one_or_none()

    async def list_series(self, created_by: Optional[str] = None, limit: int = 20) -> Sequence[EventSeries]:
        stmt = select(EventSeries).order_by(EventSeries.created_at.desc(), EventSeries.slug).limit(limit)
        if created_by is not None:
            stmt = stmt.where(EventSeries.created_by == created_by)
        else:
            stmt = stmt.where(EventSeries.status == "active")
        return (await self.db.scalars(stmt.execution_options(populate_existing=True))).all()

    async def list_events(self, series_id: str) -> Sequence[Event]:
        stmt = (
            select(Event)
            .where(Event.series_id == series_id)
            .order_by(Event.series_instance_date)
            .execution_options(populate_existing=True)
        )
        return (await self.db.scalars(stmt)).all()

    async def list_upcoming_events(self, series_id: str, after: datetime, limit: int) -> Sequence[Event]:
        stmt = (
            select(Event)
            .where(Event.series_id == series_id)
            .where(Event.status == "published")
            .where(Event.starts_at > after)
            .order_by(Event.starts_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return (await self.db.scalars(stmt)).all()

    async def list_exceptions(self, series_id: str) -> Sequence[SeriesException]:
        stmt = (
            select(SeriesException)
            .where(SeriesException.series_id == series_id)
            .order_by(SeriesException.original_date)
        )
        return (await self.db.scalars(stmt)).all()

    async def skipped_dates(self, series_id: str) -> List[date]:
        stmt = (
            select(SeriesException.original_date)
            .where(SeriesException.series_id == series_id)
            .where(SeriesException.exception_type.in_(SKIPPING_EXCEPTION_TYPES))
        )
        return list((await self.db.scalars(stmt)).all())

    async def latest_instance_date(self, series_id: str) -> date | None:
        stmt = select(func.max(Event.series_instance_date)).where(Event.series_id == series_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_due_for_extension(self, threshold: datetime) -> Sequence[EventSeries]:
        """Active series whose watermark is missing or earlier than ``threshold``."""
        stmt = (
            select(EventSeries)
            .where(EventSeries.status == "active")
            .where(
                or_(
                    EventSeries.instances_generated_until.is_(None),
                    EventSeries.instances_generated_until < threshold,
                )
            )
            .order_by(EventSeries.instances_generated_until)
            .execution_options(populate_existing=True)
        )
        return (await self.db.scalars(stmt)).all()

    # ------------------------------------------------------------------ #
    #                         template maintenance                       #
    # ------------------------------------------------------------------ #

    async def update_series_fields(self, series_id: str, values: Dict[str, Any]) -> None:
        if not values:
            return
        await self.db.execute(
            update(EventSeries)
            .where(EventSeries.id == series_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def update_instances(
        self,
        series_id: str,
        values: Dict[str, Any],
        starting_after: Optional[datetime] = None,
        include_exceptions: bool = False,
    ) -> int:
        """Bulk-update generated instances; manual exceptions are skipped unless asked."""
        if not values:
            return 0
        conditions = [Event.series_id == series_id]
        if not include_exceptions:
            conditions.append(Event.is_exception.is_(False))
        if starting_after is not None:
            conditions.append(Event.starts_at > starting_after)
        result = await self.db.execute(
            update(Event).where(and_(*conditions)).values(**values).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def list_instances_after(self, series_id: str, after: datetime) -> Sequence[Event]:
        stmt = (
            select(Event)
            .where(Event.series_id == series_id)
            .where(Event.is_exception.is_(False))
            .where(Event.starts_at > after)
            .order_by(Event.starts_at)
        )
        return (await self.db.scalars(stmt)).all()

    async def reschedule_instances(self, changes: Iterable[tuple[str, datetime, datetime]]) -> int:
        count = 0
        for event_id, starts_at, ends_at in changes:
            await self.db.execute(
                update(Event)
                .where(Event.id == event_id)
                .values(starts_at=starts_at, ends_at=ends_at)
                .execution_options(synchronize_session=False)
            )
            count += 1
        await self.db.commit()
        return count

    async def insert_exception(self, values: Dict[str, Any]) -> SeriesException:
        """
        Raises:
            UniqueViolationError: an exception already exists for that date.
        """
        exception = SeriesException(**values)
        self.db.add(exception)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            if is_unique_violation(exc):
                raise UniqueViolationError(str(exc.orig)) from exc
            raise
        return exception

    async def get_instance(self, series_id: str, day: date) -> Event | None:
        stmt = select(Event).where(Event.series_id == series_id).where(Event.series_instance_date == day)
        return (await self.db.scalars(stmt)).one_or_none()

    async def commit(self) -> None:
        await self.db.commit()


def watermark_of(series: EventSeries) -> datetime | None:
    if series.instances_generated_until is None:
        return None
    return ensure_utc(series.instances_generated_until)


__all__ = ["SeriesRepository", "is_unique_violation", "watermark_of", "SKIPPING_EXCEPTION_TYPES"]
