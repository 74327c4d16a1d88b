# eventseries/core/series/service.py

"""Service-layer for recurring event series."""

from __future__ import annotations

import logging
import random
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from eventseries.config import settings
from eventseries.core.recurrence import (
    RecurrenceSpec,
    describe_rule,
    expand_occurrences,
    parse_rule,
    resolve_end_condition,
)
from .exceptions import (
    ExpansionError,
    InvalidRuleError,
    OccurrencePersistenceError,
    SeriesNotFoundError,
    SeriesValidationError,
    SlugCollisionExhausted,
    UniqueViolationError,
    WatermarkAdvanceError,
)
from .models import EventSeries, SeriesException
from .repository import SKIPPING_EXCEPTION_TYPES, SeriesRepository, watermark_of
from .schemas import (
    ExceptionCreate,
    ExtensionSummary,
    SeriesCreate,
    SeriesCreated,
    SeriesDetail,
    SeriesOut,
    EventOut,
    ExceptionOut,
    SeriesUpdate,
)
from .slugs import occurrence_slug, series_slug
from .timeutil import (
    ensure_utc,
    generation_horizon,
    normalize_time_of_day,
    occurrence_bounds,
    watermark_for_horizon,
    window_start_for_watermark,
)

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Поля шаблона, которые PATCH может менять у серии и копировать во вхождения
SERIES_UPDATABLE_FIELDS = (
    "title", "description", "image_url", "location_name", "address", "google_maps_url",
    "external_chat_url", "capacity", "rrule", "starts_at_time", "duration_minutes",
    "rrule_until", "rrule_count", "status",
)
INSTANCE_COPIED_FIELDS = (
    "title", "description", "image_url", "location_name", "address", "google_maps_url",
    "external_chat_url", "capacity",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _spec_for(series: EventSeries) -> RecurrenceSpec:
    return RecurrenceSpec(
        rule=series.rrule,
        anchor_date=series.first_occurrence,
        until=series.rrule_until,
        count=series.rrule_count,
    )


class SeriesService:
    """
    Асинхронный сервис серий: создание с первичной генерацией вхождений,
    продление по водяному знаку, обновление и отмена.

    Часы и источник случайности передаются явно, чтобы тесты были детерминированы.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
        zone: Optional[ZoneInfo] = None,
        repository: Optional[SeriesRepository] = None,
    ) -> None:
        self.repo: SeriesRepository = repository or SeriesRepository(db_session)
        self.clock: Clock = clock
        self.rng: random.Random = rng or random.SystemRandom()
        self.zone: ZoneInfo = zone or settings.series_zone

    # ------------------------------------------------------------------ #
    #                              creation                              #
    # ------------------------------------------------------------------ #

    def _validate(self, payload: SeriesCreate) -> tuple[RecurrenceSpec, str, int]:
        try:
            parsed = parse_rule(payload.rrule)
        except InvalidRuleError as exc:
            raise InvalidRuleError(f"Invalid recurrence rule: {exc}") from exc

        time_of_day = normalize_time_of_day(payload.starts_at_time)
        duration = payload.duration_minutes
        if duration is None:
            duration = settings.DEFAULT_DURATION_MINUTES
        if duration <= 0:
            raise SeriesValidationError("duration_minutes must be positive")
        if payload.rrule_count is not None and payload.rrule_count < 1:
            raise SeriesValidationError("rrule_count must be at least 1")

        spec = RecurrenceSpec(
            rule=payload.rrule,
            anchor_date=payload.first_occurrence,
            until=payload.rrule_until,
            count=payload.rrule_count,
        )
        resolve_end_condition(parsed, spec)
        return spec, time_of_day, duration

    async def _insert_with_unique_slug(self, payload: SeriesCreate, values: Dict[str, Any]) -> EventSeries:
        attempts = settings.MAX_SLUG_RETRIES
        for attempt in range(attempts):
            slug = series_slug(payload.title, attempt, self.rng, settings.SLUG_MAX_LENGTH)
            try:
                return await self.repo.insert_series({**values, "slug": slug})
            except UniqueViolationError:
                log.warning("Slug collision on %r (attempt %d/%d), retrying", slug, attempt + 1, attempts)
        raise SlugCollisionExhausted(payload.title, attempts)

    def _instance_rows(
        self,
        series_id: str,
        slug: str,
        template: Dict[str, Any],
        dates: Sequence[date],
        time_of_day: str,
        duration: int,
    ) -> List[Dict[str, Any]]:
        rows = []
        for day in dates:
            starts_at, ends_at = occurrence_bounds(day, time_of_day, duration, self.zone)
            rows.append({
                **template,
                "slug": occurrence_slug(slug, day),
                "series_id": series_id,
                "series_instance_date": day,
                "timezone": self.zone.key,
                "starts_at": starts_at,
                "ends_at": ends_at,
                "status": "published",
                "is_exception": False,
            })
        return rows

    async def _advance_watermark(self, series_id: str, watermark: datetime) -> bool:
        try:
            await self.repo.update_watermark(series_id, watermark)
        except WatermarkAdvanceError:
            # Не фатально: следующее продление начнёт после последнего вхождения
            log.warning("Failed to advance watermark of series %s to %s", series_id, watermark.isoformat())
            return False
        log.info("Watermark of series %s advanced to %s", series_id, watermark.isoformat())
        return True

    async def create_series(self, payload: SeriesCreate) -> SeriesCreated:
        """
        Создает серию и первую партию вхождений.

        Порядок: проверка → развёртка (без I/O) → запись серии с повтором slug →
        запись вхождений одной транзакцией → сдвиг водяного знака.

        Raises:
            SeriesValidationError: некорректное правило, время или длительность.
            ExpansionError: правило не даёт ни одного вхождения или не поддерживается.
            SlugCollisionExhausted: не удалось подобрать свободный slug.
            SeriesPersistenceError: сбой записи серии.
            OccurrencePersistenceError: сбой записи вхождений (серия удалена).
        """
        spec, time_of_day, duration = self._validate(payload)

        now = self.clock()
        horizon = max(generation_horizon(now, settings.GENERATE_MONTHS_AHEAD, self.zone), spec.anchor_date)
        dates = expand_occurrences(
            spec, spec.anchor_date, horizon, max_iterations=settings.MAX_EXPANSION_ITERATIONS
        )
        if not dates:
            raise ExpansionError(f"Rule {payload.rrule!r} produces no occurrences from {spec.anchor_date}")

        template = payload.template_fields()
        series = await self._insert_with_unique_slug(payload, {
            **template,
            "timezone": self.zone.key,
            "rrule": payload.rrule,
            "starts_at_time": time_of_day,
            "duration_minutes": duration,
            "first_occurrence": spec.anchor_date,
            "rrule_until": spec.until,
            "rrule_count": spec.count,
            "status": "active",
        })

        # после rollback ORM-объект истекает, держим ключи отдельно
        series_id, slug = series.id, series.slug
        rows = self._instance_rows(series_id, slug, template, dates, time_of_day, duration)
        try:
            event_ids = await self.repo.insert_occurrences(rows)
        except OccurrencePersistenceError:
            log.exception("Occurrence batch failed for series %s, deleting the series", series_id)
            await self.repo.delete_series(series_id)
            raise

        watermark = watermark_for_horizon(horizon, self.zone)
        advanced = await self._advance_watermark(series_id, watermark)
        await self._complete_if_finished(series_id, spec, horizon)

        log.info(
            "Created series %s (%s) with %d instances, first on %s",
            series_id, slug, len(event_ids), dates[0],
        )
        return SeriesCreated(
            id=series_id,
            slug=slug,
            instances_created=len(event_ids),
            first_event_id=event_ids[0] if event_ids else None,
            instances_generated_until=watermark if advanced else None,
            watermark_advanced=advanced,
        )

    # ------------------------------------------------------------------ #
    #                              extension                             #
    # ------------------------------------------------------------------ #

    async def _extension_start(self, series: EventSeries) -> date:
        # Водяной знак мог остаться старым после сбоя: не раньше последнего вхождения
        latest = await self.repo.latest_instance_date(series.id)
        after_latest = latest + timedelta(days=1) if latest is not None else series.first_occurrence
        watermark = watermark_of(series)
        if watermark is None:
            return after_latest
        return max(window_start_for_watermark(watermark, self.zone), after_latest)

    @staticmethod
    def _is_finished(spec: RecurrenceSpec, horizon: date, excluded: Sequence[date]) -> bool:
        """True, если условие окончания уже достигнуто к ``horizon``."""
        until, count = resolve_end_condition(parse_rule(spec.rule), spec)
        if until is not None:
            return until <= horizon
        if count is not None:
            generated = expand_occurrences(
                spec, spec.anchor_date, horizon,
                exclude_dates=excluded, max_iterations=settings.MAX_EXPANSION_ITERATIONS,
            )
            return len(generated) >= count
        return False

    async def _complete_if_finished(
        self, series_id: str, spec: RecurrenceSpec, horizon: date, excluded: Sequence[date] = ()
    ) -> bool:
        if not self._is_finished(spec, horizon, excluded):
            return False
        await self.repo.update_series_fields(series_id, {"status": "completed"})
        log.info("Series %s reached its end condition, marked completed", series_id)
        return True

    async def extend_series(self, series: EventSeries, months_ahead: Optional[int] = None) -> int:
        """
        Генерирует вхождения строго после водяного знака до нового горизонта.
        Серия с достигнутым UNTIL/COUNT получает статус ``completed``.

        Returns:
            int: число созданных вхождений.

        Raises:
            ExpansionError: правило серии больше не разворачивается.
            OccurrencePersistenceError: партия не записана, водяной знак не сдвинут.
        """
        months = settings.GENERATE_MONTHS_AHEAD if months_ahead is None else months_ahead
        series_id = series.id
        spec = _spec_for(series)
        window_start = await self._extension_start(series)
        horizon = generation_horizon(self.clock(), months, self.zone)
        if window_start > horizon:
            log.debug("Series %s already generated up to %s", series_id, horizon)
            return 0

        excluded = await self.repo.skipped_dates(series_id)
        dates = expand_occurrences(
            spec,
            window_start,
            horizon,
            exclude_dates=excluded,
            max_iterations=settings.MAX_EXPANSION_ITERATIONS,
        )
        template = {
            field: getattr(series, field)
            for field in (
                "title", "description", "image_url", "location_name", "address", "google_maps_url",
                "latitude", "longitude", "external_chat_url", "is_online", "online_link",
                "title_position", "image_fit", "focal_point", "capacity", "price_type",
                "ticket_tiers", "tribe_id", "organizer_id", "venue_id", "created_by",
            )
        }
        rows = self._instance_rows(
            series_id, series.slug, template, dates, series.starts_at_time, series.duration_minutes
        )
        event_ids = await self.repo.insert_occurrences(rows)
        await self._advance_watermark(series_id, watermark_for_horizon(horizon, self.zone))
        log.info("Extended series %s by %d instances up to %s", series_id, len(event_ids), horizon)
        await self._complete_if_finished(series_id, spec, horizon, excluded)
        return len(event_ids)

    async def extend_due_series(self) -> ExtensionSummary:
        """
        Продлевает все активные серии, у которых водяной знак ближе
        ``EXTEND_THRESHOLD_MONTHS`` от текущего момента.
        """
        now = self.clock()
        threshold = ensure_utc(now) + relativedelta(months=settings.EXTEND_THRESHOLD_MONTHS)
        due = await self.repo.list_due_for_extension(threshold)
        log.info("Extension run: %d series due (threshold %s)", len(due), threshold.isoformat())

        summary = ExtensionSummary()
        for series_id in [s.id for s in due]:
            try:
                series = await self.repo.get_by_id(series_id)
                if series is None:
                    continue
                summary.created[series_id] = await self.extend_series(series)
            except (ExpansionError, SeriesValidationError, OccurrencePersistenceError):
                log.exception("Failed to extend series %s", series_id)
                summary.failed.append(series_id)
            except SQLAlchemyError:
                # сбой чтения: откатываем сессию и продолжаем с остальными
                log.exception("Store error while extending series %s", series_id)
                await self.repo.db.rollback()
                summary.failed.append(series_id)
        return summary

    # ------------------------------------------------------------------ #
    #                                reads                               #
    # ------------------------------------------------------------------ #

    async def get_series(self, slug: str) -> EventSeries:
        series = await self.repo.get_by_slug(slug)
        if series is None:
            raise SeriesNotFoundError(slug)
        return series

    @staticmethod
    def to_out(series: EventSeries) -> SeriesOut:
        out = SeriesOut.model_validate(series)
        try:
            out.rule_description = describe_rule(series.rrule)
        except InvalidRuleError:
            log.warning("Stored rule of series %s is not parseable: %r", series.id, series.rrule)
        return out

    async def list_series(self, created_by: Optional[str] = None, limit: int = 20) -> List[SeriesOut]:
        return [self.to_out(s) for s in await self.repo.list_series(created_by, limit)]

    async def get_series_detail(self, slug: str, upcoming_limit: int = 5) -> SeriesDetail:
        series = await self.get_series(slug)
        upcoming = await self.repo.list_upcoming_events(series.id, self.clock(), upcoming_limit)
        exceptions = await self.repo.list_exceptions(series.id)
        return SeriesDetail(
            series=self.to_out(series),
            upcoming_events=[EventOut.model_validate(e) for e in upcoming],
            exceptions=[ExceptionOut.model_validate(e) for e in exceptions],
        )

    # ------------------------------------------------------------------ #
    #                         update / cancel                            #
    # ------------------------------------------------------------------ #

    async def update_series(self, slug: str, changes: SeriesUpdate) -> EventSeries:
        """
        Обновляет шаблон серии и, при ``update_scope`` future/all,
        обычные (не исключённые) вхождения.
        """
        series = await self.get_series(slug)
        provided = changes.model_dump(exclude_unset=True)
        scope = provided.pop("update_scope", "series_only")
        values = {k: v for k, v in provided.items() if k in SERIES_UPDATABLE_FIELDS}

        for required in ("title", "rrule", "starts_at_time", "duration_minutes", "status"):
            if required in values and values[required] is None:
                raise SeriesValidationError(f"{required} cannot be cleared")
        if "duration_minutes" in values and values["duration_minutes"] <= 0:
            raise SeriesValidationError("duration_minutes must be positive")
        if values.get("rrule_count") is not None and values["rrule_count"] < 1:
            raise SeriesValidationError("rrule_count must be at least 1")
        if {"rrule", "rrule_until", "rrule_count"} & set(values):
            rule = values.get("rrule", series.rrule)
            try:
                parsed = parse_rule(rule)
            except InvalidRuleError as exc:
                raise InvalidRuleError(f"Invalid recurrence rule: {exc}") from exc
            spec = RecurrenceSpec(
                rule=rule,
                anchor_date=series.first_occurrence,
                until=values.get("rrule_until", series.rrule_until),
                count=values.get("rrule_count", series.rrule_count),
            )
            resolve_end_condition(parsed, spec)
            # неподдерживаемая комбинация всплывает уже на якоре
            expand_occurrences(spec, spec.anchor_date, spec.anchor_date)

        await self.repo.update_series_fields(series.id, values)
        log.info("Updated series %s fields %s (scope=%s)", series.id, sorted(values), scope)

        if scope in ("future", "all"):
            now = self.clock()
            starting_after = now if scope == "future" else None
            instance_values = {k: v for k, v in values.items() if k in INSTANCE_COPIED_FIELDS}
            updated = await self.repo.update_instances(series.id, instance_values, starting_after)
            log.debug("Propagated template changes to %d instances of %s", updated, series.id)

            if "starts_at_time" in values or "duration_minutes" in values:
                time_of_day = values.get("starts_at_time") or series.starts_at_time
                duration = values.get("duration_minutes") or series.duration_minutes
                instances = await self.repo.list_instances_after(series.id, now)
                changes_iter = [
                    (event.id, *occurrence_bounds(event.series_instance_date, time_of_day, duration, self.zone))
                    for event in instances
                    if event.series_instance_date is not None
                ]
                moved = await self.repo.reschedule_instances(changes_iter)
                log.info("Rescheduled %d future instances of %s", moved, series.id)

        await self.repo.db.refresh(series)
        return series

    async def cancel_series(self, slug: str, scope: str = "future") -> int:
        """
        Отменяет серию. ``scope``: future (по умолчанию) | all | series_only.

        Returns:
            int: число отменённых вхождений.
        """
        if scope not in ("future", "all", "series_only"):
            raise SeriesValidationError(f"Unknown cancel scope: {scope}")
        series = await self.get_series(slug)
        cancelled = 0
        if scope == "all":
            cancelled = await self.repo.update_instances(
                series.id, {"status": "cancelled"}, include_exceptions=True
            )
        elif scope == "future":
            cancelled = await self.repo.update_instances(
                series.id, {"status": "cancelled"}, starting_after=self.clock(), include_exceptions=True
            )
        await self.repo.update_series_fields(series.id, {"status": "cancelled"})
        log.info("Cancelled series %s (scope=%s, %d instances)", series.id, scope, cancelled)
        return cancelled

    async def record_exception(self, slug: str, payload: ExceptionCreate) -> SeriesException:
        """
        Записывает исключение для даты серии. Отменённые и перенесённые
        даты исключаются из последующих продлений; уже созданное
        вхождение помечается ``is_exception``.

        Raises:
            SeriesValidationError: дата не является вхождением или исключение уже есть.
        """
        series = await self.get_series(slug)
        instance = await self.repo.get_instance(series.id, payload.original_date)
        if instance is None and payload.original_date not in expand_occurrences(
            _spec_for(series), payload.original_date, payload.original_date,
            max_iterations=settings.MAX_EXPANSION_ITERATIONS,
        ):
            raise SeriesValidationError(f"{payload.original_date} is not an occurrence of {slug}")

        series_id = series.id
        reopen = (
            series.status == "completed"
            and payload.exception_type in SKIPPING_EXCEPTION_TYPES
            and resolve_end_condition(parse_rule(series.rrule), _spec_for(series))[1] is not None
        )

        try:
            exception = await self.repo.insert_exception({
                "series_id": series.id,
                "original_date": payload.original_date,
                "exception_type": payload.exception_type,
                "reason": payload.reason,
                "created_by": payload.created_by,
                "new_event_id": None,
            })
        except UniqueViolationError as exc:
            raise SeriesValidationError(
                f"An exception for {payload.original_date} already exists"
            ) from exc

        if instance is not None:
            instance.is_exception = True
            if payload.exception_type == "cancelled":
                instance.status = "cancelled"
            self.repo.db.add(instance)
        await self.repo.commit()

        if reopen:
            # Пропущенная дата не расходует COUNT: серии нужно ещё одно вхождение
            await self.repo.update_series_fields(
                series_id, {"status": "active", "instances_generated_until": None}
            )
            log.info("Series %s reopened after a skipped date", series_id)
        log.info(
            "Recorded %s exception for series %s on %s",
            payload.exception_type, series.id, payload.original_date,
        )
        return exception


__all__ = ["SeriesService", "utc_now"]
