# eventseries/core/series/models.py

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from eventseries.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class EventSeries(Base):
    """
    ORM модель серии событий.

    Содержит шаблон (поля по умолчанию, копируемые в каждое вхождение),
    правило повторения и водяной знак генерации.
    """
    __tablename__ = "event_series"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(80), unique=True, index=True, nullable=False)

    # --- Шаблон ---
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    google_maps_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    external_chat_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    online_link: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    title_position: Mapped[str] = mapped_column(String(16), default="bottom", nullable=False)
    image_fit: Mapped[str] = mapped_column(String(16), default="cover", nullable=False)
    focal_point: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ticket_tiers: Mapped[Optional[List[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    tribe_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    organizer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    venue_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # --- Повторение ---
    rrule: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at_time: Mapped[str] = mapped_column(String(8), nullable=False, comment="HH:MM:SS, local")
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    first_occurrence: Mapped[date] = mapped_column(Date, nullable=False)
    rrule_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    rrule_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False, index=True)
    instances_generated_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="UTC watermark of materialized instances"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    events: Mapped[List["Event"]] = relationship(back_populates="series", passive_deletes=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<EventSeries id={self.id} slug={self.slug!r} rrule={self.rrule!r} status={self.status}>"


class Event(Base):
    """Конкретное вхождение серии (или одиночное событие)."""
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("series_id", "series_instance_date", name="uq_events_series_instance_date"),
        Index("ix_events_series_starts_at", "series_id", "starts_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(96), unique=True, index=True, nullable=False)
    series_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("event_series.id", ondelete="CASCADE"), nullable=True, index=True
    )
    series_instance_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    google_maps_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    external_chat_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    online_link: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    title_position: Mapped[str] = mapped_column(String(16), default="bottom", nullable=False)
    image_fit: Mapped[str] = mapped_column(String(16), default="cover", nullable=False)
    focal_point: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ticket_tiers: Mapped[Optional[List[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    tribe_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    organizer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    venue_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="published", nullable=False, index=True)
    # True для вхождений, изменённых вручную: массовые обновления серии их не трогают
    is_exception: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    series: Mapped[Optional[EventSeries]] = relationship(back_populates="events")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Event id={self.id} slug={self.slug!r} starts_at={self.starts_at} status={self.status}>"


class SeriesException(Base):
    __tablename__ = "series_exceptions"
    __table_args__ = (
        UniqueConstraint("series_id", "original_date", name="uq_series_exceptions_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    series_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("event_series.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    exception_type: Mapped[str] = mapped_column(String(16), nullable=False, comment="modified | cancelled | rescheduled")
    new_event_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SeriesException series={self.series_id} date={self.original_date} type={self.exception_type}>"
