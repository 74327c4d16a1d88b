# eventseries/core/series/schemas.py

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .timeutil import normalize_time_of_day
from .exceptions import SeriesValidationError

TitlePosition = Literal["top", "middle", "bottom"]
ImageFit = Literal["cover", "contain"]
PriceType = Literal["free", "paid", "donation"]
SeriesStatus = Literal["active", "paused", "completed", "cancelled"]
ExceptionType = Literal["modified", "cancelled", "rescheduled"]
UpdateScope = Literal["series_only", "future", "all"]
CancelScope = Literal["series_only", "future", "all"]


class TicketTier(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    currency: str
    description: Optional[str] = None


class SeriesDefaults(BaseModel):
    """
    Шаблон, копируемый в каждое вхождение серии.
    Фиксируется при создании серии.
    """
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    google_maps_url: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    external_chat_url: Optional[str] = None
    is_online: bool = False
    online_link: Optional[str] = None
    title_position: TitlePosition = "bottom"
    image_fit: ImageFit = "cover"
    focal_point: Optional[str] = None
    capacity: Optional[int] = Field(None, gt=0)
    price_type: Optional[PriceType] = None
    ticket_tiers: Optional[List[TicketTier]] = None
    tribe_id: Optional[str] = None
    organizer_id: Optional[str] = None
    venue_id: Optional[str] = None
    created_by: str = Field(..., min_length=1, max_length=64)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Title is required")
        return value.strip()

    @field_validator("description", "location_name", "address")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    def template_fields(self) -> Dict[str, Any]:
        """Поля, одинаковые для строки серии и строк вхождений."""
        data = self.model_dump(include=set(SeriesDefaults.model_fields))
        if not self.is_online:
            data["online_link"] = None
        return data


class SeriesCreate(SeriesDefaults):
    rrule: str = Field(..., min_length=1)
    starts_at_time: str = Field(..., description="Local time of day, HH:MM or HH:MM:SS")
    duration_minutes: Optional[int] = Field(None, description="Defaults to DEFAULT_DURATION_MINUTES")
    first_occurrence: date
    rrule_until: Optional[date] = None
    rrule_count: Optional[int] = None


class SeriesUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    google_maps_url: Optional[str] = None
    external_chat_url: Optional[str] = None
    capacity: Optional[int] = Field(None, gt=0)
    rrule: Optional[str] = None
    starts_at_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    rrule_until: Optional[date] = None
    rrule_count: Optional[int] = None
    status: Optional[SeriesStatus] = None
    update_scope: UpdateScope = "series_only"

    @field_validator("starts_at_time")
    @classmethod
    def normalize_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            return normalize_time_of_day(value)
        except SeriesValidationError as exc:
            raise ValueError(str(exc)) from exc


class ExceptionCreate(BaseModel):
    original_date: date
    exception_type: ExceptionType = "cancelled"
    reason: Optional[str] = None
    created_by: str = Field(..., min_length=1, max_length=64)


# ------------------------------------------------------------------ #
#                              outputs                               #
# ------------------------------------------------------------------ #

class SeriesCreated(BaseModel):
    id: str
    slug: str
    instances_created: int
    first_event_id: Optional[str] = None
    instances_generated_until: Optional[datetime] = None
    watermark_advanced: bool = True


class SeriesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    is_online: bool
    timezone: str
    capacity: Optional[int] = None
    price_type: Optional[str] = None
    organizer_id: Optional[str] = None
    venue_id: Optional[str] = None
    created_by: str
    rrule: str
    rule_description: str = ""
    starts_at_time: str
    duration_minutes: int
    first_occurrence: date
    rrule_until: Optional[date] = None
    rrule_count: Optional[int] = None
    status: str
    instances_generated_until: Optional[datetime] = None


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    series_instance_date: Optional[date] = None
    starts_at: datetime
    ends_at: datetime
    status: str
    is_exception: bool


class ExceptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    original_date: date
    exception_type: str
    reason: Optional[str] = None
    new_event_id: Optional[str] = None


class SeriesDetail(BaseModel):
    series: SeriesOut
    upcoming_events: List[EventOut] = Field(default_factory=list)
    exceptions: List[ExceptionOut] = Field(default_factory=list)


class ExtensionSummary(BaseModel):
    created: Dict[str, int] = Field(default_factory=dict)
    failed: List[str] = Field(default_factory=list)
