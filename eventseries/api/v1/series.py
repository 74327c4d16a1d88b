# eventseries/api/v1/series.py

from __future__ import annotations

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from eventseries.core.series.exceptions import (
    ExpansionError,
    OccurrencePersistenceError,
    SeriesError,
    SeriesNotFoundError,
    SeriesPersistenceError,
    SeriesValidationError,
    SlugCollisionExhausted,
)
from eventseries.core.series.schemas import (
    CancelScope,
    ExceptionCreate,
    ExceptionOut,
    ExtensionSummary,
    SeriesCreate,
    SeriesCreated,
    SeriesDetail,
    SeriesOut,
    SeriesUpdate,
)
from eventseries.core.series.service import SeriesService
from eventseries.db.base import get_async_db_session

router = APIRouter(prefix="/v1/series", tags=["Series"])
log = logging.getLogger(__name__)


class SuccessOut(BaseModel):
    success: bool = True


def get_series_service(db: AsyncSession = Depends(get_async_db_session)) -> SeriesService:
    return SeriesService(db_session=db)


def _raise_http(exc: SeriesError) -> NoReturn:
    """Переводит доменную ошибку в HTTP-ответ."""
    if isinstance(exc, SeriesNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Series not found") from exc
    if isinstance(exc, (SeriesValidationError, ExpansionError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, SlugCollisionExhausted):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, OccurrencePersistenceError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create event instances",
        ) from exc
    if isinstance(exc, SeriesPersistenceError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create series",
        ) from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@router.post(
    "",
    response_model=SeriesCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurring event series",
    description="Validates the rule, creates the series and materializes instances for the next months.",
)
async def create_series(
    payload: SeriesCreate = Body(...),
    service: SeriesService = Depends(get_series_service),
) -> SeriesCreated:
    log.info("[API /series] Create request by '%s': %r (%s)", payload.created_by, payload.title, payload.rrule)
    try:
        created = await service.create_series(payload)
    except SeriesError as exc:
        log.warning("[API /series] Create failed: %s", exc)
        _raise_http(exc)
    log.info("[API /series] Created %s with %d instances", created.slug, created.instances_created)
    return created


@router.get("", response_model=List[SeriesOut], summary="List series")
async def list_series(
    created_by: Optional[str] = Query(None, description="Only series of this creator (any status)"),
    limit: int = Query(20, ge=1, le=100),
    service: SeriesService = Depends(get_series_service),
) -> List[SeriesOut]:
    return await service.list_series(created_by=created_by, limit=limit)


@router.post(
    "/extend",
    response_model=ExtensionSummary,
    summary="Extend active series",
    description="Materializes instances for every active series whose watermark is close to now.",
)
async def extend_series(service: SeriesService = Depends(get_series_service)) -> ExtensionSummary:
    summary = await service.extend_due_series()
    log.info(
        "[API /series/extend] %d series extended, %d failed",
        len(summary.created), len(summary.failed),
    )
    return summary


@router.get("/{slug}", response_model=SeriesDetail, summary="Series details with upcoming instances")
async def get_series(
    slug: str,
    upcoming_limit: int = Query(5, ge=1, le=50),
    service: SeriesService = Depends(get_series_service),
) -> SeriesDetail:
    try:
        return await service.get_series_detail(slug, upcoming_limit=upcoming_limit)
    except SeriesError as exc:
        _raise_http(exc)


@router.patch("/{slug}", response_model=SuccessOut, summary="Update series template")
async def update_series(
    slug: str,
    changes: SeriesUpdate = Body(...),
    service: SeriesService = Depends(get_series_service),
) -> SuccessOut:
    try:
        await service.update_series(slug, changes)
    except SeriesError as exc:
        _raise_http(exc)
    return SuccessOut()


@router.delete("/{slug}", response_model=SuccessOut, summary="Cancel series")
async def cancel_series(
    slug: str,
    scope: CancelScope = Query("future"),
    service: SeriesService = Depends(get_series_service),
) -> SuccessOut:
    try:
        await service.cancel_series(slug, scope=scope)
    except SeriesError as exc:
        _raise_http(exc)
    return SuccessOut()


@router.post(
    "/{slug}/exceptions",
    response_model=ExceptionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record an exception for one instance date",
)
async def record_exception(
    slug: str,
    payload: ExceptionCreate = Body(...),
    service: SeriesService = Depends(get_series_service),
) -> ExceptionOut:
    try:
        exception = await service.record_exception(slug, payload)
    except SeriesError as exc:
        _raise_http(exc)
    return ExceptionOut.model_validate(exception)
