import os
import sys
from datetime import datetime, timezone

# Ensure Python path includes project root for `import eventseries`
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import eventseries.conftest  # noqa: F401,E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import Depends  # noqa: E402

from eventseries.db.base import (  # noqa: E402
    AsyncSession,
    async_session_factory,
    create_db_and_tables,
    drop_db_and_tables,
    get_async_db_session,
)

# Пятница, 10 января 2025, 03:00 UTC (10:00 в Хошимине)
FIXED_NOW = datetime(2025, 1, 10, 3, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest_asyncio.fixture
async def setup_db():
    await create_db_and_tables()
    yield
    await drop_db_and_tables()


@pytest_asyncio.fixture
async def db_session(setup_db):
    session = async_session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def client(setup_db):
    from eventseries.api.v1.series import get_series_service
    from eventseries.core.series.service import SeriesService
    from eventseries.main import app

    def _service(db: AsyncSession = Depends(get_async_db_session)) -> SeriesService:
        return SeriesService(db_session=db, clock=fixed_clock)

    app.dependency_overrides[get_series_service] = _service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def series_payload():
    return {
        "title": "Tuesday Jazz Night",
        "description": "Live jazz every week",
        "location_name": "Saigon Ranger",
        "created_by": "user-1",
        "rrule": "FREQ=WEEKLY;BYDAY=TU",
        "starts_at_time": "19:00",
        "first_occurrence": "2025-01-14",
    }
