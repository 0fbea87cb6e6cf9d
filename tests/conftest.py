from __future__ import annotations

import math
import os
from datetime import datetime, timedelta, timezone

# keep farmland.db from touching the on-disk default while tests import it
os.environ.setdefault("FARMLAND_DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool

from farmland.area import polygon_area_ha
from farmland.db import init_db, make_engine, make_session_factory
from farmland.geometry import validate_ring
from farmland.repository import FarmRepository
from farmland.retry import RetryConfig

UTC = timezone.utc
FAST_RETRY = RetryConfig(max_attempts=5, initial_delay=0.0, jitter=False)


class ClockStub:
    """Mutable clock so tests can control lifecycle timestamps."""

    def __init__(self, initial: datetime | None = None):
        self._now = initial or datetime(2025, 1, 1, tzinfo=UTC)

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **delta_kwargs) -> None:
        self._now += timedelta(**delta_kwargs)

    def __call__(self) -> datetime:
        return self._now


def box(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list[list[float]]:
    """Closed counter-clockwise rectangle ring."""
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


def polygon(ring: list[list[float]]) -> dict:
    return {"type": "Polygon", "coordinates": [ring]}


def square_ring(target_ha: float, lon: float = 77.0, lat: float = 12.0) -> list[list[float]]:
    """Degree-square ring anchored at (lon, lat) whose geodesic area is close to target_ha."""
    side = 0.01
    for _ in range(6):
        area = polygon_area_ha(validate_ring(box(lon, lat, lon + side, lat + side)))
        side *= math.sqrt(target_ha / area)
    return box(lon, lat, lon + side, lat + side)


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    try:
        yield make_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock():
    return ClockStub()


@pytest.fixture
def repo(session_factory, clock):
    return FarmRepository(session_factory, retry=FAST_RETRY, clock=clock)


@pytest.fixture
def farmer(repo):
    return repo.create_farmer(name="Asha", farmer_id="FMR_1")
