"""Shared test fixtures and configuration for the AirFusion test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter
from pipeline.ingestion.models import (
    Location,
    NormalizedReading,
    Pollutants,
    Unavailable,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock for datetime-based components."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_reading(
    pm25: Optional[float] = None,
    source_id: str = "waqi",
    lat: float = -1.2864,
    lon: float = 36.8172,
    name: Optional[str] = "CBD",
    observed_at: datetime = NOW,
    confidence: float = 0.8,
    **pollutants,
) -> NormalizedReading:
    return NormalizedReading(
        source_id=source_id,
        location=Location(lat=lat, lon=lon, name=name),
        pollutants=Pollutants(pm25=pm25, **pollutants),
        observed_at=observed_at,
        confidence=confidence,
    )


class StaticAdapter(SourceAdapter):
    """Returns canned readings; no network."""

    def __init__(self, source_id: str, readings: List[NormalizedReading] = (), delay: float = 0.0):
        super().__init__(client=None)
        self.source_id = source_id
        self.readings = list(readings)
        self.delay = delay
        self.calls = 0

    async def fetch_readings(self, area):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.readings)


class DownAdapter(SourceAdapter):
    """Always unavailable."""

    def __init__(self, source_id: str):
        super().__init__(client=None)
        self.source_id = source_id

    async def fetch(self, area):
        return Unavailable(self.source_id, "connection refused")


class ExplodingAdapter(SourceAdapter):
    """Violates the never-raise contract."""

    def __init__(self, source_id: str = "broken"):
        super().__init__(client=None)
        self.source_id = source_id

    async def fetch(self, area):
        raise RuntimeError("bug in adapter")


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def area():
    center = Location(lat=-1.2921, lon=36.8219, name="Nairobi")
    return Area(
        area_id="nairobi",
        name="Nairobi",
        city="Nairobi",
        country="Kenya",
        state="Nairobi",
        center=center,
        bbox=(36.65, -1.45, 37.05, -1.15),
        sample_points=(
            Location(lat=-1.2864, lon=36.8172, name="CBD"),
            Location(lat=-1.2676, lon=36.8108, name="Westlands"),
        ),
    )


@pytest.fixture
def three_location_readings():
    return [
        make_reading(20.0, lat=-1.2864, lon=36.8172, name="CBD"),
        make_reading(30.0, lat=-1.2676, lon=36.8108, name="Westlands"),
        make_reading(40.0, lat=-1.3231, lon=36.8941, name="Embakasi"),
    ]
