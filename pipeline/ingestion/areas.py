"""
Target areas — loaded from config/areas.json.

An Area names a metropolitan region, the city/country strings providers
search by, a bounding box for satellite queries and the sample points
polled by point-based weather APIs.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pipeline.ingestion.models import Location

logger = logging.getLogger(__name__)

AREAS_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "config", "areas.json"
)


@dataclass(frozen=True)
class Area:
    area_id: str
    name: str
    city: str
    country: str
    center: Location
    bbox: Tuple[float, float, float, float]    # min_lon, min_lat, max_lon, max_lat
    state: Optional[str] = None
    sample_points: Tuple[Location, ...] = field(default_factory=tuple)

    def points(self) -> Tuple[Location, ...]:
        """Sample points, falling back to the centre when none are configured."""
        return self.sample_points or (self.center,)


def _parse_area(raw: dict) -> Area:
    center = raw["center"]
    points = tuple(
        Location(lat=float(p["lat"]), lon=float(p["lon"]), name=p.get("name"))
        for p in raw.get("sample_points", [])
    )
    bbox = raw["bbox"]
    if len(bbox) != 4:
        raise ValueError(f"Area {raw.get('area_id')}: bbox must have 4 values")
    return Area(
        area_id=raw["area_id"],
        name=raw.get("name", raw["area_id"]),
        city=raw["city"],
        state=raw.get("state"),
        country=raw["country"],
        center=Location(lat=float(center["lat"]), lon=float(center["lon"]), name=raw.get("name")),
        bbox=tuple(float(v) for v in bbox),
        sample_points=points,
    )


def load_areas(path: Optional[str] = None) -> Dict[str, Area]:
    """
    Load all configured areas keyed by area_id.

    Raises:
        FileNotFoundError: If the areas file does not exist.
        ValueError / KeyError: If an entry is malformed.
    """
    path = path or AREAS_CONFIG_PATH
    if not os.path.exists(path):
        raise FileNotFoundError(f"areas.json not found at {path}")

    with open(path, "r") as f:
        raw_areas: List[dict] = json.load(f)

    areas = {}
    for raw in raw_areas:
        area = _parse_area(raw)
        areas[area.area_id] = area
    logger.info("Loaded %d areas from %s", len(areas), path)
    return areas
