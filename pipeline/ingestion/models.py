"""
Normalized reading model shared by every source adapter.

Adapters translate provider payloads into NormalizedReading so no later
stage ever branches on provider identity. All concentrations are μg/m³
(CO included), wind speed is m/s, pressure hPa, temperature °C.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

POLLUTANTS = ("pm25", "pm10", "no2", "so2", "co", "o3")
WEATHER_FIELDS = ("temperature", "humidity", "wind_speed", "pressure")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (trailing Z allowed) into an aware UTC datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Location:
    lat: float
    lon: float
    name: Optional[str] = None

    def key(self) -> Tuple[float, float]:
        """Identity used for spatial coverage and hotspot grouping (~11 m)."""
        return (round(self.lat, 4), round(self.lon, 4))

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lon": self.lon, "name": self.name}


@dataclass(frozen=True)
class Pollutants:
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    no2: Optional[float] = None
    so2: Optional[float] = None
    co: Optional[float] = None
    o3: Optional[float] = None

    def get(self, pollutant: str) -> Optional[float]:
        return getattr(self, pollutant)

    def reported(self) -> Dict[str, float]:
        """Only the pollutants this reading actually carries."""
        return {p: getattr(self, p) for p in POLLUTANTS if getattr(self, p) is not None}

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {p: getattr(self, p) for p in POLLUTANTS}


@dataclass(frozen=True)
class Weather:
    temperature: Optional[float] = None    # °C
    humidity: Optional[float] = None       # %
    wind_speed: Optional[float] = None     # m/s
    pressure: Optional[float] = None       # hPa

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {f: getattr(self, f) for f in WEATHER_FIELDS}


@dataclass(frozen=True)
class NormalizedReading:
    """One observation from one source at one location."""
    source_id: str
    location: Location
    pollutants: Pollutants
    observed_at: datetime
    confidence: float
    weather: Weather = field(default_factory=Weather)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"confidence must be within [0, 1], got {self.confidence} "
                f"from source {self.source_id}"
            )
        if self.observed_at.tzinfo is None:
            object.__setattr__(
                self, "observed_at", self.observed_at.replace(tzinfo=timezone.utc)
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "location": self.location.to_dict(),
            "pollutants": self.pollutants.to_dict(),
            "weather": self.weather.to_dict(),
            "observed_at": isoformat(self.observed_at),
            "confidence": self.confidence,
        }


# ── SourceResult: Success | Unavailable ───────────────────────────────────────

@dataclass(frozen=True)
class Success:
    source_id: str
    readings: Tuple[NormalizedReading, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Unavailable:
    source_id: str
    reason: str
    permanent: bool = False

    @property
    def ok(self) -> bool:
        return False


SourceResult = Union[Success, Unavailable]


def success(source_id: str, readings: List[NormalizedReading]) -> Success:
    return Success(source_id=source_id, readings=tuple(readings))
