"""
US EPA Air Quality Index tables.

Each table is a list of (concentration, index) breakpoints starting at
(0, 0). Between consecutive breakpoints the index is linearly
interpolated, so the mapping is continuous and non-decreasing. Above the
top breakpoint the index is clamped to 500.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

Breakpoints = Sequence[Tuple[float, float]]

# PM2.5, 24h, μg/m³
PM25_BREAKPOINTS: Breakpoints = (
    (0.0, 0),
    (12.0, 50),
    (35.4, 100),
    (55.4, 150),
    (150.4, 200),
    (250.4, 300),
    (500.4, 500),
)

# PM10, 24h, μg/m³
PM10_BREAKPOINTS: Breakpoints = (
    (0.0, 0),
    (54.0, 50),
    (154.0, 100),
    (254.0, 150),
    (354.0, 200),
    (424.0, 300),
    (604.0, 500),
)

AQI_MAX = 500

CATEGORIES = (
    (50, "Good"),
    (100, "Moderate"),
    (150, "Unhealthy for Sensitive Groups"),
    (200, "Unhealthy"),
    (300, "Very Unhealthy"),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _interpolate(x: float, table: Breakpoints, reverse: bool = False) -> float:
    src, dst = (1, 0) if reverse else (0, 1)
    if x <= table[0][src]:
        return table[0][dst]
    for lo, hi in zip(table, table[1:]):
        if x <= hi[src]:
            span = hi[src] - lo[src]
            return lo[dst] + (hi[dst] - lo[dst]) * (x - lo[src]) / span
    return table[-1][dst]


def concentration_to_aqi(concentration: float, table: Breakpoints = PM25_BREAKPOINTS) -> int:
    """
    Convert a concentration into an integer AQI.

    Negative concentrations map to 0; anything above the top breakpoint
    maps to 500.
    """
    return min(AQI_MAX, _round_half_up(_interpolate(max(0.0, concentration), table)))


def calculate_aqi(pm25: Optional[float]) -> Optional[int]:
    """PM2.5 AQI, or None when PM2.5 is unknown."""
    if pm25 is None:
        return None
    return concentration_to_aqi(pm25, PM25_BREAKPOINTS)


def aqi_to_concentration(aqi: float, table: Breakpoints = PM25_BREAKPOINTS) -> float:
    """Inverse of concentration_to_aqi, used to recover μg/m³ from sub-indices."""
    return round(_interpolate(max(0.0, float(aqi)), table, reverse=True), 1)


def aqi_category(aqi: Optional[int]) -> str:
    if aqi is None:
        return "Unknown"
    for upper, label in CATEGORIES:
        if aqi <= upper:
            return label
    return "Hazardous"


# ── Health advisory ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HealthAdvisory:
    level: str
    message: str
    precautions: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message, "precautions": list(self.precautions)}


_ADVISORIES = (
    (50, HealthAdvisory(
        "good",
        "Air quality is satisfactory, and air pollution poses little or no risk",
        ["Enjoy outdoor activities", "Open windows for ventilation"],
    )),
    (100, HealthAdvisory(
        "moderate",
        "Air quality is acceptable; unusually sensitive people may be affected",
        [
            "Unusually sensitive people should consider reducing prolonged or heavy exertion",
            "Watch for symptoms such as coughing or shortness of breath",
        ],
    )),
    (150, HealthAdvisory(
        "unhealthy_sensitive",
        "Members of sensitive groups may experience health effects",
        [
            "Sensitive groups should reduce prolonged or heavy exertion",
            "People with heart or lung disease, older adults, and children should limit outdoor exertion",
        ],
    )),
    (200, HealthAdvisory(
        "unhealthy",
        "Some members of the general public may experience health effects",
        [
            "Everyone should reduce prolonged or heavy exertion",
            "Sensitive groups should avoid all physical activity outdoors",
        ],
    )),
)

_VERY_UNHEALTHY = HealthAdvisory(
    "very_unhealthy",
    "Health alert: the risk of health effects is increased for everyone",
    [
        "Everyone should avoid all physical activity outdoors",
        "Sensitive groups should remain indoors and keep activity levels low",
        "Keep windows and doors closed",
        "Use air purifiers if available",
    ],
)

_UNKNOWN = HealthAdvisory(
    "unknown",
    "Insufficient data to provide health advisory",
    ["Check back later for updated information"],
)


def health_advisory(aqi: Optional[int]) -> HealthAdvisory:
    if aqi is None:
        return _UNKNOWN
    for upper, advisory in _ADVISORIES:
        if aqi <= upper:
            return advisory
    return _VERY_UNHEALTHY
