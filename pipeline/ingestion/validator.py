"""
Validator for NormalizedReading data.

Validates:
- Pollutant values are within physical sanity bounds
- Weather values are physically plausible
- Timestamp is recent (within the freshness window) and not in the future

Validation never drops a reading; the results feed the snapshot's
quality flags.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from pipeline.ingestion.models import NormalizedReading, utc_now

logger = logging.getLogger(__name__)

# Sanity bounds for each pollutant (min, max), all μg/m³
POLLUTANT_BOUNDS = {
    "pm25": (0.0, 500.0),
    "pm10": (0.0, 2000.0),
    "no2":  (0.0, 2000.0),
    "so2":  (0.0, 2000.0),
    "co":   (0.0, 100000.0),
    "o3":   (0.0, 1000.0),
}

WEATHER_BOUNDS = {
    "temperature": (-50.0, 60.0),    # °C
    "humidity":    (0.0, 100.0),     # %
    "wind_speed":  (0.0, 100.0),     # m/s
    "pressure":    (800.0, 1100.0),  # hPa
}

# Maximum age of a reading before it is considered stale
MAX_AGE_HOURS = 2
FUTURE_TOLERANCE = timedelta(minutes=5)


@dataclass
class ValidationResult:
    """Result of validating a single NormalizedReading."""
    is_valid: bool = True
    is_stale: bool = False
    has_suspicious_values: bool = False
    reasons: List[str] = field(default_factory=list)

    def add_error(self, msg: str):
        self.reasons.append(msg)
        self.is_valid = False

    def __str__(self) -> str:
        if self.is_valid:
            return "Valid"
        return "Invalid: " + "; ".join(self.reasons)


def suspicious_pollutants(reading: NormalizedReading) -> List[str]:
    """Pollutants that are non-finite, negative or above their sanity ceiling."""
    flagged = []
    for name, value in reading.pollutants.reported().items():
        low, high = POLLUTANT_BOUNDS[name]
        if not math.isfinite(value) or value < low or value > high:
            flagged.append(name)
    return flagged


def is_fresh(
    reading: NormalizedReading,
    now: Optional[datetime] = None,
    max_age: timedelta = timedelta(hours=MAX_AGE_HOURS),
) -> bool:
    now = now or utc_now()
    return now - reading.observed_at <= max_age


def validate_reading(
    reading: NormalizedReading,
    now: Optional[datetime] = None,
    max_age: timedelta = timedelta(hours=MAX_AGE_HOURS),
) -> ValidationResult:
    """
    Validate a NormalizedReading.

    Args:
        reading: The reading to check.
        now: Reference time (defaults to current UTC time).
        max_age: Freshness window.

    Returns:
        ValidationResult with flags and the list of failure reasons.
    """
    now = now or utc_now()
    result = ValidationResult()

    if not reading.pollutants.reported():
        result.add_error("No pollutant values present in reading")

    age = now - reading.observed_at
    if not is_fresh(reading, now, max_age):
        result.is_stale = True
        result.add_error(f"Timestamp too old: {age} (max {max_age})")
    if age < -FUTURE_TOLERANCE:
        result.add_error(f"Timestamp is in the future: {reading.observed_at}")

    for name in suspicious_pollutants(reading):
        low, high = POLLUTANT_BOUNDS[name]
        result.has_suspicious_values = True
        result.add_error(
            f"{name}={reading.pollutants.get(name)} outside sanity bounds [{low}, {high}]"
        )

    for name, (low, high) in WEATHER_BOUNDS.items():
        value = getattr(reading.weather, name)
        if value is not None and not low <= value <= high:
            result.add_error(f"{name}={value} outside physical bounds [{low}, {high}]")

    if not result.is_valid:
        logger.debug(
            "Validation issues for %s reading at %s: %s",
            reading.source_id, reading.location.key(), result.reasons,
        )
    return result
