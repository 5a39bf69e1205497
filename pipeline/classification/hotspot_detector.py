"""
Hotspot Detector

Scans a snapshot's measurements for threshold exceedances:
  PM2.5 > 35 μg/m³ → moderate / high (> 45) / critical (> 55)
  NO2   > 40 μg/m³ → moderate / high (> 80)
  O3   > 100 μg/m³ → moderate / high (> 150)
Bands come from thresholds.json through the rule engine.

Pollutants are evaluated independently, so one reading can produce
several hotspots. Readings at the same location (4-decimal key) are
grouped per pollutant; the highest value represents the group.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

from pipeline.aggregation.models import Snapshot
from pipeline.ingestion.models import Location, NormalizedReading, isoformat
from pipeline.rules.rule_engine import SEVERITY_ORDER, evaluate, hotspot_pollutants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hotspot:
    """One pollutant exceeding its threshold at one location."""
    location: Location
    pollutant: str
    value: float
    threshold: float
    severity: str          # "moderate", "high", "critical"
    confidence: float
    source_id: str
    detected_at: datetime

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_dict(),
            "pollutant": self.pollutant,
            "value": self.value,
            "threshold": self.threshold,
            "severity": self.severity,
            "confidence": self.confidence,
            "source_id": self.source_id,
            "detected_at": isoformat(self.detected_at),
        }


def detect_hotspots(
    readings: Sequence[NormalizedReading],
    detected_at: datetime,
) -> List[Hotspot]:
    """
    Args:
        readings: Fused measurements of one run.
        detected_at: Timestamp stamped on every hotspot (the snapshot time).

    Returns:
        Hotspots ordered by severity (highest first), then value.
    """
    pollutants = hotspot_pollutants()

    # (location key, pollutant) → reading with the highest value
    worst: Dict[Tuple[Tuple[float, float], str], NormalizedReading] = {}
    for reading in readings:
        for pollutant in pollutants:
            value = reading.pollutants.get(pollutant)
            if value is None:
                continue
            key = (reading.location.key(), pollutant)
            current = worst.get(key)
            if current is None or value > current.pollutants.get(pollutant):
                worst[key] = reading

    hotspots = []
    for (_, pollutant), reading in worst.items():
        rule = evaluate(pollutant, reading.pollutants.get(pollutant))
        if rule.within_limit or rule.severity is None:
            continue
        hotspots.append(Hotspot(
            location=reading.location,
            pollutant=pollutant,
            value=rule.observed_value,
            threshold=rule.limit_value,
            severity=rule.severity,
            confidence=reading.confidence,
            source_id=reading.source_id,
            detected_at=detected_at,
        ))

    hotspots.sort(key=lambda h: (SEVERITY_ORDER.index(h.severity), h.value), reverse=True)

    if hotspots:
        logger.info(
            "Detected %d hotspot(s) (critical=%d, high=%d, moderate=%d)",
            len(hotspots),
            sum(1 for h in hotspots if h.severity == "critical"),
            sum(1 for h in hotspots if h.severity == "high"),
            sum(1 for h in hotspots if h.severity == "moderate"),
        )
    return hotspots


class HotspotDetector:
    def detect(self, snapshot: Snapshot) -> List[Hotspot]:
        return detect_hotspots(snapshot.measurements, snapshot.generated_at)
