"""
Alert Engine

Turns a snapshot's summary, quality flags and hotspots into tiered alerts:
  avg PM2.5 > 55        → critical health_emergency
  avg PM2.5 > 35        → high air_pollution (only when not critical)
  avg NO2 > 80          → high air_pollution (NO2), independent of PM2.5
  ≥1 critical hotspot   → high pollution_hotspot listing the locations
  any quality flag      → moderate data_quality, never escalated
  degraded snapshot     → one low system alert instead of data_quality

Alert ids are derived from (area, snapshot time, type, pollutant,
severity), so evaluating the same snapshot twice yields the same ids.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from pipeline.aggregation.models import Snapshot
from pipeline.classification.hotspot_detector import Hotspot
from pipeline.ingestion.models import isoformat
from pipeline.rules.rule_engine import POLLUTANT_LABELS, UNIT, get_alert_threshold

logger = logging.getLogger(__name__)

HEALTH_EMERGENCY = "health_emergency"
AIR_POLLUTION = "air_pollution"
POLLUTION_HOTSPOT = "pollution_hotspot"
DATA_QUALITY = "data_quality"
SYSTEM = "system"

ACTIONS = {
    (HEALTH_EMERGENCY, "pm25"): [
        "Issue immediate public health advisory",
        "Recommend staying indoors",
        "Alert vulnerable populations",
        "Wear N95 masks if going outside is unavoidable",
    ],
    (AIR_POLLUTION, "pm25"): [
        "Sensitive groups should limit outdoor activities",
        "Consider wearing masks outdoors",
        "Monitor air quality closely",
    ],
    (AIR_POLLUTION, "no2"): [
        "Avoid strenuous outdoor activities near heavy traffic",
        "Consider reducing vehicle usage",
        "Monitor air quality for changes",
    ],
    (POLLUTION_HOTSPOT, None): [
        "Investigate emission sources at the affected locations",
        "Advise residents near the hotspots to limit outdoor exposure",
    ],
    (DATA_QUALITY, None): [
        "Verify data source connectivity",
        "Check API service status",
        "Use backup data sources if available",
    ],
    (SYSTEM, None): [
        "Check API configurations",
        "Verify network connectivity",
        "Contact data providers if issues persist",
    ],
}


@dataclass(frozen=True)
class Alert:
    id: str
    type: str
    severity: str                 # "low", "moderate", "high", "critical"
    message: str
    threshold: Optional[float]
    value: Optional[float]
    raised_at: datetime
    area: str
    pollutant: Optional[str] = None
    recommended_actions: Tuple[str, ...] = ()
    locations: Tuple[str, ...] = ()
    flags: Tuple[str, ...] = ()

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "threshold": self.threshold,
            "value": self.value,
            "raised_at": isoformat(self.raised_at),
            "area": self.area,
            "pollutant": self.pollutant,
            "recommended_actions": list(self.recommended_actions),
            "locations": list(self.locations),
            "flags": list(self.flags),
        }


def alert_id(area: str, generated_at: datetime, alert_type: str,
             pollutant: Optional[str], severity: str) -> str:
    key = "|".join([area, isoformat(generated_at), alert_type, pollutant or "", severity])
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


class AlertEngine:
    """Stateless; the same snapshot always produces the same alerts."""

    def evaluate(self, snapshot: Snapshot, hotspots: Sequence[Hotspot] = ()) -> List[Alert]:
        alerts = []
        summary = snapshot.summary

        pm25 = summary.avg_pm25
        if pm25 is not None:
            critical = get_alert_threshold("pm25", "critical")
            high = get_alert_threshold("pm25", "high")
            if critical is not None and pm25 > critical:
                alerts.append(self._build(
                    snapshot, HEALTH_EMERGENCY, "critical", "pm25",
                    f"Critical air pollution detected: PM2.5 at {pm25:.1f} {UNIT}",
                    threshold=critical, value=pm25,
                ))
            elif high is not None and pm25 > high:
                alerts.append(self._build(
                    snapshot, AIR_POLLUTION, "high", "pm25",
                    f"Unhealthy air quality detected: PM2.5 at {pm25:.1f} {UNIT}",
                    threshold=high, value=pm25,
                ))

        no2 = summary.avg_no2
        no2_high = get_alert_threshold("no2", "high")
        if no2 is not None and no2_high is not None and no2 > no2_high:
            alerts.append(self._build(
                snapshot, AIR_POLLUTION, "high", "no2",
                f"Elevated nitrogen dioxide levels: NO2 at {no2:.1f} {UNIT}",
                threshold=no2_high, value=no2,
            ))

        critical_hotspots = [h for h in hotspots if h.severity == "critical"]
        if critical_hotspots:
            locations = []
            for h in critical_hotspots:
                label = h.location.name or "%.4f,%.4f" % h.location.key()
                if label not in locations:
                    locations.append(label)
            pollutants = sorted({POLLUTANT_LABELS.get(h.pollutant, h.pollutant) for h in critical_hotspots})
            alerts.append(self._build(
                snapshot, POLLUTION_HOTSPOT, "high", None,
                f"{len(critical_hotspots)} critical pollution hotspot(s) detected "
                f"({', '.join(pollutants)}): {', '.join(locations)}",
                threshold=1, value=len(critical_hotspots),
                locations=tuple(locations),
            ))

        flags = tuple(str(f) for f in snapshot.quality_flags)
        if snapshot.is_degraded:
            alerts.append(self._build(
                snapshot, SYSTEM, "low", None,
                "Air quality data sources temporarily unavailable",
                threshold=None, value=None, flags=flags,
            ))
        elif flags:
            alerts.append(self._build(
                snapshot, DATA_QUALITY, "moderate", None,
                f"Data quality issues detected: {', '.join(flags)}",
                threshold=None, value=len(flags), flags=flags,
            ))

        if alerts:
            logger.info(
                "Raised %d alert(s) for %s: %s",
                len(alerts), snapshot.area,
                ", ".join(f"{a.type}/{a.severity}" for a in alerts),
            )
        return alerts

    def _build(self, snapshot: Snapshot, alert_type: str, severity: str,
               pollutant: Optional[str], message: str, threshold, value,
               locations: Tuple[str, ...] = (), flags: Tuple[str, ...] = ()) -> Alert:
        return Alert(
            id=alert_id(snapshot.area, snapshot.generated_at, alert_type, pollutant, severity),
            type=alert_type,
            severity=severity,
            message=message,
            threshold=float(threshold) if threshold is not None else None,
            value=float(value) if value is not None else None,
            raised_at=snapshot.generated_at,
            area=snapshot.area,
            pollutant=pollutant,
            recommended_actions=tuple(ACTIONS[(alert_type, pollutant)]),
            locations=locations,
            flags=flags,
        )
