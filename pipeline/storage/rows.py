"""
Row builders for the persistence collaborator.

Per run the pipeline hands over one row per NormalizedReading
(air_measurements) and one run-summary row (processing_log). Values are
plain JSON/SQL-friendly types; quality flags travel as a JSON list of
their string form.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pipeline.aggregation.models import QualityFlag, Snapshot
from pipeline.ingestion.models import NormalizedReading, parse_datetime


def reading_row(reading: NormalizedReading, run_id: str, area: str) -> Dict[str, Any]:
    row = {
        "run_id": run_id,
        "area": area,
        "source_id": reading.source_id,
        "location_name": reading.location.name,
        "lat": reading.location.lat,
        "lon": reading.location.lon,
        "observed_at": reading.observed_at,
        "confidence": reading.confidence,
    }
    row.update(reading.pollutants.to_dict())
    row.update(reading.weather.to_dict())
    return row


def run_summary_row(snapshot: Snapshot, run_id: str) -> Dict[str, Any]:
    summary = snapshot.summary
    return {
        "run_id": run_id,
        "area": snapshot.area,
        "generated_at": snapshot.generated_at,
        "status": snapshot.overall_status,
        "sources_count": len(snapshot.sources_used),
        "sources_used": json.dumps(list(snapshot.sources_used)),
        "measurements_count": len(snapshot.measurements),
        "quality_flags": json.dumps([str(f) for f in snapshot.quality_flags]),
        "avg_pm25": summary.avg_pm25,
        "max_pm25": summary.max_pm25,
        "aqi": summary.aqi,
        "data_completeness": snapshot.data_completeness,
    }


@dataclass
class RunSummary:
    """A processing_log row read back."""
    run_id: str
    area: str
    generated_at: Optional[datetime]
    status: str
    sources_count: int
    measurements_count: int
    quality_flags: List[QualityFlag] = field(default_factory=list)
    sources_used: List[str] = field(default_factory=list)
    avg_pm25: Optional[float] = None
    max_pm25: Optional[float] = None
    aqi: Optional[int] = None
    data_completeness: Optional[float] = None


def _load_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


def parse_run_summary_row(row) -> RunSummary:
    """Inverse of run_summary_row; accepts a dict or a SQLAlchemy row mapping."""
    row = dict(row)
    generated_at = row.get("generated_at")
    if isinstance(generated_at, str):
        generated_at = parse_datetime(generated_at)

    return RunSummary(
        run_id=row["run_id"],
        area=row["area"],
        generated_at=generated_at,
        status=row.get("status", "ok"),
        sources_count=int(row["sources_count"]),
        measurements_count=int(row["measurements_count"]),
        quality_flags=[QualityFlag.parse(f) for f in _load_list(row.get("quality_flags"))],
        sources_used=_load_list(row.get("sources_used")),
        avg_pm25=row.get("avg_pm25"),
        max_pm25=row.get("max_pm25"),
        aqi=row.get("aqi"),
        data_completeness=row.get("data_completeness"),
    )
