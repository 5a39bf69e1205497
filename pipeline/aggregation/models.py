"""
Fused output of one pipeline run: Snapshot, Summary and QualityFlag.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pipeline.ingestion.models import NormalizedReading, isoformat
from pipeline.rules.aqi import HealthAdvisory, health_advisory

STATUS_OK = "ok"
STATUS_UNKNOWN = "unknown"


class QualityFlagKind:
    STALE_DATA = "stale_data"
    LIMITED_SPATIAL_COVERAGE = "limited_spatial_coverage"
    SUSPICIOUS_VALUES = "suspicious_values"
    SOURCE_UNAVAILABLE = "source_unavailable"
    PIPELINE_DEGRADED = "pipeline_degraded"

    ALL = (
        STALE_DATA,
        LIMITED_SPATIAL_COVERAGE,
        SUSPICIOUS_VALUES,
        SOURCE_UNAVAILABLE,
        PIPELINE_DEGRADED,
    )


@dataclass(frozen=True)
class QualityFlag:
    kind: str
    source_id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in QualityFlagKind.ALL:
            raise ValueError(f"Unknown quality flag kind: {self.kind}")
        if (self.kind == QualityFlagKind.SOURCE_UNAVAILABLE) != (self.source_id is not None):
            raise ValueError("source_id is required for, and only for, source_unavailable")

    @classmethod
    def source_unavailable(cls, source_id: str) -> "QualityFlag":
        return cls(QualityFlagKind.SOURCE_UNAVAILABLE, source_id)

    @classmethod
    def parse(cls, text: str) -> "QualityFlag":
        """Inverse of str(): 'stale_data' or 'source_unavailable:waqi'."""
        kind, _, source_id = text.partition(":")
        return cls(kind, source_id or None)

    @property
    def is_system(self) -> bool:
        return self.kind == QualityFlagKind.PIPELINE_DEGRADED

    def __str__(self) -> str:
        if self.source_id:
            return f"{self.kind}:{self.source_id}"
        return self.kind


@dataclass(frozen=True)
class PollutantStats:
    mean: float
    max: float
    min: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"mean": self.mean, "max": self.max, "min": self.min, "count": self.count}


@dataclass(frozen=True)
class Summary:
    avg_pm25: Optional[float] = None
    max_pm25: Optional[float] = None
    min_pm25: Optional[float] = None
    avg_no2: Optional[float] = None
    aqi: Optional[int] = None
    aqi_category: str = "Unknown"
    measurement_count: int = 0
    pollutant_stats: Dict[str, PollutantStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_pm25": self.avg_pm25,
            "max_pm25": self.max_pm25,
            "min_pm25": self.min_pm25,
            "avg_no2": self.avg_no2,
            "aqi": self.aqi,
            "aqi_category": self.aqi_category,
            "measurement_count": self.measurement_count,
            "pollutant_stats": {p: s.to_dict() for p, s in self.pollutant_stats.items()},
        }


@dataclass(frozen=True)
class Snapshot:
    """The complete fused output of one run for one area."""
    generated_at: datetime
    area: str
    sources_used: Tuple[str, ...] = ()
    measurements: Tuple[NormalizedReading, ...] = ()
    summary: Summary = field(default_factory=Summary)
    quality_flags: Tuple[QualityFlag, ...] = ()
    overall_status: str = STATUS_OK
    health_advisory: HealthAdvisory = field(default_factory=lambda: health_advisory(None))
    quality_score: float = 0.0
    data_completeness: float = 0.0

    @property
    def is_valid(self) -> bool:
        """At least one source succeeded."""
        return len(self.sources_used) > 0

    @property
    def is_degraded(self) -> bool:
        return any(f.is_system for f in self.quality_flags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": isoformat(self.generated_at),
            "area": self.area,
            "sources_used": list(self.sources_used),
            "measurements": [m.to_dict() for m in self.measurements],
            "summary": self.summary.to_dict(),
            "quality_flags": [str(f) for f in self.quality_flags],
            "overall_status": self.overall_status,
            "health_advisory": self.health_advisory.to_dict(),
            "quality_score": self.quality_score,
            "data_completeness": self.data_completeness,
        }


def emergency_snapshot(area: str, generated_at: datetime, unavailable_sources=()) -> Snapshot:
    """
    Degraded snapshot returned when no source succeeded: no measurements,
    one source_unavailable flag per source and a single pipeline_degraded flag.
    """
    flags = tuple(QualityFlag.source_unavailable(s) for s in unavailable_sources)
    flags += (QualityFlag(QualityFlagKind.PIPELINE_DEGRADED),)
    return Snapshot(
        generated_at=generated_at,
        area=area,
        quality_flags=flags,
        overall_status=STATUS_UNKNOWN,
    )


def empty_snapshot(area: str, generated_at: datetime) -> Snapshot:
    """Placeholder before the first run of an area has completed."""
    return Snapshot(generated_at=generated_at, area=area, overall_status=STATUS_UNKNOWN)
