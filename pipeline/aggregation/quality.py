"""
Quality flags and the overall quality score of a snapshot.

Flags are informational: they never drop readings and never block
alerting.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Sequence

from pipeline.aggregation.models import QualityFlag, QualityFlagKind
from pipeline.ingestion.models import NormalizedReading, Unavailable
from pipeline.ingestion.validator import validate_reading

logger = logging.getLogger(__name__)

MIN_DISTINCT_LOCATIONS = 3
FRESH_FRACTION = 0.5


def compute_flags(
    readings: Sequence[NormalizedReading],
    unavailable: Sequence[Unavailable],
    now: datetime,
    freshness_window: timedelta = timedelta(hours=2),
) -> List[QualityFlag]:
    flags = []
    checks = [validate_reading(r, now, freshness_window) for r in readings]

    if readings:
        fresh = sum(1 for c in checks if not c.is_stale)
        if fresh < len(readings) * FRESH_FRACTION:
            flags.append(QualityFlag(QualityFlagKind.STALE_DATA))

    distinct = {r.location.key() for r in readings}
    if len(distinct) < MIN_DISTINCT_LOCATIONS:
        flags.append(QualityFlag(QualityFlagKind.LIMITED_SPATIAL_COVERAGE))

    suspicious = [r for r, c in zip(readings, checks) if c.has_suspicious_values]
    if suspicious:
        logger.warning(
            "%d reading(s) with out-of-range values, first from %s",
            len(suspicious), suspicious[0].source_id,
        )
        flags.append(QualityFlag(QualityFlagKind.SUSPICIOUS_VALUES))

    for result in unavailable:
        flags.append(QualityFlag.source_unavailable(result.source_id))

    return flags


def quality_score(sources_used: int, measurement_count: int, flag_count: int) -> float:
    """0.5 base, rewarded for source diversity and volume, 0.1 off per flag."""
    score = 0.5
    if sources_used >= 2:
        score += 0.2
    if sources_used >= 3:
        score += 0.1
    if measurement_count >= 5:
        score += 0.1
    if measurement_count >= 10:
        score += 0.1
    score -= 0.1 * flag_count
    return round(max(0.0, min(1.0, score)), 2)
