"""Summary statistics over the fused measurements of one run."""

import math
from typing import Dict, List, Sequence

from pipeline.aggregation.models import PollutantStats, Summary
from pipeline.ingestion.models import POLLUTANTS, NormalizedReading
from pipeline.rules.aqi import aqi_category, calculate_aqi


def pollutant_stats(readings: Sequence[NormalizedReading]) -> Dict[str, PollutantStats]:
    """Mean/max/min per pollutant, over the finite values readings report."""
    values: Dict[str, List[float]] = {}
    for r in readings:
        for pollutant, value in r.pollutants.reported().items():
            # NaN/inf are flagged as suspicious_values, not averaged
            if not math.isfinite(value):
                continue
            values.setdefault(pollutant, []).append(value)

    stats = {}
    for pollutant in POLLUTANTS:
        vals = values.get(pollutant)
        if not vals:
            continue
        stats[pollutant] = PollutantStats(
            mean=round(sum(vals) / len(vals), 2),
            max=max(vals),
            min=min(vals),
            count=len(vals),
        )
    return stats


def summarize(readings: Sequence[NormalizedReading]) -> Summary:
    stats = pollutant_stats(readings)
    pm25 = stats.get("pm25")
    no2 = stats.get("no2")

    avg_pm25 = pm25.mean if pm25 else None
    aqi = calculate_aqi(avg_pm25)
    return Summary(
        avg_pm25=avg_pm25,
        max_pm25=pm25.max if pm25 else None,
        min_pm25=pm25.min if pm25 else None,
        avg_no2=no2.mean if no2 else None,
        aqi=aqi,
        aqi_category=aqi_category(aqi),
        measurement_count=len(readings),
        pollutant_stats=stats,
    )
