"""
Confidence Scorer for NormalizedReadings.

Two parts:
  - score_reading(): the per-source confidence an adapter assigns when it
    builds a reading (source tier + pollutant completeness).
  - cross_validate(): compares each reading against readings of the same
    pollutant from *other* sources and lowers the confidence of outliers.
All scores are in [0, 1].
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from pipeline.ingestion.models import NormalizedReading, Pollutants

logger = logging.getLogger(__name__)

# Base confidence per source tier
SOURCE_TIER_CONFIDENCE = {
    "community": 0.6,     # volunteer / municipal stations aggregated by WAQI
    "weather_api": 0.7,   # modelled AQ from weather APIs
    "commercial": 0.8,    # commercial sensor networks
}
COMPLETENESS_BONUS = 0.2  # more than three pollutants reported

QUARANTINE_THRESHOLD = 0.6   # cross-validation scores below this are suspicious
MAX_DEVIATION_FACTOR = 3.0   # ratios beyond 2x lose confidence over this span


def clamp_confidence(value: float) -> float:
    return round(max(0.0, min(1.0, value)), 3)


def score_reading(tier: str, pollutants: Pollutants, premium: bool = False) -> float:
    """
    Confidence an adapter assigns to a freshly normalized reading.

    Args:
        tier: Key of SOURCE_TIER_CONFIDENCE.
        pollutants: The normalized pollutant block.
        premium: Paid/keyed provider tier, worth a small bonus.
    """
    score = SOURCE_TIER_CONFIDENCE.get(tier, 0.5)
    if len(pollutants.reported()) > 3:
        score += COMPLETENESS_BONUS
    if premium:
        score += 0.1
    return clamp_confidence(score)


@dataclass
class ConfidenceResult:
    """Cross-validation result for a single reading."""
    source_id: str
    pollutant: str
    observed_value: float
    neighbor_average: Optional[float]
    deviation_ratio: Optional[float]
    score: float  # 0–1
    is_quarantined: bool

    def __str__(self) -> str:
        status = "QUARANTINED" if self.is_quarantined else "OK"
        return (
            f"[{status}] source={self.source_id} pollutant={self.pollutant} "
            f"value={self.observed_value:.1f} neighbor_avg={self.neighbor_average} "
            f"score={self.score:.2f}"
        )


def _compute_score(observed: float, neighbors: List[float]) -> Tuple[float, Optional[float], Optional[float]]:
    """
    Compute a 0–1 score from the deviation against the neighbor average.

    Returns:
        (score, neighbor_avg, deviation_ratio)
    """
    if not neighbors:
        # no neighbors, nothing to compare against
        return 1.0, None, None

    neighbor_avg = sum(neighbors) / len(neighbors)

    if neighbor_avg == 0:
        if observed == 0:
            return 1.0, 0.0, 1.0
        return 0.2, 0.0, float("inf")

    deviation_ratio = observed / neighbor_avg

    # Ratio 0.5 – 2.0 → full score; beyond that the score decays linearly
    if 0.5 <= deviation_ratio <= 2.0:
        score = 1.0
    elif deviation_ratio > 2.0:
        excess = deviation_ratio - 2.0
        score = max(0.0, 1.0 - (excess / MAX_DEVIATION_FACTOR) * 0.8)
    else:
        deficit = 0.5 - deviation_ratio
        score = max(0.0, 1.0 - (deficit / 0.5) * 0.6)

    return round(score, 3), round(neighbor_avg, 4), round(deviation_ratio, 4)


def score_against_neighbors(
    source_id: str,
    pollutant: str,
    observed_value: float,
    neighbor_values: Sequence[float],
) -> ConfidenceResult:
    valid_neighbors = [
        v for v in neighbor_values
        if isinstance(v, (int, float)) and not math.isnan(v) and v >= 0
    ]
    score, neighbor_avg, ratio = _compute_score(observed_value, valid_neighbors)
    result = ConfidenceResult(
        source_id=source_id,
        pollutant=pollutant,
        observed_value=observed_value,
        neighbor_average=neighbor_avg,
        deviation_ratio=ratio,
        score=score,
        is_quarantined=score < QUARANTINE_THRESHOLD,
    )
    if result.is_quarantined:
        logger.warning("Reading flagged by cross-validation: %s", result)
    return result


def cross_validate(
    readings: Sequence[NormalizedReading],
    pollutant: str = "pm25",
) -> List[NormalizedReading]:
    """
    Scale each reading's confidence by its cross-source agreement score.

    Only readings from other sources count as neighbors, so a single
    source can never confirm itself. Readings are immutable; changed ones
    are replaced with copies.
    """
    by_source: Dict[str, List[float]] = {}
    for r in readings:
        value = r.pollutants.get(pollutant)
        if value is not None and math.isfinite(value):
            by_source.setdefault(r.source_id, []).append(value)

    if len(by_source) < 2:
        return list(readings)

    adjusted = []
    for r in readings:
        value = r.pollutants.get(pollutant)
        if value is None or not math.isfinite(value):
            adjusted.append(r)
            continue
        neighbors = [v for sid, vals in by_source.items() if sid != r.source_id for v in vals]
        result = score_against_neighbors(r.source_id, pollutant, value, neighbors)
        if result.score < 1.0:
            r = replace(r, confidence=clamp_confidence(r.confidence * result.score))
        adjusted.append(r)
    return adjusted
