"""
Threshold Rule Engine.

Loads thresholds.json at first use. Evaluates pollutant values against
hotspot bands and exposes the alert thresholds used by the AlertEngine.
Stateless apart from the cached config — no side effects.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = os.environ.get("THRESHOLDS_CONFIG") or os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "config", "thresholds.json"
)

_THRESHOLDS: Optional[dict] = None

# Severity tiers in ascending order
SEVERITY_ORDER = ("low", "moderate", "high", "critical")

POLLUTANT_LABELS = {
    "pm25": "PM2.5",
    "pm10": "PM10",
    "no2":  "NO2",
    "so2":  "SO2",
    "o3":   "O3",
    "co":   "CO",
}

UNIT = "μg/m³"


@dataclass
class RuleResult:
    """Result of evaluating one pollutant value against its hotspot bands."""
    pollutant: str
    observed_value: float
    limit_value: float
    within_limit: bool
    exceedance_value: float        # observed - limit (0 if within)
    exceedance_percent: float      # (observed / limit - 1) * 100 (0 if within)
    severity: Optional[str]        # highest band exceeded, None if within
    rule_name: str
    rule_version: str = ""

    def __str__(self) -> str:
        status = "OK" if self.within_limit else f"EXCEEDED/{self.severity}"
        return (
            f"[{status}] {self.pollutant}: "
            f"{self.observed_value} / {self.limit_value} {UNIT}"
        )


def _load_thresholds() -> dict:
    """Load thresholds config from disk. Fail fast if missing."""
    global _THRESHOLDS
    if _THRESHOLDS is not None:
        return _THRESHOLDS

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(
            f"CRITICAL: thresholds.json not found at {CONFIG_PATH}. "
            "Cannot start rule engine."
        )

    with open(CONFIG_PATH, "r") as f:
        _THRESHOLDS = json.load(f)

    logger.info("Thresholds config loaded from %s", CONFIG_PATH)
    return _THRESHOLDS


def reload_thresholds(path: Optional[str] = None) -> dict:
    """Drop the cached config and load it again, optionally from another file."""
    global _THRESHOLDS, CONFIG_PATH
    if path is not None:
        CONFIG_PATH = path
    _THRESHOLDS = None
    return _load_thresholds()


def rule_version() -> str:
    return _load_thresholds().get("version", "")


def hotspot_pollutants() -> List[str]:
    """Pollutants that have a defined exceedance threshold."""
    return list(_load_thresholds().get("hotspots", {}).keys())


def get_hotspot_threshold(pollutant: str) -> Optional[float]:
    rule = _load_thresholds().get("hotspots", {}).get(pollutant.lower())
    if not rule:
        return None
    return float(rule["threshold"])


def get_bands(pollutant: str) -> Dict[str, float]:
    """Severity → lower bound (exclusive) for the pollutant's hotspot bands."""
    rule = _load_thresholds().get("hotspots", {}).get(pollutant.lower(), {})
    return {sev: float(v) for sev, v in rule.get("bands", {}).items()}


def get_alert_threshold(pollutant: str, severity: str) -> Optional[float]:
    value = _load_thresholds().get("alerts", {}).get(pollutant.lower(), {}).get(severity)
    return float(value) if value is not None else None


def classify_severity(pollutant: str, value: float) -> Optional[str]:
    """
    Highest band whose bound is strictly exceeded, or None.

    Bands are evaluated independently of order in the file.
    """
    bands = get_bands(pollutant)
    result = None
    for severity in SEVERITY_ORDER:
        bound = bands.get(severity)
        if bound is not None and value > bound:
            result = severity
    return result


def evaluate(pollutant: str, observed_value: float) -> RuleResult:
    """
    Evaluate a pollutant value against its hotspot threshold.

    Args:
        pollutant: e.g. 'pm25'
        observed_value: Measured concentration in μg/m³.

    Returns:
        RuleResult with exceedance and severity.

    Raises:
        ValueError: If no threshold is defined for the pollutant.
    """
    limit = get_hotspot_threshold(pollutant)
    if limit is None:
        raise ValueError(f"No hotspot threshold defined for pollutant={pollutant}")

    label = POLLUTANT_LABELS.get(pollutant.lower(), pollutant.upper())
    within_limit = observed_value <= limit
    exceedance_value = max(0.0, round(observed_value - limit, 4))
    exceedance_percent = 0.0
    if not within_limit and limit > 0:
        exceedance_percent = round(((observed_value / limit) - 1.0) * 100.0, 2)

    result = RuleResult(
        pollutant=pollutant.lower(),
        observed_value=observed_value,
        limit_value=limit,
        within_limit=within_limit,
        exceedance_value=exceedance_value,
        exceedance_percent=exceedance_percent,
        severity=None if within_limit else classify_severity(pollutant, observed_value),
        rule_name=f"{label} hotspot threshold ({limit} {UNIT})",
        rule_version=rule_version(),
    )
    logger.debug("Rule evaluated: %s", result)
    return result
