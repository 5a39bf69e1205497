"""
Tests for Module 04 — Rules.
Tests the US EPA AQI tables and the threshold rule engine loaded from
config/thresholds.json.
"""
import json

import pytest

from pipeline.rules import rule_engine
from pipeline.rules.aqi import (
    PM10_BREAKPOINTS,
    PM25_BREAKPOINTS,
    aqi_category,
    aqi_to_concentration,
    calculate_aqi,
    concentration_to_aqi,
    health_advisory,
)
from pipeline.rules.rule_engine import (
    classify_severity,
    evaluate,
    get_alert_threshold,
    get_hotspot_threshold,
    hotspot_pollutants,
)


@pytest.fixture
def restore_thresholds():
    original = rule_engine.CONFIG_PATH
    yield
    rule_engine.reload_thresholds(original)


class TestAQIBreakpoints:
    def test_pm25_breakpoints(self):
        """Breakpoint concentrations map exactly onto their index."""
        assert calculate_aqi(12.0) == 50
        assert calculate_aqi(35.4) == 100
        assert calculate_aqi(55.4) == 150
        assert calculate_aqi(150.4) == 200

    def test_zero(self):
        assert calculate_aqi(0.0) == 0

    def test_negative_clamped_to_zero(self):
        assert calculate_aqi(-4.0) == 0

    def test_above_scale_clamped(self):
        assert calculate_aqi(1000.0) == 500
        assert calculate_aqi(500.4) == 500

    def test_unknown(self):
        assert calculate_aqi(None) is None

    def test_interpolation_rounds_half_up(self):
        # 50 + 50 * 6 / 23.4 = 62.82
        assert calculate_aqi(18.0) == 63

    def test_monotonic_non_decreasing(self):
        values = [x / 2 for x in range(0, 1200)]
        aqis = [calculate_aqi(v) for v in values]
        assert all(a <= b for a, b in zip(aqis, aqis[1:]))
        assert all(0 <= a <= 500 for a in aqis)

    def test_pm10_table(self):
        assert concentration_to_aqi(54.0, PM10_BREAKPOINTS) == 50
        assert concentration_to_aqi(154.0, PM10_BREAKPOINTS) == 100


class TestAQIToConcentration:
    def test_inverse_at_breakpoints(self):
        assert aqi_to_concentration(50, PM25_BREAKPOINTS) == 12.0
        assert aqi_to_concentration(100, PM25_BREAKPOINTS) == 35.4
        assert aqi_to_concentration(150, PM25_BREAKPOINTS) == 55.4

    def test_pm10(self):
        assert aqi_to_concentration(50, PM10_BREAKPOINTS) == 54.0

    def test_negative_index(self):
        assert aqi_to_concentration(-10) == 0.0


class TestCategoryAndAdvisory:
    def test_categories(self):
        assert aqi_category(50) == "Good"
        assert aqi_category(51) == "Moderate"
        assert aqi_category(150) == "Unhealthy for Sensitive Groups"
        assert aqi_category(301) == "Hazardous"
        assert aqi_category(None) == "Unknown"

    def test_advisory_levels(self):
        assert health_advisory(30).level == "good"
        assert health_advisory(100).level == "moderate"
        assert health_advisory(120).level == "unhealthy_sensitive"
        assert health_advisory(180).level == "unhealthy"
        assert health_advisory(350).level == "very_unhealthy"

    def test_unknown_advisory(self):
        advisory = health_advisory(None)
        assert advisory.level == "unknown"
        assert advisory.precautions

    def test_advisory_to_dict(self):
        d = health_advisory(30).to_dict()
        assert set(d) == {"level", "message", "precautions"}


class TestRuleEngineLoads:
    def test_loads_without_error(self):
        assert rule_engine.rule_version()

    def test_hotspot_pollutants(self):
        assert set(hotspot_pollutants()) == {"pm25", "no2", "o3"}

    def test_thresholds(self):
        assert get_hotspot_threshold("pm25") == 35.0
        assert get_hotspot_threshold("PM25") == 35.0
        assert get_hotspot_threshold("co") is None

    def test_alert_thresholds(self):
        assert get_alert_threshold("pm25", "critical") == 55.0
        assert get_alert_threshold("pm25", "high") == 35.0
        assert get_alert_threshold("no2", "high") == 80.0
        assert get_alert_threshold("no2", "critical") is None


class TestPM25Rules:
    def test_within_limit(self):
        result = evaluate("pm25", 30.0)
        assert result.within_limit is True
        assert result.severity is None
        assert result.exceedance_value == 0.0
        assert result.exceedance_percent == 0.0

    def test_at_limit_is_within(self):
        """Exactly at the threshold is not an exceedance."""
        assert evaluate("pm25", 35.0).within_limit

    def test_moderate(self):
        result = evaluate("pm25", 40.0)
        assert not result.within_limit
        assert result.severity == "moderate"
        assert result.exceedance_value == 5.0
        assert result.exceedance_percent == 14.29

    def test_high(self):
        assert evaluate("pm25", 50.0).severity == "high"

    def test_band_bound_is_exclusive(self):
        assert evaluate("pm25", 45.0).severity == "moderate"
        assert evaluate("pm25", 55.0).severity == "high"

    def test_critical(self):
        assert evaluate("pm25", 60.0).severity == "critical"

    def test_rule_metadata(self):
        result = evaluate("pm25", 60.0)
        assert "PM2.5" in result.rule_name
        assert result.rule_version == rule_engine.rule_version()
        assert "EXCEEDED/critical" in str(result)


class TestNO2Rules:
    def test_moderate(self):
        assert evaluate("no2", 50.0).severity == "moderate"

    def test_high(self):
        assert evaluate("no2", 85.0).severity == "high"

    def test_no_critical_band(self):
        assert classify_severity("no2", 500.0) == "high"


class TestUnknownPollutant:
    def test_raises(self):
        with pytest.raises(ValueError):
            evaluate("pm1", 10.0)


class TestReloadThresholds:
    def test_reload_from_other_file(self, tmp_path, restore_thresholds):
        path = tmp_path / "thresholds.json"
        path.write_text(json.dumps({
            "version": "test-1",
            "hotspots": {"pm25": {"threshold": 10.0, "bands": {"moderate": 10.0}}},
            "alerts": {},
        }))
        rule_engine.reload_thresholds(str(path))
        assert rule_engine.rule_version() == "test-1"
        assert evaluate("pm25", 12.0).severity == "moderate"

    def test_missing_file_fails_fast(self, tmp_path, restore_thresholds):
        with pytest.raises(FileNotFoundError):
            rule_engine.reload_thresholds(str(tmp_path / "missing.json"))
