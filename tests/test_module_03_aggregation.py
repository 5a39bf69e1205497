"""
Tests for Module 03 — Aggregation.
Summary statistics, quality flags, the fusion cache and the concurrent
AggregationPipeline run.
"""

import asyncio
import time
from datetime import timedelta

import pytest

from pipeline.aggregation.aggregator import AggregationPipeline
from pipeline.aggregation.cache import FusionCache
from pipeline.aggregation.models import QualityFlagKind, Snapshot, emergency_snapshot
from pipeline.aggregation.quality import compute_flags, quality_score
from pipeline.aggregation.summary import summarize
from pipeline.errors import InternalFault
from pipeline.ingestion.models import Unavailable

from conftest import NOW, DownAdapter, ExplodingAdapter, StaticAdapter, make_reading


class FakeTime:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def kinds(flags):
    return [f.kind for f in flags]


def valid_snapshot(area="nairobi"):
    return Snapshot(generated_at=NOW, area=area, sources_used=("waqi",))


# ============================================================
# Summary
# ============================================================

class TestSummarize:
    def test_mean_max_min(self, three_location_readings):
        summary = summarize(three_location_readings)
        assert summary.avg_pm25 == 30.0
        assert summary.max_pm25 == 40.0
        assert summary.min_pm25 == 20.0
        assert summary.measurement_count == 3

    def test_aqi_from_mean(self, three_location_readings):
        summary = summarize(three_location_readings)
        assert summary.aqi == 88
        assert summary.aqi_category == "Moderate"

    def test_mean_rounded_to_two_places(self):
        readings = [make_reading(10.0), make_reading(10.0), make_reading(11.0)]
        assert summarize(readings).avg_pm25 == 10.33

    def test_nan_value_does_not_mask_pollution(self):
        readings = [
            make_reading(float("nan"), lat=-1.1),
            make_reading(80.0, lat=-1.2),
            make_reading(90.0, lat=-1.3),
        ]
        summary = summarize(readings)
        assert summary.avg_pm25 == 85.0
        assert summary.max_pm25 == 90.0
        assert summary.pollutant_stats["pm25"].count == 2
        assert summary.aqi > 150
        assert summary.aqi_category == "Unhealthy"
        assert summary.measurement_count == 3
        assert QualityFlagKind.SUSPICIOUS_VALUES in kinds(compute_flags(readings, [], NOW))

    def test_readings_without_pm25_ignored_for_pm25(self):
        readings = [make_reading(20.0), make_reading(None, no2=40.0)]
        summary = summarize(readings)
        assert summary.avg_pm25 == 20.0
        assert summary.avg_no2 == 40.0
        assert summary.measurement_count == 2
        assert summary.pollutant_stats["no2"].count == 1

    def test_no_pm25_means_unknown_aqi(self):
        summary = summarize([make_reading(None, no2=40.0)])
        assert summary.avg_pm25 is None
        assert summary.aqi is None
        assert summary.aqi_category == "Unknown"


# ============================================================
# Quality flags and score
# ============================================================

class TestComputeFlags:
    def test_clean_readings_no_flags(self, three_location_readings):
        assert compute_flags(three_location_readings, [], NOW) == []

    def test_limited_spatial_coverage(self):
        readings = [make_reading(20.0), make_reading(25.0, lat=-1.27)]
        assert kinds(compute_flags(readings, [], NOW)) == [QualityFlagKind.LIMITED_SPATIAL_COVERAGE]

    def test_same_key_counts_once(self):
        readings = [
            make_reading(20.0, lat=-1.28641),
            make_reading(21.0, lat=-1.28644),
            make_reading(22.0, lat=-1.3),
        ]
        assert QualityFlagKind.LIMITED_SPATIAL_COVERAGE in kinds(compute_flags(readings, [], NOW))

    def test_stale_when_most_readings_old(self, three_location_readings):
        later = NOW + timedelta(hours=3)
        assert QualityFlagKind.STALE_DATA in kinds(compute_flags(three_location_readings, [], later))

    def test_not_stale_when_half_fresh(self):
        readings = [
            make_reading(20.0, lat=-1.1),
            make_reading(20.0, lat=-1.2),
            make_reading(20.0, lat=-1.3, observed_at=NOW - timedelta(hours=5)),
            make_reading(20.0, lat=-1.4, observed_at=NOW - timedelta(hours=5)),
        ]
        assert QualityFlagKind.STALE_DATA not in kinds(compute_flags(readings, [], NOW))

    def test_suspicious_values(self, three_location_readings):
        readings = three_location_readings + [make_reading(900.0, lat=-1.0)]
        assert QualityFlagKind.SUSPICIOUS_VALUES in kinds(compute_flags(readings, [], NOW))

    def test_one_flag_per_unavailable_source(self, three_location_readings):
        unavailable = [Unavailable("iqair", "HTTP 503"), Unavailable("sentinel5p", "timeout")]
        flags = compute_flags(three_location_readings, unavailable, NOW)
        assert [str(f) for f in flags] == ["source_unavailable:iqair", "source_unavailable:sentinel5p"]


class TestQualityScore:
    def test_base(self):
        assert quality_score(1, 1, 0) == 0.5

    def test_diversity_and_volume(self):
        assert quality_score(3, 10, 0) == 1.0

    def test_flags_penalize(self):
        assert quality_score(2, 5, 2) == 0.6

    def test_never_negative(self):
        assert quality_score(1, 0, 9) == 0.0


# ============================================================
# FusionCache
# ============================================================

class TestFusionCache:
    def test_get_within_ttl(self):
        t = FakeTime()
        cache = FusionCache(default_ttl=60, time_func=t)
        snap = valid_snapshot()
        cache.set("nairobi", snap)
        t.now += 59.9
        assert cache.get("nairobi") is snap

    def test_expired_at_ttl(self):
        t = FakeTime()
        cache = FusionCache(default_ttl=60, time_func=t)
        cache.set("nairobi", valid_snapshot())
        t.now += 60
        assert cache.get("nairobi") is None

    def test_peek_marks_stale(self):
        t = FakeTime()
        cache = FusionCache(default_ttl=60, time_func=t)
        snap = valid_snapshot()
        cache.set("nairobi", snap)
        assert not cache.peek("nairobi").is_stale
        t.now += 120
        entry = cache.peek("nairobi")
        assert entry.is_stale
        assert entry.snapshot is snap
        assert cache.age("nairobi") == 120

    def test_per_call_ttl(self):
        t = FakeTime()
        cache = FusionCache(default_ttl=60, time_func=t)
        cache.set("nairobi", valid_snapshot(), ttl=300)
        t.now += 200
        assert cache.get("nairobi") is not None
        assert cache.peek("nairobi").ttl == 300

    def test_refuses_invalid_snapshot(self):
        cache = FusionCache()
        with pytest.raises(ValueError):
            cache.set("nairobi", emergency_snapshot("nairobi", NOW, ["waqi"]))
        assert cache.get("nairobi") is None

    def test_refuses_non_positive_ttl(self):
        with pytest.raises(ValueError):
            FusionCache().set("nairobi", valid_snapshot(), ttl=0)
        with pytest.raises(ValueError):
            FusionCache(default_ttl=-1)

    def test_areas_are_independent(self):
        cache = FusionCache()
        cache.set("nairobi", valid_snapshot())
        assert cache.get("mombasa") is None
        cache.invalidate("nairobi")
        assert cache.get("nairobi") is None
        assert cache.age("nairobi") is None

    def test_default_clock_is_monotonic(self):
        cache = FusionCache(default_ttl=60)
        cache.set("nairobi", valid_snapshot())
        assert cache.age("nairobi") >= 0
        assert cache._time_func is time.monotonic


# ============================================================
# AggregationPipeline
# ============================================================

class TestAggregationPipeline:
    def test_duplicate_source_ids_rejected(self):
        with pytest.raises(ValueError):
            AggregationPipeline([StaticAdapter("waqi"), StaticAdapter("waqi")])

    @pytest.mark.asyncio
    async def test_merges_sources_in_registration_order(self, area, clock, three_location_readings):
        a = StaticAdapter("waqi", three_location_readings[:2])
        b = StaticAdapter("openmeteo", [make_reading(40.0, source_id="openmeteo", lat=-1.3231, lon=36.8941)])
        pipeline = AggregationPipeline([a, b], clock=clock, cross_validate=False)

        snap = await pipeline.run(area)

        assert snap.sources_used == ("waqi", "openmeteo")
        assert [m.source_id for m in snap.measurements] == ["waqi", "waqi", "openmeteo"]
        assert snap.summary.avg_pm25 == 30.0
        assert snap.quality_flags == ()
        assert snap.overall_status == "ok"
        assert snap.data_completeness == 1.0
        assert snap.health_advisory.level == "moderate"
        assert snap.generated_at == NOW

    @pytest.mark.asyncio
    async def test_one_source_down(self, area, clock, three_location_readings):
        pipeline = AggregationPipeline(
            [StaticAdapter("waqi", three_location_readings), DownAdapter("iqair")],
            clock=clock,
        )
        snap = await pipeline.run(area)

        assert snap.is_valid
        assert not snap.is_degraded
        assert snap.sources_used == ("waqi",)
        assert [str(f) for f in snap.quality_flags] == ["source_unavailable:iqair"]
        assert snap.data_completeness == 0.5

    @pytest.mark.asyncio
    async def test_all_sources_down_returns_emergency_snapshot(self, area, clock):
        cache = FusionCache()
        pipeline = AggregationPipeline([DownAdapter("waqi"), DownAdapter("iqair")], cache=cache, clock=clock)

        snap = await pipeline.run(area)

        assert not snap.is_valid
        assert snap.is_degraded
        assert snap.measurements == ()
        assert snap.overall_status == "unknown"
        assert kinds(snap.quality_flags).count(QualityFlagKind.SOURCE_UNAVAILABLE) == 2
        assert cache.peek(area.area_id) is None

    @pytest.mark.asyncio
    async def test_emergency_snapshot_keeps_previous_cache(self, area, clock, three_location_readings):
        cache = FusionCache()
        good = AggregationPipeline([StaticAdapter("waqi", three_location_readings)], cache=cache, clock=clock)
        first = await good.run(area)
        assert good.commit(first) is True

        bad = AggregationPipeline([DownAdapter("waqi")], cache=cache, clock=clock)
        assert bad.commit(await bad.run(area)) is False

        assert cache.get(area.area_id) is first

    @pytest.mark.asyncio
    async def test_raising_adapter_becomes_unavailable(self, area, clock, three_location_readings):
        pipeline = AggregationPipeline(
            [StaticAdapter("waqi", three_location_readings), ExplodingAdapter("broken")],
            clock=clock,
        )
        snap = await pipeline.run(area)

        assert snap.sources_used == ("waqi",)
        assert "source_unavailable:broken" in [str(f) for f in snap.quality_flags]

    @pytest.mark.asyncio
    async def test_adapters_run_concurrently(self, area, clock, three_location_readings):
        adapters = [
            StaticAdapter(f"s{i}", three_location_readings, delay=0.2) for i in range(5)
        ]
        pipeline = AggregationPipeline(adapters, clock=clock)

        loop = asyncio.get_running_loop()
        started = loop.time()
        snap = await pipeline.run(area)
        elapsed = loop.time() - started

        assert len(snap.sources_used) == 5
        assert elapsed < 0.8
        assert all(a.calls == 1 for a in adapters)

    @pytest.mark.asyncio
    async def test_empty_success_counts_as_used(self, area, clock):
        pipeline = AggregationPipeline([StaticAdapter("waqi", [])], clock=clock)
        snap = await pipeline.run(area)

        assert snap.is_valid
        assert snap.measurements == ()
        assert snap.summary.aqi is None
        assert QualityFlagKind.LIMITED_SPATIAL_COVERAGE in kinds(snap.quality_flags)

    @pytest.mark.asyncio
    async def test_run_leaves_cache_until_commit(self, area, clock, three_location_readings):
        cache = FusionCache(default_ttl=900)
        pipeline = AggregationPipeline([StaticAdapter("waqi", three_location_readings)], cache=cache, clock=clock)
        snap = await pipeline.run(area)
        assert cache.get(area.area_id) is None

        assert pipeline.commit(snap) is True
        assert cache.get(area.area_id) is snap

    def test_commit_without_cache(self, clock):
        pipeline = AggregationPipeline([StaticAdapter("waqi")], clock=clock)
        assert pipeline.commit(valid_snapshot()) is False

    @pytest.mark.asyncio
    async def test_fusion_bug_is_internal_fault(self, area, clock, three_location_readings, monkeypatch):
        cache = FusionCache()
        pipeline = AggregationPipeline([StaticAdapter("waqi", three_location_readings)], cache=cache, clock=clock)

        def broken_summary(readings):
            raise ZeroDivisionError("bad math")

        monkeypatch.setattr("pipeline.aggregation.aggregator.summarize", broken_summary)

        with pytest.raises(InternalFault) as info:
            await pipeline.run(area)
        assert info.value.stage == "aggregation"
        assert cache.peek(area.area_id) is None

    @pytest.mark.asyncio
    async def test_cross_validation_lowers_outlier_confidence(self, area, clock):
        readings_a = [make_reading(20.0, source_id="openmeteo", confidence=0.9, lat=-1.1)]
        readings_b = [make_reading(22.0, source_id="weatherapi", confidence=0.9, lat=-1.2)]
        readings_c = [make_reading(50.0, source_id="waqi", confidence=0.6, lat=-1.3)]
        pipeline = AggregationPipeline(
            [
                StaticAdapter("openmeteo", readings_a),
                StaticAdapter("weatherapi", readings_b),
                StaticAdapter("waqi", readings_c),
            ],
            clock=clock,
        )
        snap = await pipeline.run(area)

        by_source = {m.source_id: m for m in snap.measurements}
        assert by_source["openmeteo"].confidence == 0.9
        assert by_source["waqi"].confidence < 0.6
        assert snap.summary.avg_pm25 == 30.67
