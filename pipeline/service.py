"""
MonitoringService — the inbound interface of the pipeline.

Wires one run together:
  AggregationPipeline (→ adapters) → HotspotDetector → AlertEngine
  → persistence sink → Publisher
and exposes the calls the HTTP layer uses: trigger_manual_run,
get_latest_snapshot, get_status and the read-only get_report view.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from pipeline.aggregation.aggregator import AggregationPipeline
from pipeline.aggregation.cache import FusionCache
from pipeline.aggregation.models import Snapshot, empty_snapshot
from pipeline.alerts.alert_engine import Alert, AlertEngine
from pipeline.classification.hotspot_detector import Hotspot, HotspotDetector
from pipeline.config import Settings
from pipeline.errors import InternalFault
from pipeline.ingestion.areas import Area, load_areas
from pipeline.ingestion.iqair_connector import IQAirAdapter
from pipeline.ingestion.models import utc_now
from pipeline.ingestion.openmeteo_connector import OpenMeteoAdapter
from pipeline.ingestion.retry import RetryPolicy
from pipeline.ingestion.satellite_connector import Sentinel5PAdapter
from pipeline.ingestion.waqi_connector import WAQIAdapter
from pipeline.ingestion.weather_connector import WeatherAPIAdapter
from pipeline.realtime.bus import EventBus
from pipeline.realtime.publisher import Publisher
from pipeline.scheduler import RunOutcome, RunScheduler
from pipeline.storage.sql_sink import SqlRunSink, build_sink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunReport:
    """Snapshot + alerts + hotspots of one run (read-only)."""
    snapshot: Snapshot
    alerts: List[Alert] = field(default_factory=list)
    hotspots: List[Hotspot] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "hotspots": [h.to_dict() for h in self.hotspots],
        }


class MonitoringService:
    def __init__(
        self,
        areas: Dict[str, Area],
        pipeline: AggregationPipeline,
        detector: Optional[HotspotDetector] = None,
        alert_engine: Optional[AlertEngine] = None,
        publisher: Optional[Publisher] = None,
        sink: Optional[SqlRunSink] = None,
        default_area: Optional[str] = None,
        interval_seconds: float = 600,
        startup_delay_seconds: float = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not areas:
            raise ValueError("At least one area is required")
        if pipeline.cache is None:
            raise ValueError("The pipeline needs a FusionCache")
        self.areas = areas
        self.pipeline = pipeline
        self.cache: FusionCache = pipeline.cache
        self.detector = detector or HotspotDetector()
        self.alert_engine = alert_engine or AlertEngine()
        self.publisher = publisher
        self.sink = sink
        self.default_area = default_area if default_area in areas else next(iter(areas))
        self._clock = clock
        self._reports: Dict[str, RunReport] = {}
        self._emergency: Dict[str, Snapshot] = {}
        self.scheduler = RunScheduler(
            self.run_cycle,
            areas.keys(),
            interval_seconds=interval_seconds,
            startup_delay_seconds=startup_delay_seconds,
            clock=clock,
        )

    def _area(self, area_id: str) -> Area:
        try:
            return self.areas[area_id]
        except KeyError:
            raise ValueError(f"Unknown area: {area_id}") from None

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------

    async def run_cycle(self, area_id: str) -> RunReport:
        """
        Execute one full run for an area.

        Raises:
            InternalFault: a stage failed; the cache keeps its previous value.
        """
        area = self._area(area_id)
        snapshot = await self.pipeline.run(area)

        try:
            hotspots = self.detector.detect(snapshot)
            alerts = self.alert_engine.evaluate(snapshot, hotspots)
        except Exception as exc:
            raise InternalFault("alerting", exc) from exc

        self.pipeline.commit(snapshot)
        if snapshot.is_valid:
            self._emergency.pop(area_id, None)
        else:
            self._emergency[area_id] = snapshot

        if self.sink is not None:
            try:
                await self.sink.write(snapshot)
            except Exception:
                logger.exception("Persisting run for %s failed; continuing", area_id)

        if self.publisher is not None:
            try:
                await self.publisher.broadcast(snapshot, alerts, hotspots)
            except Exception:
                logger.exception("Publishing run for %s failed; continuing", area_id)

        report = RunReport(snapshot=snapshot, alerts=alerts, hotspots=hotspots)
        self._reports[area_id] = report
        return report

    # ------------------------------------------------------------------
    # Inbound interface
    # ------------------------------------------------------------------

    def trigger_manual_run(self, area_id: Optional[str] = None) -> Dict[str, str]:
        area_id = area_id or self.default_area
        self._area(area_id)
        return self.scheduler.trigger(area_id)

    async def run_now(self, area_id: Optional[str] = None) -> Optional[RunOutcome]:
        area_id = area_id or self.default_area
        self._area(area_id)
        return await self.scheduler.run_now(area_id)

    def get_latest_snapshot(self, area_id: Optional[str] = None) -> Snapshot:
        """
        Cached snapshot while within TTL, else the last emergency snapshot,
        else an empty snapshot with overall_status "unknown".
        """
        area_id = area_id or self.default_area
        self._area(area_id)
        cached = self.cache.get(area_id)
        if cached is not None:
            return cached
        emergency = self._emergency.get(area_id)
        if emergency is not None:
            return emergency
        return empty_snapshot(area_id, self._clock())

    def get_report(self, area_id: Optional[str] = None) -> RunReport:
        """Read-only view for the narrative layer: latest snapshot with its alerts."""
        snapshot = self.get_latest_snapshot(area_id)
        report = self._reports.get(snapshot.area)
        if report is not None and report.snapshot is snapshot:
            return report
        return RunReport(snapshot=snapshot)

    def get_status(self, area_id: Optional[str] = None) -> Dict[str, Any]:
        area_id = area_id or self.default_area
        self._area(area_id)
        status = self.scheduler.status(area_id)
        entry = self.cache.peek(area_id)
        status["cache"] = {
            "has_snapshot": entry is not None,
            "is_stale": entry.is_stale if entry else None,
            "age_seconds": round(self.cache.age(area_id), 1) if entry else None,
        }
        status["sources"] = self.pipeline.source_ids
        return status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self.sink is not None:
            self.sink.close()


def build_adapters(settings: Settings, client: httpx.AsyncClient) -> list:
    """Every provider is registered; missing credentials surface as Unavailable."""
    common = dict(
        timeout=settings.request_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            backoff_factor=settings.retry_backoff_factor,
        ),
    )
    return [
        WAQIAdapter(client, token=settings.waqi_token, **common),
        WeatherAPIAdapter(client, api_key=settings.weatherapi_key, **common),
        OpenMeteoAdapter(client, **common),
        IQAirAdapter(client, api_key=settings.iqair_api_key, **common),
        Sentinel5PAdapter(
            client,
            client_id=settings.copernicus_client_id,
            client_secret=settings.copernicus_client_secret,
            **common,
        ),
    ]


def create_service(
    settings: Settings,
    client: httpx.AsyncClient,
    bus: Optional[EventBus] = None,
) -> MonitoringService:
    areas = load_areas(settings.areas_config)
    cache = FusionCache(default_ttl=settings.cache_ttl_seconds)
    pipeline = AggregationPipeline(
        build_adapters(settings, client),
        cache=cache,
        cache_ttl=settings.cache_ttl_seconds,
        freshness_window=timedelta(hours=settings.freshness_window_hours),
    )
    sink = build_sink(settings.database_url)
    if sink is not None:
        sink.ensure_schema()

    return MonitoringService(
        areas,
        pipeline,
        publisher=Publisher(bus or EventBus()),
        sink=sink,
        default_area=settings.default_area,
        interval_seconds=settings.run_interval_seconds,
        startup_delay_seconds=settings.startup_delay_seconds,
    )
