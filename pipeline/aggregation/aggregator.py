"""
AggregationPipeline — one fused Snapshot per run.

Flow per run:
  1. Fan out to every SourceAdapter concurrently and wait for all of them
     to settle (Success, Unavailable, or an exception converted to
     Unavailable).
  2. Merge the readings of every Success, in adapter registration order.
  3. Optionally cross-validate PM2.5 between sources (confidence only).
  4. Summary statistics + AQI, quality flags, quality score.
  5. Zero successes → emergency Snapshot.

run() never writes the FusionCache. The caller hands the Snapshot to
commit() once the later stages of the run have succeeded, so a fault in
any stage leaves the previous cache entry in place.

run() never raises for provider problems. A bug in steps 3–4 surfaces as
InternalFault.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from pipeline.aggregation.cache import FusionCache
from pipeline.aggregation.models import (
    STATUS_OK,
    Snapshot,
    emergency_snapshot,
)
from pipeline.aggregation.quality import compute_flags, quality_score
from pipeline.aggregation.summary import summarize
from pipeline.confidence.scorer import cross_validate
from pipeline.errors import InternalFault
from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter
from pipeline.ingestion.models import (
    SourceResult,
    Success,
    Unavailable,
    utc_now,
)
from pipeline.rules.aqi import health_advisory

logger = logging.getLogger(__name__)


class AggregationPipeline:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        cache: Optional[FusionCache] = None,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        freshness_window: timedelta = timedelta(hours=2),
        cross_validate: bool = True,
    ):
        ids = [a.source_id for a in adapters]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate source_id among adapters: {ids}")
        self.adapters = list(adapters)
        self.cache = cache
        self.cache_ttl = cache_ttl
        self._clock = clock
        self.freshness_window = freshness_window
        self.cross_validate = cross_validate

    @property
    def source_ids(self) -> List[str]:
        return [a.source_id for a in self.adapters]

    async def run(self, area: Area) -> Snapshot:
        started = self._clock()
        results = await asyncio.gather(*(self._settle(a, area) for a in self.adapters))
        generated_at = self._clock()

        successes = [r for r in results if isinstance(r, Success)]
        unavailable = [r for r in results if not isinstance(r, Success)]

        if not successes:
            logger.warning(
                "All %d source(s) unavailable for %s; returning degraded snapshot",
                len(results), area.area_id,
            )
            return emergency_snapshot(area.area_id, generated_at, [r.source_id for r in unavailable])

        try:
            snapshot = self._fuse(area, successes, unavailable, generated_at)
        except Exception as exc:
            raise InternalFault("aggregation", exc) from exc

        logger.info(
            "Fused %d reading(s) from %s for %s in %.1fs: avg_pm25=%s aqi=%s flags=%s",
            snapshot.summary.measurement_count,
            ",".join(snapshot.sources_used),
            area.area_id,
            (generated_at - started).total_seconds(),
            snapshot.summary.avg_pm25,
            snapshot.summary.aqi,
            [str(f) for f in snapshot.quality_flags],
        )

        return snapshot

    def commit(self, snapshot: Snapshot) -> bool:
        """Make a valid Snapshot its area's cache value. Emergency snapshots are skipped."""
        if self.cache is None or not snapshot.is_valid:
            return False
        self.cache.set(snapshot.area, snapshot, self.cache_ttl)
        return True

    async def _settle(self, adapter: SourceAdapter, area: Area) -> SourceResult:
        """Await one adapter; whatever goes wrong becomes Unavailable."""
        try:
            result = await adapter.fetch(area)
        except Exception as exc:
            logger.exception("Adapter %s raised during fetch", adapter.source_id)
            return Unavailable(adapter.source_id, f"adapter error: {exc!r}")
        if not isinstance(result, (Success, Unavailable)):
            logger.error("Adapter %s returned %r", adapter.source_id, type(result).__name__)
            return Unavailable(adapter.source_id, "adapter returned an invalid result")
        return result

    def _fuse(
        self,
        area: Area,
        successes: List[Success],
        unavailable: List[Unavailable],
        generated_at: datetime,
    ) -> Snapshot:
        readings = [r for s in successes for r in s.readings]
        if self.cross_validate:
            readings = cross_validate(readings, "pm25")

        summary = summarize(readings)
        flags = compute_flags(readings, unavailable, generated_at, self.freshness_window)
        sources_used = tuple(s.source_id for s in successes)

        return Snapshot(
            generated_at=generated_at,
            area=area.area_id,
            sources_used=sources_used,
            measurements=tuple(readings),
            summary=summary,
            quality_flags=tuple(flags),
            overall_status=STATUS_OK,
            health_advisory=health_advisory(summary.aqi),
            quality_score=quality_score(len(sources_used), len(readings), len(flags)),
            data_completeness=round(len(sources_used) / len(self.adapters), 2),
        )
