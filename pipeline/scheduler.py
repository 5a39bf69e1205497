"""
RunScheduler — at most one in-flight pipeline run per area.

Each area is either Idle or Running. A run starts only from Idle; a
periodic tick or manual trigger that arrives while Running is dropped
with "already_running" (never queued). Success or failure, the area
goes back to Idle and the completion time and outcome are recorded.

The periodic timer is an APScheduler interval job per area whose first
fire is delayed by the startup delay. Manual triggers skip the delay but
go through the same guard.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pipeline.errors import InternalFault
from pipeline.ingestion.models import isoformat, utc_now

logger = logging.getLogger(__name__)

STARTED = "started"
ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class RunOutcome:
    area: str
    status: str                   # "ok", "degraded", "failed"
    started_at: datetime
    finished_at: datetime
    alert_count: int = 0
    hotspot_count: int = 0
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "area": self.area,
            "status": self.status,
            "started_at": isoformat(self.started_at),
            "finished_at": isoformat(self.finished_at),
            "duration_seconds": round(self.duration_seconds, 3),
            "alert_count": self.alert_count,
            "hotspot_count": self.hotspot_count,
            "error": self.error,
        }


class RunScheduler:
    def __init__(
        self,
        run: Callable[[str], Awaitable[Any]],
        areas: Iterable[str],
        interval_seconds: float = 600,
        startup_delay_seconds: float = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            run: Coroutine function executing one run for an area. Its
                result may expose `snapshot`, `alerts` and `hotspots`.
            areas: Area ids handled by the periodic timer.
            interval_seconds: Period between timer fires.
            startup_delay_seconds: Delay before the first timer fire.
            clock: Source of timestamps for status reporting.
        """
        self._run = run
        self.areas = list(areas)
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._clock = clock
        self._running: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._last_run_at: Dict[str, datetime] = {}
        self._last_outcome: Dict[str, RunOutcome] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def is_running(self, area: str) -> bool:
        return area in self._running

    def trigger(self, area: str) -> Dict[str, str]:
        """
        Start a run in the background unless one is already in flight.

        Must be called from within the event loop. Never blocks.
        """
        if area in self._running:
            logger.info("Run for %s already in progress; trigger dropped", area)
            return {"status": ALREADY_RUNNING}
        # check and set with no await in between
        self._running.add(area)
        task = asyncio.get_running_loop().create_task(self._execute(area))
        self._tasks[area] = task
        task.add_done_callback(functools.partial(self._forget_task, area))
        return {"status": STARTED}

    def _forget_task(self, area: str, task: asyncio.Task) -> None:
        if self._tasks.get(area) is task:
            del self._tasks[area]

    async def run_now(self, area: str) -> Optional[RunOutcome]:
        """
        Run immediately and wait for completion.

        Returns:
            The RunOutcome, or None when a run was already in flight.
        """
        if area in self._running:
            logger.info("Run for %s already in progress; run_now dropped", area)
            return None
        self._running.add(area)
        return await self._execute(area)

    async def wait_idle(self, area: Optional[str] = None) -> None:
        """Wait for in-flight background runs (all areas, or one)."""
        tasks = [t for a, t in self._tasks.items() if area is None or a == area]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute(self, area: str) -> RunOutcome:
        started = self._clock()
        logger.info("Run started for %s", area)
        try:
            try:
                result = await self._run(area)
            except InternalFault:
                raise
            except Exception as exc:
                raise InternalFault("run", exc) from exc
            outcome = self._outcome_from(area, result, started)
        except InternalFault as fault:
            logger.exception("Run for %s failed in %s stage", area, fault.stage)
            outcome = RunOutcome(
                area=area,
                status="failed",
                started_at=started,
                finished_at=self._clock(),
                error=str(fault),
            )
        finally:
            self._running.discard(area)
            self._last_run_at[area] = self._clock()

        self._last_outcome[area] = outcome
        logger.info(
            "Run finished for %s: status=%s alerts=%d (%.1fs)",
            area, outcome.status, outcome.alert_count, outcome.duration_seconds,
        )
        return outcome

    def _outcome_from(self, area: str, result: Any, started: datetime) -> RunOutcome:
        snapshot = getattr(result, "snapshot", None)
        status = "ok"
        if snapshot is not None and not snapshot.is_valid:
            status = "degraded"
        return RunOutcome(
            area=area,
            status=status,
            started_at=started,
            finished_at=self._clock(),
            alert_count=len(getattr(result, "alerts", ()) or ()),
            hotspot_count=len(getattr(result, "hotspots", ()) or ()),
        )

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register one interval job per area and start APScheduler."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        first_run = self._clock() + timedelta(seconds=self.startup_delay_seconds)
        for area in self.areas:
            self._scheduler.add_job(
                self._tick,
                trigger="interval",
                seconds=self.interval_seconds,
                next_run_time=first_run,
                args=[area],
                id=f"run:{area}",
                name=f"Pipeline run ({area})",
                max_instances=1,
                coalesce=True,
            )
        self._scheduler.start()
        logger.info(
            "Scheduler started for %s: every %ss, first run at %s",
            ", ".join(self.areas), self.interval_seconds, isoformat(first_run),
        )

    async def _tick(self, area: str) -> None:
        result = self.trigger(area)
        if result["status"] == ALREADY_RUNNING:
            logger.warning("Scheduled run for %s skipped: previous run still in progress", area)

    async def stop(self) -> None:
        """Stop the timer and let in-flight runs finish."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            # AsyncIOScheduler.shutdown is dispatched through the loop
            await asyncio.sleep(0)
        await self.wait_idle()
        logger.info("Scheduler stopped")

    def next_scheduled_at(self, area: str) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(f"run:{area}")
        return job.next_run_time if job else None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, area: str) -> Dict[str, Any]:
        outcome = self._last_outcome.get(area)
        return {
            "area": area,
            "running": area in self._running,
            "last_run_at": isoformat(self._last_run_at.get(area)),
            "next_scheduled_at": isoformat(self.next_scheduled_at(area)),
            "last_outcome": outcome.to_dict() if outcome else None,
        }
