"""
AirFusion — Pipeline Main Entry Point

Single process, one asyncio event loop:
  - APScheduler (AsyncIOScheduler) fires one interval job per area, the
    first one after STARTUP_DELAY_SECONDS.
  - Each fire triggers MonitoringService.run_cycle(area) through the
    RunScheduler guard, so runs of one area never overlap.
  - A run fans out to every source adapter concurrently, fuses the
    results, detects hotspots, raises alerts, persists the run (when
    DATABASE_URL is set) and publishes it on the area's event channel.

SIGINT/SIGTERM stop the timer; an in-flight run is allowed to finish.
"""

import asyncio
import logging
import signal
import sys

import httpx

from pipeline.config import Settings
from pipeline.rules import rule_engine
from pipeline.service import create_service

LOG_FORMAT = "%(asctime)s [PIPELINE] %(levelname)s %(name)s — %(message)s"

logger = logging.getLogger("pipeline.main")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def serve(settings: Settings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    async with httpx.AsyncClient(headers={"User-Agent": "airfusion-pipeline"}) as client:
        service = create_service(settings, client)
        configured = settings.configured_sources()
        logger.info(
            "Sources: %s",
            ", ".join(f"{s}={'configured' if ok else 'missing credentials'}" for s, ok in configured.items()),
        )
        service.start()
        logger.info(
            "AirFusion pipeline running for %s. Press Ctrl+C or send SIGTERM to stop.",
            ", ".join(service.areas),
        )
        try:
            await stop.wait()
        finally:
            logger.info("Shutdown requested, stopping scheduler…")
            await service.stop()
    logger.info("Pipeline stopped cleanly.")


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    # Fail fast on missing reference data
    if settings.thresholds_config:
        rule_engine.reload_thresholds(settings.thresholds_config)
    else:
        rule_engine.rule_version()

    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
