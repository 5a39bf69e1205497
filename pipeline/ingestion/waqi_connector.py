"""
WAQI (World Air Quality Index) API Connector.

Searches the area's city for ground stations and fetches the live feed of
the first few. WAQI reports pollutants as AQI sub-indices; PM2.5 and PM10
are converted back to μg/m³ with the EPA tables, the gas sub-indices use
per-station scales and are not reported.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from pipeline.confidence.scorer import score_reading
from pipeline.errors import PermanentSourceError, SourceError
from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter, safe_float
from pipeline.ingestion.models import (
    Location,
    NormalizedReading,
    Pollutants,
    Weather,
    parse_datetime,
)
from pipeline.rules.aqi import PM10_BREAKPOINTS, PM25_BREAKPOINTS, aqi_to_concentration

logger = logging.getLogger(__name__)

WAQI_BASE_URL = "https://api.waqi.info"
MAX_STATIONS = 3


def _iaqi_value(iaqi: dict, key: str) -> Optional[float]:
    block = iaqi.get(key)
    if not isinstance(block, dict):
        return None
    return safe_float(block.get("v"))


def _sub_index_to_concentration(value: Optional[float], table) -> Optional[float]:
    if value is None:
        return None
    return aqi_to_concentration(value, table)


class WAQIAdapter(SourceAdapter):
    """Community ground-station network aggregated by waqi.info."""

    source_id = "waqi"

    def __init__(self, client, token: Optional[str] = None, max_stations: int = MAX_STATIONS, **kwargs):
        super().__init__(client, **kwargs)
        self.token = token
        self.max_stations = max_stations

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        token = self._require(self.token, "WAQI_TOKEN")
        payload = await self._get_json(
            f"{WAQI_BASE_URL}/search/", params={"token": token, "keyword": area.city}
        )
        self._check_status(payload)

        stations = payload.get("data") or []
        if not stations:
            logger.warning("WAQI search for %s returned no stations", area.city)
            return []

        uids = [s["uid"] for s in stations[: self.max_stations]]
        results = await asyncio.gather(
            *(self._fetch_station(uid, token) for uid in uids),
            return_exceptions=True,
        )

        readings = []
        errors = []
        for uid, result in zip(uids, results):
            if isinstance(result, SourceError):
                logger.warning("WAQI station @%s skipped: %s", uid, result.reason)
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                readings.append(result)

        if not readings and errors:
            raise errors[0]
        return readings

    async def _fetch_station(self, uid, token: str) -> Optional[NormalizedReading]:
        payload = await self._get_json(f"{WAQI_BASE_URL}/feed/@{uid}/", params={"token": token})
        self._check_status(payload)
        return self._parse_feed(payload["data"])

    def _check_status(self, payload: dict) -> None:
        if payload.get("status") != "ok":
            # WAQI answers HTTP 200 with {"status": "error", "data": "Invalid key"}
            raise PermanentSourceError(self.source_id, f"WAQI status: {payload.get('data')}")

    def _parse_feed(self, data: dict) -> Optional[NormalizedReading]:
        city = data.get("city") or {}
        geo = city.get("geo") or []
        if len(geo) != 2:
            logger.warning("WAQI station without coordinates skipped: %s", city.get("name"))
            return None

        iaqi = data.get("iaqi") or {}
        pollutants = Pollutants(
            pm25=_sub_index_to_concentration(_iaqi_value(iaqi, "pm25"), PM25_BREAKPOINTS),
            pm10=_sub_index_to_concentration(_iaqi_value(iaqi, "pm10"), PM10_BREAKPOINTS),
        )
        if not pollutants.reported():
            logger.info("WAQI station %s reported no particulate data", city.get("name"))
            return None

        weather = Weather(
            temperature=_iaqi_value(iaqi, "t"),
            humidity=_iaqi_value(iaqi, "h"),
            wind_speed=_iaqi_value(iaqi, "w"),
            pressure=_iaqi_value(iaqi, "p"),
        )
        observed_at = self._parse_time(data.get("time") or {})

        return NormalizedReading(
            source_id=self.source_id,
            location=Location(lat=float(geo[0]), lon=float(geo[1]), name=city.get("name")),
            pollutants=pollutants,
            weather=weather,
            observed_at=observed_at,
            confidence=score_reading("community", pollutants),
        )

    def _parse_time(self, time_block: dict) -> datetime:
        try:
            parsed = parse_datetime(time_block.get("iso"))
        except ValueError:
            parsed = None
        return parsed or self._clock()
