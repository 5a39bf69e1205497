"""
IQAir (AirVisual) Connector — commercial city feed.

The /v2/city endpoint returns one station per city with the US AQI and
its main pollutant. When the main pollutant is PM2.5 ("p2") the AQI is
converted back into a concentration; otherwise only weather is known and
the reading is dropped.
"""

import logging
from typing import List, Optional

from pipeline.confidence.scorer import score_reading
from pipeline.errors import PermanentSourceError, TransientSourceError
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

IQAIR_CITY_URL = "https://api.airvisual.com/v2/city"

# IQAir sends these as {"status": "fail"} with HTTP 200
RETRYABLE_MESSAGES = ("call_limit_reached", "too_many_requests")


class IQAirAdapter(SourceAdapter):
    source_id = "iqair"

    def __init__(self, client, api_key: Optional[str] = None, **kwargs):
        super().__init__(client, **kwargs)
        self.api_key = api_key

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        key = self._require(self.api_key, "IQAIR_API_KEY")
        payload = await self._get_json(IQAIR_CITY_URL, params={
            "city": area.city,
            "state": area.state or area.city,
            "country": area.country,
            "key": key,
        })

        if payload.get("status") != "success":
            message = (payload.get("data") or {}).get("message", "unknown error")
            if message in RETRYABLE_MESSAGES:
                raise TransientSourceError(self.source_id, f"IQAir: {message}")
            raise PermanentSourceError(self.source_id, f"IQAir: {message}")

        reading = self._parse(payload["data"], area)
        return [reading] if reading else []

    def _parse(self, data: dict, area: Area) -> Optional[NormalizedReading]:
        current = data["current"]
        pollution = current.get("pollution") or {}
        aqius = safe_float(pollution.get("aqius"))
        main = pollution.get("mainus")

        pollutants = Pollutants()
        if aqius is not None and main == "p2":
            pollutants = Pollutants(pm25=aqi_to_concentration(aqius, PM25_BREAKPOINTS))
        elif aqius is not None and main == "p1":
            pollutants = Pollutants(pm10=aqi_to_concentration(aqius, PM10_BREAKPOINTS))
        if not pollutants.reported():
            logger.info("IQAir main pollutant for %s is %s; no concentration derived", area.city, main)
            return None

        coords = (data.get("location") or {}).get("coordinates") or []
        if len(coords) == 2:
            # GeoJSON order: lon, lat
            location = Location(lat=float(coords[1]), lon=float(coords[0]), name=data.get("city"))
        else:
            location = area.center

        w = current.get("weather") or {}
        weather = Weather(
            temperature=safe_float(w.get("tp")),
            humidity=safe_float(w.get("hu")),
            wind_speed=safe_float(w.get("ws")),
            pressure=safe_float(w.get("pr")),
        )

        return NormalizedReading(
            source_id=self.source_id,
            location=location,
            pollutants=pollutants,
            weather=weather,
            observed_at=parse_datetime(pollution.get("ts")) or self._clock(),
            confidence=score_reading("commercial", pollutants),
        )
