"""
Open-Meteo Connector (keyless).

Per sample point: the forecast API for current weather and the
air-quality API for modelled concentrations. Both are queried in GMT,
wind in m/s.
"""

import asyncio
import logging
from typing import List

from pipeline.confidence.scorer import score_reading
from pipeline.errors import SourceError
from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter, safe_float
from pipeline.ingestion.models import (
    Location,
    NormalizedReading,
    Pollutants,
    Weather,
    parse_datetime,
)

logger = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
AIR_QUALITY_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"

WEATHER_VARIABLES = "temperature_2m,relative_humidity_2m,surface_pressure,wind_speed_10m"
AIR_QUALITY_VARIABLES = "pm2_5,pm10,nitrogen_dioxide,sulphur_dioxide,carbon_monoxide,ozone"


class OpenMeteoAdapter(SourceAdapter):
    source_id = "openmeteo"

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        readings = []
        last_error = None
        for point in area.points():
            results = await asyncio.gather(
                self._get_json(FORECAST_URL, params={
                    "latitude": point.lat,
                    "longitude": point.lon,
                    "current": WEATHER_VARIABLES,
                    "wind_speed_unit": "ms",
                    "timezone": "GMT",
                }),
                self._get_json(AIR_QUALITY_URL, params={
                    "latitude": point.lat,
                    "longitude": point.lon,
                    "current": AIR_QUALITY_VARIABLES,
                    "timezone": "GMT",
                }),
                return_exceptions=True,
            )
            # both requests have settled; surface the first failure
            failure = next((r for r in results if isinstance(r, BaseException)), None)
            if isinstance(failure, SourceError):
                logger.warning("Open-Meteo failed for %s: %s", point.name, failure.reason)
                last_error = failure
                continue
            if failure is not None:
                raise failure
            weather_data, aq_data = results
            readings.append(self._parse(point, weather_data, aq_data))

        if not readings and last_error is not None:
            raise last_error
        return readings

    def _parse(self, point: Location, weather_data: dict, aq_data: dict) -> NormalizedReading:
        w = weather_data["current"]
        aq = aq_data["current"]

        pollutants = Pollutants(
            pm25=safe_float(aq.get("pm2_5")),
            pm10=safe_float(aq.get("pm10")),
            no2=safe_float(aq.get("nitrogen_dioxide")),
            so2=safe_float(aq.get("sulphur_dioxide")),
            co=safe_float(aq.get("carbon_monoxide")),
            o3=safe_float(aq.get("ozone")),
        )
        weather = Weather(
            temperature=safe_float(w.get("temperature_2m")),
            humidity=safe_float(w.get("relative_humidity_2m")),
            wind_speed=safe_float(w.get("wind_speed_10m")),
            pressure=safe_float(w.get("surface_pressure")),
        )

        return NormalizedReading(
            source_id=self.source_id,
            location=point,
            pollutants=pollutants,
            weather=weather,
            observed_at=parse_datetime(aq.get("time")) or self._clock(),
            confidence=score_reading("weather_api", pollutants),
        )
