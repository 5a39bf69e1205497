"""
WeatherAPI.com Connector.

One current.json call (aqi=yes) per area sample point. Returns weather
context together with the modelled pollutant concentrations.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from pipeline.confidence.scorer import score_reading
from pipeline.errors import SourceError
from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter, safe_float
from pipeline.ingestion.models import (
    Location,
    NormalizedReading,
    Pollutants,
    Weather,
)

logger = logging.getLogger(__name__)

WEATHERAPI_URL = "https://api.weatherapi.com/v1/current.json"


def kph_to_ms(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(value / 3.6, 2)


class WeatherAPIAdapter(SourceAdapter):
    source_id = "weatherapi"

    def __init__(self, client, api_key: Optional[str] = None, **kwargs):
        super().__init__(client, **kwargs)
        self.api_key = api_key

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        key = self._require(self.api_key, "WEATHERAPI_KEY")

        readings = []
        last_error = None
        for point in area.points():
            try:
                data = await self._get_json(
                    WEATHERAPI_URL,
                    params={"key": key, "q": f"{point.lat},{point.lon}", "aqi": "yes"},
                )
            except SourceError as exc:
                # a single failing point should not hide the others
                logger.warning("WeatherAPI failed for %s: %s", point.name, exc.reason)
                last_error = exc
                continue
            readings.append(self._parse(point, data))

        if not readings and last_error is not None:
            raise last_error
        return readings

    def _parse(self, point: Location, data: dict) -> NormalizedReading:
        current = data["current"]
        aq = current.get("air_quality") or {}

        pollutants = Pollutants(
            pm25=safe_float(aq.get("pm2_5")),
            pm10=safe_float(aq.get("pm10")),
            no2=safe_float(aq.get("no2")),
            so2=safe_float(aq.get("so2")),
            co=safe_float(aq.get("co")),
            o3=safe_float(aq.get("o3")),
        )
        weather = Weather(
            temperature=safe_float(current.get("temp_c")),
            humidity=safe_float(current.get("humidity")),
            wind_speed=kph_to_ms(safe_float(current.get("wind_kph"))),
            pressure=safe_float(current.get("pressure_mb")),
        )
        epoch = current.get("last_updated_epoch")
        observed_at = self._clock()
        if epoch is not None:
            observed_at = datetime.fromtimestamp(int(epoch), tz=timezone.utc)

        return NormalizedReading(
            source_id=self.source_id,
            location=point,
            pollutants=pollutants,
            weather=weather,
            observed_at=observed_at,
            confidence=score_reading("weather_api", pollutants, premium=True),
        )
