"""
Copernicus Sentinel-5P NO2 Connector.

Authenticates against the Copernicus Data Space identity service
(OAuth2 client credentials) and queries the Sentinel Hub Statistical API
for the tropospheric NO2 column over a grid of cells covering the area's
bounding box. Each cell with valid pixels becomes one reading at its
centre.

The column density (mol/m²) is turned into a rough surface concentration
by spreading it over a fixed boundary-layer height:

    μg/m³ = column * NO2_MOLAR_MASS * 1e6 / BOUNDARY_LAYER_HEIGHT_M
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pipeline.confidence.scorer import clamp_confidence
from pipeline.errors import PermanentSourceError
from pipeline.ingestion.areas import Area
from pipeline.ingestion.base import SourceAdapter, safe_float
from pipeline.ingestion.models import (
    Location,
    NormalizedReading,
    Pollutants,
    isoformat,
    parse_datetime,
)

logger = logging.getLogger(__name__)

TOKEN_URL = "https://identity.dataspace.copernicus.eu/auth/realms/CDSE/protocol/openid-connect/token"
STATISTICS_URL = "https://sh.dataspace.copernicus.eu/api/v1/statistics"

NO2_MOLAR_MASS = 46.0055          # g/mol
BOUNDARY_LAYER_HEIGHT_M = 1000.0
LOOKBACK = timedelta(days=2)
GRID_SIZE = 2                     # cells per side
RESOLUTION_DEG = 0.05

EVALSCRIPT = """
//VERSION=3
function setup() {
  return {
    input: [{bands: ["NO2", "dataMask"]}],
    output: [
      {id: "no2", bands: 1, sampleType: "FLOAT32"},
      {id: "dataMask", bands: 1}
    ]
  };
}
function evaluatePixel(samples) {
  return {no2: [samples.NO2], dataMask: [samples.dataMask]};
}
"""


def column_to_surface(column: float) -> float:
    """Tropospheric NO2 column (mol/m²) → estimated surface μg/m³."""
    return round(column * NO2_MOLAR_MASS * 1e6 / BOUNDARY_LAYER_HEIGHT_M, 2)


def grid_cells(bbox: Tuple[float, float, float, float], size: int = GRID_SIZE):
    """Split (min_lon, min_lat, max_lon, max_lat) into size x size cells."""
    min_lon, min_lat, max_lon, max_lat = bbox
    d_lon = (max_lon - min_lon) / size
    d_lat = (max_lat - min_lat) / size
    cells = []
    for i in range(size):
        for j in range(size):
            cells.append((
                round(min_lon + i * d_lon, 6),
                round(min_lat + j * d_lat, 6),
                round(min_lon + (i + 1) * d_lon, 6),
                round(min_lat + (j + 1) * d_lat, 6),
            ))
    return cells


class Sentinel5PAdapter(SourceAdapter):
    source_id = "sentinel5p"

    def __init__(
        self,
        client,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        grid_size: int = GRID_SIZE,
        **kwargs,
    ):
        super().__init__(client, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.grid_size = grid_size
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        token = await self._access_token()
        now = self._clock()
        time_range = {"from": isoformat(now - LOOKBACK), "to": isoformat(now)}

        readings = []
        for cell in grid_cells(area.bbox, self.grid_size):
            payload = await self._request_json(
                "POST",
                STATISTICS_URL,
                json=self._statistics_request(cell, time_range),
                headers={"Authorization": f"Bearer {token}"},
            )
            reading = self._parse_cell(cell, payload, now)
            if reading is not None:
                readings.append(reading)

        if not readings:
            logger.info("Sentinel-5P: no valid NO2 pixels over %s in the last %s", area.area_id, LOOKBACK)
        return readings

    async def _access_token(self) -> str:
        now = self._clock()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token

        client_id = self._require(self.client_id, "COPERNICUS_CLIENT_ID")
        client_secret = self._require(self.client_secret, "COPERNICUS_CLIENT_SECRET")
        payload = await self._request_json("POST", TOKEN_URL, data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        })
        token = payload.get("access_token")
        if not token:
            raise PermanentSourceError(self.source_id, "token response without access_token")

        expires_in = int(payload.get("expires_in", 600))
        self._token = token
        # refresh one minute early
        self._token_expires_at = now + timedelta(seconds=max(0, expires_in - 60))
        logger.debug("Copernicus access token refreshed, valid for %ss", expires_in)
        return token

    def _statistics_request(self, cell, time_range: dict) -> dict:
        return {
            "input": {
                "bounds": {
                    "bbox": list(cell),
                    "properties": {"crs": "http://www.opengis.net/def/crs/EPSG/0/4326"},
                },
                "data": [{"type": "sentinel-5p-l2", "dataFilter": {"timeRange": time_range}}],
            },
            "aggregation": {
                "timeRange": time_range,
                "aggregationInterval": {"of": "P1D"},
                "evalscript": EVALSCRIPT,
                "resx": RESOLUTION_DEG,
                "resy": RESOLUTION_DEG,
            },
            "calculations": {"default": {}},
        }

    def _parse_cell(self, cell, payload: dict, now: datetime) -> Optional[NormalizedReading]:
        # latest interval with valid pixels wins
        for interval in reversed(payload.get("data") or []):
            stats = interval["outputs"]["no2"]["bands"]["B0"]["stats"]
            mean = safe_float(stats.get("mean"))
            samples = int(stats.get("sampleCount") or 0)
            no_data = int(stats.get("noDataCount") or 0)
            if mean is None or samples <= 0 or samples == no_data:
                continue

            coverage = (samples - no_data) / samples
            end = parse_datetime(interval["interval"]["to"]) or now
            min_lon, min_lat, max_lon, max_lat = cell
            return NormalizedReading(
                source_id=self.source_id,
                location=Location(
                    lat=round((min_lat + max_lat) / 2, 6),
                    lon=round((min_lon + max_lon) / 2, 6),
                    name="Sentinel-5P grid cell",
                ),
                pollutants=Pollutants(no2=column_to_surface(max(0.0, mean))),
                observed_at=min(end, now),
                confidence=clamp_confidence(coverage),
            )
        return None
