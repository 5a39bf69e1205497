"""
Runtime configuration, read from the environment (and a local .env file).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    # Provider credentials (missing → that adapter reports Unavailable)
    waqi_token: Optional[str] = None
    weatherapi_key: Optional[str] = None
    iqair_api_key: Optional[str] = None
    copernicus_client_id: Optional[str] = None
    copernicus_client_secret: Optional[str] = None

    # Persistence sink (optional)
    database_url: Optional[str] = None

    # Reference data
    areas_config: Optional[str] = None
    thresholds_config: Optional[str] = None
    default_area: str = "nairobi"

    # Scheduling
    run_interval_seconds: int = 600
    startup_delay_seconds: int = 5
    cache_ttl_seconds: int = 900

    # Adapters
    request_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_backoff_factor: float = 2.0

    # Quality
    freshness_window_hours: float = 2.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        settings = cls(
            waqi_token=os.environ.get("WAQI_TOKEN") or None,
            weatherapi_key=os.environ.get("WEATHERAPI_KEY") or None,
            iqair_api_key=os.environ.get("IQAIR_API_KEY") or None,
            copernicus_client_id=os.environ.get("COPERNICUS_CLIENT_ID") or None,
            copernicus_client_secret=os.environ.get("COPERNICUS_CLIENT_SECRET") or None,
            database_url=os.environ.get("DATABASE_URL") or None,
            areas_config=os.environ.get("AREAS_CONFIG") or None,
            thresholds_config=os.environ.get("THRESHOLDS_CONFIG") or None,
            default_area=os.environ.get("DEFAULT_AREA", "nairobi"),
            run_interval_seconds=_env_int("RUN_INTERVAL_SECONDS", 600),
            startup_delay_seconds=_env_int("STARTUP_DELAY_SECONDS", 5),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 900),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 10.0),
            retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay_seconds=_env_float("RETRY_BASE_DELAY_SECONDS", 1.0),
            retry_backoff_factor=_env_float("RETRY_BACKOFF_FACTOR", 2.0),
            freshness_window_hours=_env_float("FRESHNESS_WINDOW_HOURS", 2.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
        if settings.run_interval_seconds <= 0:
            raise ValueError("RUN_INTERVAL_SECONDS must be positive")
        if settings.cache_ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be positive")
        return settings

    def configured_sources(self) -> dict:
        """Which credentialed providers are configured (values never exposed)."""
        return {
            "waqi": bool(self.waqi_token),
            "weatherapi": bool(self.weatherapi_key),
            "iqair": bool(self.iqair_api_key),
            "sentinel5p": bool(self.copernicus_client_id and self.copernicus_client_secret),
            "openmeteo": True,
        }
