"""
SourceAdapter — base class for every provider connector.

fetch() is the only entry point the pipeline uses. It never raises:
every attempt is bounded by a timeout, transient failures are retried
through the shared RetryPolicy, and whatever is left becomes an
Unavailable result. Subclasses only implement fetch_readings() and the
provider-specific normalization.
"""

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from pipeline.errors import PermanentSourceError, TransientSourceError
from pipeline.ingestion.areas import Area
from pipeline.ingestion.models import (
    NormalizedReading,
    SourceResult,
    Unavailable,
    success,
    utc_now,
)
from pipeline.ingestion.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds, per attempt

RETRYABLE_STATUS = (429,)


def safe_float(val) -> Optional[float]:
    """Safely convert a provider value to a finite float, returning None on failure."""
    if val is None or val == "-" or val == "":
        return None
    try:
        value = float(val)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class SourceAdapter:
    """Fetches and normalizes one external feed."""

    source_id = "base"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable = utc_now,
    ):
        self.client = client
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Public: the pipeline contract
    # ------------------------------------------------------------------

    async def fetch(self, area: Area) -> SourceResult:
        try:
            readings = await run_with_retry(
                lambda: self._attempt(area),
                self.retry_policy,
                label=f"{self.source_id} fetch",
                sleep=self._sleep,
            )
        except PermanentSourceError as exc:
            logger.warning("%s unavailable (permanent): %s", self.source_id, exc.reason)
            return Unavailable(self.source_id, exc.reason, permanent=True)
        except TransientSourceError as exc:
            logger.warning("%s unavailable (retries exhausted): %s", self.source_id, exc.reason)
            return Unavailable(self.source_id, exc.reason)
        except Exception as exc:
            logger.exception("%s adapter raised unexpectedly", self.source_id)
            return Unavailable(self.source_id, f"adapter error: {exc!r}")

        logger.info(
            "%s returned %d reading(s) for %s", self.source_id, len(readings), area.area_id
        )
        return success(self.source_id, readings)

    async def fetch_readings(self, area: Area) -> List[NormalizedReading]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Internal helpers for subclasses
    # ------------------------------------------------------------------

    async def _attempt(self, area: Area) -> List[NormalizedReading]:
        try:
            return await asyncio.wait_for(self.fetch_readings(area), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransientSourceError(
                self.source_id, f"timed out after {self.timeout:.1f}s"
            ) from None
        except (KeyError, TypeError, IndexError, AttributeError) as exc:
            raise PermanentSourceError(
                self.source_id, f"malformed payload: {exc!r}"
            ) from exc

    def _require(self, value: Optional[str], name: str) -> str:
        if not value:
            raise PermanentSourceError(self.source_id, f"{name} not configured")
        return value

    async def _request_json(self, method: str, url: str, **kwargs) -> Any:
        """
        Perform one HTTP request and decode the JSON body.

        Raises:
            TransientSourceError: timeout, transport error, HTTP 429 or 5xx.
            PermanentSourceError: any other HTTP error or a non-JSON body.
        """
        host = httpx.URL(url).host
        kwargs.setdefault("timeout", self.timeout)
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise TransientSourceError(self.source_id, f"request to {host} timed out") from None
        except httpx.RequestError as exc:
            raise TransientSourceError(
                self.source_id, f"network error contacting {host}: {exc.__class__.__name__}"
            ) from exc

        status = resp.status_code
        if status in RETRYABLE_STATUS or status >= 500:
            raise TransientSourceError(self.source_id, f"HTTP {status} from {host}", status)
        if status >= 400:
            raise PermanentSourceError(self.source_id, f"HTTP {status} from {host}")

        try:
            return resp.json()
        except ValueError:
            raise PermanentSourceError(self.source_id, f"malformed JSON from {host}") from None

    async def _get_json(self, url: str, params: Optional[dict] = None, **kwargs) -> Any:
        return await self._request_json("GET", url, params=params, **kwargs)
