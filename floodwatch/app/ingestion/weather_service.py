"""
weather_service.py — KMA ultra-short-term observation ingestion.

Fetches the current rainfall, temperature and humidity for one forecast
grid cell from the Korea Meteorological Administration (KMA) public API
and turns it into an `Observation`.

KMA Request
===========
    GET {KMA_BASE_URL}/getUltraSrtNcst
        serviceKey  API key (data.go.kr)
        numOfRows   10
        pageNo      1
        dataType    JSON
        base_date   YYYYMMDD
        base_time   HH00       (observations are published on the hour)
        nx, ny      forecast grid coordinates

Response shape (abridged):

    {"response": {
        "header": {"resultCode": "00", "resultMsg": "NORMAL_SERVICE"},
        "body": {"items": {"item": [
            {"category": "RN1", "obsrValue": "0"},      rainfall mm/h
            {"category": "T1H", "obsrValue": "24.1"},   temperature °C
            {"category": "REH", "obsrValue": "78"},     humidity %
            ...
        ]}}
    }}

RN1 is occasionally a text token (e.g. "강수없음", "no precipitation")
rather than a number; anything non-numeric is read as 0 mm/h.

Error Handling Strategy
=======================
    Disabled, missing key, network error, HTTP error, resultCode ≠ "00",
    malformed payload
        → logged, and a synthetic observation is returned instead.

The pipeline therefore always receives an observation.  Upstream failures
never propagate past `fetch_observation`.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from floodwatch.app.core.config import settings
from floodwatch.app.core.errors import ExternalServiceError
from floodwatch.app.ml.models import Observation, ObservationSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

KMA_ENDPOINT = "getUltraSrtNcst"
KMA_SUCCESS_CODE = "00"

# base_date / base_time are interpreted in Korea Standard Time
KST = timezone(timedelta(hours=9), "KST")

CATEGORY_RAINFALL = "RN1"
CATEGORY_TEMPERATURE = "T1H"
CATEGORY_HUMIDITY = "REH"

# Used when a category is missing from an otherwise valid response
DEFAULT_TEMPERATURE_C = 20.0
DEFAULT_HUMIDITY_PCT = 60.0

# Synthetic diurnal pattern: (start hour, end hour inclusive, min mm/h, max mm/h)
SYNTHETIC_RAIN_BANDS = (
    (14, 18, 20.0, 70.0),   # afternoon convective peak
    (9, 20, 0.0, 15.0),     # daytime
)
SYNTHETIC_NIGHT_RAIN = (0.0, 5.0)
SYNTHETIC_TEMPERATURE_RANGE = (20.0, 30.0)
SYNTHETIC_HUMIDITY_RANGE = (60.0, 90.0)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_kma_items(items: List[Dict[str, Any]], captured_at: datetime) -> Observation:
    """Build an Observation from KMA `item` records."""
    values: Dict[str, Any] = {}
    for item in items:
        category = item.get("category")
        if category:
            values[category] = item.get("obsrValue")

    rainfall = _to_float(values.get(CATEGORY_RAINFALL))
    temperature = _to_float(values.get(CATEGORY_TEMPERATURE))
    humidity = _to_float(values.get(CATEGORY_HUMIDITY))

    return Observation.create(
        rainfall_mm_hr=rainfall if rainfall is not None else 0.0,
        humidity_pct=humidity if humidity is not None else DEFAULT_HUMIDITY_PCT,
        temperature_c=temperature if temperature is not None else DEFAULT_TEMPERATURE_C,
        captured_at=captured_at,
        source=ObservationSource.API,
    )


def generate_synthetic_observation(
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> Observation:
    """
    Plausible observation following a diurnal rainfall pattern (KST hours).

        14–18 h   20–70 mm/h
        09–20 h    0–15 mm/h
        otherwise  0–5 mm/h
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    rng = rng or random.Random()
    hour = now.astimezone(KST).hour

    low, high = SYNTHETIC_NIGHT_RAIN
    for start, end, band_low, band_high in SYNTHETIC_RAIN_BANDS:
        if start <= hour <= end:
            low, high = band_low, band_high
            break

    return Observation.create(
        rainfall_mm_hr=rng.uniform(low, high),
        humidity_pct=rng.uniform(*SYNTHETIC_HUMIDITY_RANGE),
        temperature_c=rng.uniform(*SYNTHETIC_TEMPERATURE_RANGE),
        captured_at=now,
        source=ObservationSource.SYNTHETIC,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class WeatherService:
    """
    Async KMA client with synthetic fallback.

    Usage:
        service = WeatherService()
        obs = await service.fetch_observation()
        await service.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = settings.KMA_BASE_URL,
        nx: int = settings.KMA_NX,
        ny: int = settings.KMA_NY,
        use_real_api: bool = settings.KMA_USE_REAL_API,
        timeout: float = settings.KMA_FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.KMA_API_KEY
        self.base_url = base_url.rstrip("/")
        self.nx = nx
        self.ny = ny
        self.use_real_api = use_real_api
        self.timeout = timeout
        self._transport = transport
        self._rng = rng or random.Random()
        self._http_client: Optional[httpx.AsyncClient] = None
        self.consecutive_failures = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _request_params(self, now: datetime) -> Dict[str, Any]:
        local = now.astimezone(KST)
        return {
            "serviceKey": self.api_key,
            "numOfRows": 10,
            "pageNo": 1,
            "dataType": "JSON",
            "base_date": local.strftime("%Y%m%d"),
            "base_time": local.strftime("%H00"),
            "nx": self.nx,
            "ny": self.ny,
        }

    async def fetch_observation(self, now: Optional[datetime] = None) -> Observation:
        """
        Current observation from KMA, or a synthetic one if that fails.

        Never raises for upstream problems.
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if not self.use_real_api:
            return generate_synthetic_observation(now, self._rng)

        if not self.api_key:
            logger.warning("KMA API key not configured; using synthetic observation")
            return generate_synthetic_observation(now, self._rng)

        try:
            obs = await self._fetch_kma(now)
        except ExternalServiceError as e:
            self.consecutive_failures += 1
            logger.warning(
                "%s (failures in a row: %d); using synthetic observation",
                e.message, self.consecutive_failures,
            )
            return generate_synthetic_observation(now, self._rng)

        self.consecutive_failures = 0
        logger.debug("KMA observation: rain=%.1fmm/h temp=%.1f°C hum=%.0f%%",
                     obs.rainfall_mm_hr, obs.temperature_c, obs.humidity_pct)
        return obs

    async def _fetch_kma(self, now: datetime) -> Observation:
        client = await self._get_client()
        url = f"{self.base_url}/{KMA_ENDPOINT}"

        try:
            response = await client.get(url, params=self._request_params(now))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "kma", f"HTTP {e.response.status_code}", status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError("kma", f"request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("kma", "response is not valid JSON") from e

        try:
            body = data["response"]
            result_code = body["header"]["resultCode"]
        except (KeyError, TypeError) as e:
            raise ExternalServiceError("kma", "unexpected response shape") from e

        if result_code != KMA_SUCCESS_CODE:
            raise ExternalServiceError(
                "kma",
                f"resultCode={result_code} {body['header'].get('resultMsg', '')}".strip(),
                result_code=result_code,
            )

        try:
            items = body["body"]["items"]["item"]
        except (KeyError, TypeError) as e:
            raise ExternalServiceError("kma", "response has no items") from e

        if isinstance(items, dict):
            items = [items]
        if not isinstance(items, list) or not items:
            raise ExternalServiceError("kma", "response has no items")

        return parse_kma_items(items, captured_at=now)
