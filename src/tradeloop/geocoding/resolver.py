"""
Address resolution against a Nominatim-compatible geocoder.

Every public coroutine returns a :class:`ResolvedLocation`; transport,
provider and sensor failures are folded into failure results and never
raised past this module.
"""
import asyncio
import re
from typing import Any, Dict, Optional

import httpx
from structlog import get_logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tradeloop.common.config import settings
from tradeloop.geocoding.models import CityValidation, ResolvedLocation
from tradeloop.geocoding.sensor import (
    GENERIC_SENSOR_MESSAGE,
    LocationSensor,
    LocationSensorError,
    SensorErrorCode,
    UNSUPPORTED_SENSOR_MESSAGE,
    sensor_error_message,
)

logger = get_logger()

CITY_NAME_PATTERN = re.compile(r"[a-zA-Z\s\-'.]+")
MIN_CITY_LENGTH = 2
REVERSE_ZOOM = 10  # city-level granularity

CITY_NOT_FOUND = "City not found"
ADDRESS_NOT_FOUND = "Address not found"
FORWARD_FETCH_FAILED = "Failed to fetch location data"
REVERSE_FETCH_FAILED = "Failed to fetch address data"


class GeocoderError(Exception):
    """Upstream answered with something other than a usable payload."""
    pass


def validate_city_name(text: Optional[str]) -> CityValidation:
    """Syntactic pre-filter only; a valid name may still not exist."""
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_CITY_LENGTH:
        return CityValidation(valid=False, error="City name must be at least 2 characters long")
    if not CITY_NAME_PATTERN.fullmatch(cleaned):
        return CityValidation(valid=False, error="City name contains invalid characters")
    return CityValidation(valid=True)


def build_forward_query(city: str, state: str = "", country: str = "") -> str:
    query = city
    if state:
        query += f", {state}"
    if country:
        query += f", {country}"
    return query


def extract_state_from_display_name(display_name: Optional[str]) -> str:
    """
    Best-effort state guess: the segment just before the country in
    "Place, District, State, Country" layouts. Returns "" when the display
    name has fewer than three segments. Not authoritative.
    """
    if not display_name:
        return ""
    parts = [part.strip() for part in display_name.split(",")]
    if len(parts) >= 3:
        return parts[-2]
    return ""


def format_street_address(address: Dict[str, Any]) -> str:
    parts = []
    if address.get("house_number"):
        parts.append(str(address["house_number"]))
    if address.get("road"):
        parts.append(str(address["road"]))
    suburb = address.get("suburb")
    if suburb and suburb != address.get("city"):
        parts.append(str(suburb))
    return ", ".join(parts)


def _pick_city(address: Dict[str, Any]) -> str:
    for key in ("city", "town", "village", "suburb"):
        if address.get(key):
            return str(address[key])
    return ""


class AddressResolver:
    """
    Forward, reverse and device-based resolution.

    The HTTP client and the location sensor are injected so tests and hosts
    can substitute them.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        sensor: Optional[LocationSensor] = None,
        *,
        default_country: Optional[str] = None,
        country_codes: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_wait: float = 0.5,
        device_timeout: Optional[float] = None,
        device_max_age: Optional[float] = None,
    ):
        self.client = client
        self.sensor = sensor
        self.default_country = settings.DEFAULT_COUNTRY if default_country is None else default_country
        self.country_codes = country_codes or settings.GEOCODER_COUNTRY_CODES
        self.max_attempts = max(1, max_attempts or settings.GEOCODER_MAX_RETRIES)
        self.retry_wait = retry_wait
        self.device_timeout = device_timeout or settings.DEVICE_LOCATION_TIMEOUT
        self.device_max_age = device_max_age or settings.DEVICE_LOCATION_MAX_AGE

    @classmethod
    def from_settings(cls, sensor: Optional[LocationSensor] = None) -> "AddressResolver":
        client = httpx.AsyncClient(
            base_url=settings.GEOCODER_BASE_URL,
            timeout=settings.GEOCODER_TIMEOUT,
            headers={"User-Agent": settings.GEOCODER_USER_AGENT},
        )
        return cls(client, sensor)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "AddressResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any], failure_message: str) -> Any:
        # Only transient transport errors are retried; the provider is never swapped
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=5),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
            reraise=True,
        ):
            with attempt:
                response = await self.client.get(path, params=params)

        if response.status_code != 200:
            raise GeocoderError(failure_message)
        return response.json()

    async def resolve_forward(self, city: str, state: str = "", country: Optional[str] = None) -> ResolvedLocation:
        """Resolve a city (and optional state) to coordinates."""
        country = self.default_country if country is None else country
        query = build_forward_query(city, state, country)
        params = {
            "format": "json",
            "q": query,
            "limit": 1,
            "countrycodes": self.country_codes,
        }

        try:
            data = await self._get_json("/search", params, FORWARD_FETCH_FAILED)
            if not data:
                logger.info("geocode_forward_no_result", query=query)
                return ResolvedLocation.failure(CITY_NOT_FOUND)

            top = data[0]
            display_name = top.get("display_name") or ""
            resolved_state = state
            inferred = False
            if not state:
                resolved_state = extract_state_from_display_name(display_name)
                inferred = bool(resolved_state)
                if inferred:
                    # Heuristic result, flag for review rather than trust it
                    logger.info("state_inferred_from_display_name", city=city, state=resolved_state, display_name=display_name)

            return ResolvedLocation(
                success=True,
                lat=float(top["lat"]),
                lng=float(top["lon"]),
                display_name=display_name,
                city=city,
                state=resolved_state,
                country=country,
                state_inferred=inferred,
            )
        except (httpx.HTTPError, GeocoderError, ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            logger.warning("geocode_forward_failed", query=query, error=str(e), error_type=type(e).__name__)
            return ResolvedLocation.failure(str(e) or FORWARD_FETCH_FAILED)

    async def resolve_reverse(self, lat: float, lng: float) -> ResolvedLocation:
        """Resolve coordinates to a city-level address."""
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "zoom": REVERSE_ZOOM,
            "addressdetails": 1,
        }

        try:
            data = await self._get_json("/reverse", params, REVERSE_FETCH_FAILED)
            address = data.get("address") if isinstance(data, dict) else None
            if not address:
                logger.info("geocode_reverse_no_address", lat=lat, lng=lng)
                return ResolvedLocation.failure(ADDRESS_NOT_FOUND)

            return ResolvedLocation(
                success=True,
                lat=lat,
                lng=lng,
                city=_pick_city(address),
                state=address.get("state") or "",
                country=address.get("country") or self.default_country or "India",
                pincode=address.get("postcode") or "",
                street=format_street_address(address),
                display_name=data.get("display_name") or "",
            )
        except (httpx.HTTPError, GeocoderError, ValueError, TypeError, AttributeError) as e:
            logger.warning("geocode_reverse_failed", lat=lat, lng=lng, error=str(e), error_type=type(e).__name__)
            return ResolvedLocation.failure(str(e) or REVERSE_FETCH_FAILED)

    async def resolve_from_device_location(self) -> ResolvedLocation:
        """
        One-shot device fix followed by reverse resolution. Sensor failures
        are reported immediately, never retried.
        """
        if self.sensor is None:
            return ResolvedLocation.failure(UNSUPPORTED_SENSOR_MESSAGE)

        try:
            position = await asyncio.wait_for(
                self.sensor.current_position(
                    high_accuracy=True,
                    timeout=self.device_timeout,
                    maximum_age=self.device_max_age,
                ),
                timeout=self.device_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("device_location_failed", code=SensorErrorCode.TIMEOUT.name)
            return ResolvedLocation.failure(sensor_error_message(SensorErrorCode.TIMEOUT))
        except LocationSensorError as e:
            logger.warning("device_location_failed", code=e.code, error=str(e))
            return ResolvedLocation.failure(sensor_error_message(e.code))
        except Exception as e:
            logger.warning("device_location_failed", error=str(e), error_type=type(e).__name__)
            return ResolvedLocation.failure(GENERIC_SENSOR_MESSAGE)

        logger.info("device_location_acquired", accuracy=position.accuracy)
        resolved = await self.resolve_reverse(position.latitude, position.longitude)
        # Keep the fix even when the address lookup fails
        return resolved.model_copy(update={
            "lat": position.latitude,
            "lng": position.longitude,
            "accuracy": position.accuracy,
        })
