"""
Consumer-facing address form.

Hosts that render the profile-edit form drive :class:`AddressForm` with
keystrokes and device-location requests. It is the only caller of the
debounce controller; the HTTP API exposes the stateless resolver instead.
"""
from enum import Enum
from typing import Optional

from structlog import get_logger

from tradeloop.common.config import settings
from tradeloop.domain.profiles import Address
from tradeloop.geocoding.debounce import DebounceController, Timer
from tradeloop.geocoding.models import CityValidation, ResolvedLocation, to_profile_address
from tradeloop.geocoding.resolver import AddressResolver, validate_city_name

logger = get_logger()


class ResolutionStatus(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DEBOUNCING = "debouncing"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


class AddressForm:
    """
    Address section of the profile-edit form.

    Owns the field values and the geolocation debounce controller. The
    resolver only returns :class:`ResolvedLocation` values; folding them into
    ``address`` happens here, and only for the latest generation.
    """

    def __init__(
        self,
        resolver: AddressResolver,
        address: Optional[Address] = None,
        *,
        country: Optional[str] = None,
        timer: Optional[Timer] = None,
        city_delay: Optional[float] = None,
        state_delay: Optional[float] = None,
    ):
        self.resolver = resolver
        self.address = address or Address()
        self.country = country
        self.city_delay = settings.CITY_DEBOUNCE_SECONDS if city_delay is None else city_delay
        self.state_delay = settings.STATE_DEBOUNCE_SECONDS if state_delay is None else state_delay

        self.status = ResolutionStatus.IDLE
        self.validation: Optional[CityValidation] = None
        self.last_resolution: Optional[ResolvedLocation] = None
        self.error: Optional[str] = None

        self.geolocation_lookup: DebounceController[ResolvedLocation] = DebounceController(
            "geolocation",
            self._resolve_forward,
            self._apply,
            quiet_period=self.city_delay,
            timer=timer,
        )

    def set_city(self, text: str) -> CityValidation:
        """Keystroke in the city field."""
        self.address = self.address.model_copy(update={"city": text})
        self.status = ResolutionStatus.VALIDATING
        self.validation = validate_city_name(text)
        if not self.validation.valid:
            self.geolocation_lookup.cancel()
            self.status = ResolutionStatus.IDLE
            return self.validation

        self.status = ResolutionStatus.DEBOUNCING
        self.geolocation_lookup.submit(text.strip(), self.address.state)
        return self.validation

    def set_state(self, text: str) -> None:
        """Change of the state field re-resolves sooner when a city is present."""
        self.address = self.address.model_copy(update={"state": text})
        city = self.address.city
        if not city or not validate_city_name(city).valid:
            return
        self.status = ResolutionStatus.DEBOUNCING
        self.geolocation_lookup.submit(city.strip(), text, delay=self.state_delay)

    def set_field(self, name: str, value: str) -> None:
        """Plain fields (street, pincode) never trigger resolution."""
        self.address = self.address.model_copy(update={name: value})

    async def use_device_location(self) -> ResolvedLocation:
        generation = self.geolocation_lookup.cancel()
        self.status = ResolutionStatus.RESOLVING
        result = await self.resolver.resolve_from_device_location()
        if self.geolocation_lookup.is_current(generation):
            self._apply(result)
        else:
            logger.info("resolution_discarded", field="geolocation", generation=generation, source="device")
        return result

    async def _resolve_forward(self, city: str, state: str) -> ResolvedLocation:
        self.status = ResolutionStatus.RESOLVING
        return await self.resolver.resolve_forward(city, state, self.country)

    def _apply(self, result: ResolvedLocation) -> None:
        self.last_resolution = result
        if result.success:
            self.address = to_profile_address(result, self.address)
            self.status = ResolutionStatus.RESOLVED
            self.error = None
        else:
            self.status = ResolutionStatus.FAILED
            self.error = result.error
