from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tradeloop.domain.profiles import Address, GeoPoint


class CityValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    error: Optional[str] = None


class DevicePosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None


class ResolvedLocation(BaseModel):
    """
    Outcome of a single resolution attempt.

    Failures carry ``error`` and nothing else worth reading. ``state_inferred``
    marks a state taken from the display-name heuristic rather than user
    input or a structured upstream field.
    """
    model_config = ConfigDict(frozen=True)

    success: bool
    error: Optional[str] = None

    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None
    city: str = ""
    state: str = ""
    country: str = ""
    pincode: str = ""
    street: str = ""
    display_name: str = ""
    state_inferred: bool = False

    @model_validator(mode="after")
    def _error_only_on_failure(self) -> "ResolvedLocation":
        if self.success and self.error is not None:
            raise ValueError("successful resolutions carry no error")
        if not self.success and not self.error:
            raise ValueError("failed resolutions must carry an error")
        return self

    @classmethod
    def failure(cls, error: str) -> "ResolvedLocation":
        return cls(success=False, error=error)


def to_profile_address(location: ResolvedLocation, base: Optional[Address] = None) -> Address:
    """
    Fold a resolution into a profile address.

    Empty resolved fields keep the value from ``base`` so a forward lookup
    (which has no street or pincode) does not wipe what the user typed.
    """
    base = base or Address()
    if not location.success:
        return base
    geolocation = base.geolocation
    if location.lat is not None and location.lng is not None:
        geolocation = GeoPoint(lat=location.lat, lng=location.lng)
    return Address(
        street=location.street or base.street,
        city=location.city or base.city,
        state=location.state or base.state,
        pincode=location.pincode or base.pincode,
        geolocation=geolocation,
    )
