"""
Profile completeness gate and account collaborator wrappers.
"""
from enum import Enum
from typing import Any, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict
from structlog import get_logger

logger = get_logger()

INCOMPLETE_PROFILE_MESSAGE = "Please complete your profile to access this section."
DEFAULT_MIN_PASSWORD_LENGTH = 6


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    geolocation: Optional[GeoPoint] = None


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    fullname: str = ""
    name: str = ""
    phone: str = ""
    address: Address = Address()
    is_supplier: bool = False
    is_vendor: bool = False


class View(str, Enum):
    PROFILE = "profile"
    DELIVERED = "delivered"
    RECEIVED = "received"
    SAMPLES = "samples"
    NOTIFICATIONS = "notifications"


class GuardDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    view: View
    granted: bool
    message: Optional[str] = None


def _filled(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def _completeness_fields(profile: Profile) -> Tuple[str, ...]:
    a = profile.address
    return (profile.fullname, profile.phone, a.street, a.city, a.state, a.pincode)


def _percentage_fields(profile: Profile) -> Tuple[str, ...]:
    a = profile.address
    return (profile.fullname, profile.name, profile.phone, a.street, a.city, a.state, a.pincode)


def is_complete(profile: Profile) -> bool:
    """Geolocation and display name never count towards completeness."""
    return all(_filled(v) for v in _completeness_fields(profile))


def completion_percentage(profile: Profile) -> int:
    fields = _percentage_fields(profile)
    filled = sum(1 for v in fields if _filled(v))
    return round(filled / len(fields) * 100)


def guard(requested_view: View, profile: Profile) -> GuardDecision:
    """
    Grant ``requested_view`` when it is the profile view or the profile is
    complete. Otherwise redirect to the profile view with an advisory.
    """
    requested_view = View(requested_view)
    if requested_view == View.PROFILE or is_complete(profile):
        return GuardDecision(view=requested_view, granted=True)
    return GuardDecision(view=View.PROFILE, granted=False, message=INCOMPLETE_PROFILE_MESSAGE)


# --- Account collaborator ---

class OperationResult(BaseModel):
    """Outcome of a call into an external collaborator or a local check."""
    model_config = ConfigDict(frozen=True)

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None


class AccountService(Protocol):
    """Persistence collaborator owned by the surrounding application."""

    async def update_account_details(self, profile: Profile) -> Any:
        ...

    async def change_password(self, current_password: str, new_password: str) -> Any:
        ...


def validate_password_change(
    new_password: str,
    confirm_password: str,
    min_length: int = DEFAULT_MIN_PASSWORD_LENGTH,
) -> OperationResult:
    if len(new_password or "") < min_length:
        return OperationResult(success=False, message=f"Password must be at least {min_length} characters long")
    if new_password != confirm_password:
        return OperationResult(success=False, message="New passwords do not match")
    return OperationResult(success=True)


def _collaborator_message(exc: Exception, fallback: str) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or fallback


async def save_account_details(service: AccountService, profile: Profile) -> OperationResult:
    """Hand the profile to the persistence collaborator; failures surface verbatim."""
    try:
        data = await service.update_account_details(profile)
    except Exception as e:
        logger.warning("account_update_failed", error=str(e))
        return OperationResult(success=False, message=_collaborator_message(e, "Failed to update profile"))
    logger.info("account_updated", complete=is_complete(profile))
    return OperationResult(success=True, message="Profile updated successfully", data=data)


async def change_password(
    service: AccountService,
    current_password: str,
    new_password: str,
    confirm_password: str,
) -> OperationResult:
    checked = validate_password_change(new_password, confirm_password)
    if not checked.success:
        return checked
    try:
        await service.change_password(current_password, new_password)
    except Exception as e:
        logger.warning("password_change_failed", error=str(e))
        return OperationResult(success=False, message=_collaborator_message(e, "Failed to change password"))
    return OperationResult(success=True, message="Password changed successfully")
