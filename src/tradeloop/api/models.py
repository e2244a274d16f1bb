from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from tradeloop.domain.orders import DeliveryType, NextAction, OrderStatus
from tradeloop.domain.profiles import Profile, View


class OrderStartRequest(BaseModel):
    product: str = Field(..., description="Product description")
    quantity: str = Field(..., description="Quantity with unit, free text")
    total_price: float = Field(..., ge=0)
    buyer: Optional[str] = None
    buyer_phone: Optional[str] = None
    supplier: Optional[str] = None
    supplier_phone: Optional[str] = None
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery_address: Optional[str] = None


class AdvanceRequest(BaseModel):
    target: OrderStatus = Field(..., description="Status to move the order to")


class HandshakeRequest(BaseModel):
    exchange_code: str = Field(..., description="Code presented by the buyer")


class OrderStateResponse(BaseModel):
    order: Dict[str, Any]
    next_action: Optional[NextAction] = None
    last_error: Optional[Dict[str, str]] = None


class DeviceFixRequest(BaseModel):
    """A fix (or a sensor error code) the client acquired on the device."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = None
    error_code: Optional[int] = Field(None, description="1 denied, 2 unavailable, 3 timeout")

    @model_validator(mode="after")
    def _fix_or_error(self) -> "DeviceFixRequest":
        has_fix = self.latitude is not None and self.longitude is not None
        if not has_fix and self.error_code is None:
            raise ValueError("either latitude/longitude or error_code is required")
        return self


class CompletenessResponse(BaseModel):
    complete: bool
    percentage: int


class GuardRequest(BaseModel):
    view: View
    profile: Profile


class PasswordChangeRequest(BaseModel):
    new_password: str
    confirm_password: str
