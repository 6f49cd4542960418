"""Command domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..billing.schemas import PAYMENT_METHODS


class CommandCreate(BaseModel):
    client_id: Optional[int] = None
    barber_id: Optional[int] = None
    appointment_id: Optional[int] = None
    notes: Optional[str] = None


class CommandItemCreate(BaseModel):
    """Line item; service items default name/price from the catalog"""

    item_type: str = "service"
    service_id: Optional[int] = None
    name: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Optional[float] = Field(default=None, ge=0)
    commission_rate: Optional[float] = Field(default=None, ge=0, le=100)
    use_subscription: bool = False

    @field_validator("item_type")
    @classmethod
    def validate_item_type(cls, v: str) -> str:
        if v not in {"service", "product"}:
            raise ValueError("item_type must be 'service' or 'product'")
        return v


class CommandClose(BaseModel):
    payment_method: str
    discount_amount: float = Field(default=0.0, ge=0)

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        if v not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {sorted(PAYMENT_METHODS)}")
        return v


class CommandItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_type: str
    service_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: float
    total_price: float
    commission_rate: float
    commission_amount: float
    subscription_id: Optional[int] = None
    original_price: Optional[float] = None


class CommandResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: Optional[int] = None
    barber_id: Optional[int] = None
    appointment_id: Optional[int] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    total_amount: float
    discount_amount: float
    final_amount: float
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    items: list[CommandItemResponse] = []
