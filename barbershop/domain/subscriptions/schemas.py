"""Subscription domain schemas - Pydantic models for validation"""

import json
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_service_ids(value: Any) -> list[int]:
    """Accept a list or a JSON-encoded list of service IDs; return sorted unique ints"""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError("enabled_service_ids must be a list or a JSON-encoded list") from e
    if not isinstance(value, (list, tuple, set)):
        raise ValueError("enabled_service_ids must be a list of service IDs")
    try:
        return sorted({int(v) for v in value})
    except (TypeError, ValueError) as e:
        raise ValueError("enabled_service_ids must contain only integer IDs") from e


class PlanCreate(BaseModel):
    provider_id: int
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    monthly_price: float = Field(ge=0)
    included_services_count: int = Field(ge=0)
    commission_percentage: float = Field(default=0.0, ge=0, le=100)
    enabled_service_ids: list[int] = []

    @field_validator("enabled_service_ids", mode="before")
    @classmethod
    def parse_service_ids(cls, v: Any) -> list[int]:
        return normalize_service_ids(v)


class PlanUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    monthly_price: Optional[float] = Field(default=None, ge=0)
    included_services_count: Optional[int] = Field(default=None, ge=0)
    commission_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    enabled_service_ids: Optional[list[int]] = None
    is_active: Optional[bool] = None

    @field_validator("enabled_service_ids", mode="before")
    @classmethod
    def parse_service_ids(cls, v: Any) -> Optional[list[int]]:
        if v is None:
            return None
        return normalize_service_ids(v)


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    name: str
    description: Optional[str] = None
    monthly_price: float
    included_services_count: int
    commission_percentage: float
    enabled_service_ids: list[int]
    is_active: bool

    @field_validator("enabled_service_ids", mode="before")
    @classmethod
    def parse_service_ids(cls, v: Any) -> list[int]:
        return normalize_service_ids(v)


class SubscriptionCreate(BaseModel):
    client_id: int
    plan_id: int
    start_date: Optional[date] = None
    notes: Optional[str] = None


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    provider_id: int
    plan_id: int
    status: str
    remaining_services: int
    start_date: date
    end_date: date
    next_billing_date: Optional[date] = None
    last_reset_date: Optional[date] = None
    notes: Optional[str] = None


class UseServiceRequest(BaseModel):
    service_id: int
    command_id: Optional[int] = None
    original_price: Optional[float] = Field(default=None, ge=0)


class UseServiceResponse(BaseModel):
    success: bool
    subscriptionId: int
    remainingServices: int
    alreadyRecorded: bool = False


class ValidateServiceRequest(BaseModel):
    client_id: int
    service_id: int
    provider_id: Optional[int] = None


class ServiceUsageValidation(BaseModel):
    isValid: bool
    canUseService: bool
    remainingServices: int = 0
    discountedPrice: Optional[float] = None
    originalPrice: Optional[float] = None
    subscriptionId: Optional[int] = None
    reason: Optional[str] = None


class UsageHistoryItem(BaseModel):
    id: int
    service_id: int
    command_id: Optional[int] = None
    original_price: float
    used_at: Optional[str] = None


class SubscriptionSummary(BaseModel):
    subscription: SubscriptionResponse
    planName: str
    monthlyPrice: float
    includedServices: int
    remainingServices: int
    usedServices: int
    daysRemaining: int
    usageHistory: list[UsageHistoryItem]
