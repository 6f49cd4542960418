"""Automation domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RULE_TYPES = {"reminder", "follow_up", "churn_alert", "promotion"}


def validate_rule_type(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in RULE_TYPES:
        raise ValueError(f"type must be one of: {', '.join(sorted(RULE_TYPES))}")
    return v


class RuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str
    trigger_type: Optional[str] = Field(default=None, max_length=50)
    trigger_conditions: dict[str, Any] = {}
    message_template: str = Field(min_length=1)
    promotion_details: Optional[str] = None
    send_whatsapp: bool = True
    notify_staff: bool = False
    is_active: bool = True

    @field_validator("type")
    @classmethod
    def check_type(cls, v: str) -> str:
        return validate_rule_type(v)


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[str] = None
    trigger_type: Optional[str] = Field(default=None, max_length=50)
    trigger_conditions: Optional[dict[str, Any]] = None
    message_template: Optional[str] = Field(default=None, min_length=1)
    promotion_details: Optional[str] = None
    send_whatsapp: Optional[bool] = None
    notify_staff: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("type")
    @classmethod
    def check_type(cls, v: Optional[str]) -> Optional[str]:
        return validate_rule_type(v)


class RuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    barbershop_id: int
    name: str
    type: str
    trigger_type: Optional[str] = None
    trigger_conditions: dict[str, Any] = {}
    message_template: str
    promotion_details: Optional[str] = None
    send_whatsapp: bool
    notify_staff: bool
    is_active: bool

    @field_validator("trigger_conditions", mode="before")
    @classmethod
    def default_conditions(cls, v: Any) -> dict[str, Any]:
        return v or {}


class ExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rule_id: int
    client_id: Optional[int] = None
    appointment_id: Optional[int] = None
    trigger_type: Optional[str] = None
    message: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    executed_at: Optional[datetime] = None


class ProcessAutomationsRequest(BaseModel):
    barbershopId: Optional[int] = None


class AppointmentTriggerRequest(BaseModel):
    appointment_id: int
    trigger_type: str = Field(min_length=1, max_length=50)
