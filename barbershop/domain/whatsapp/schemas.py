"""WhatsApp domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DIAGNOSTIC_TEST_TYPES = {
    "all",
    "api_connectivity",
    "database_instance",
    "evolution_instance",
    "webhook_test",
    "webhook_logs",
}


class SendMessageRequest(BaseModel):
    phone: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=4096)
    barbershopId: Optional[int] = None
    conversation_id: Optional[int] = None


class ReconcileRequest(BaseModel):
    barbershopId: Optional[int] = None


class DiagnosticsRequest(BaseModel):
    barbershopId: Optional[int] = None
    testType: str = "all"

    @field_validator("testType")
    @classmethod
    def validate_test_type(cls, v: str) -> str:
        if v not in DIAGNOSTIC_TEST_TYPES:
            raise ValueError(f"testType must be one of: {', '.join(sorted(DIAGNOSTIC_TEST_TYPES))}")
        return v


class WaitForConnectionRequest(BaseModel):
    timeout_seconds: Optional[int] = Field(default=None, ge=5, le=600)


class InstanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    barbershop_id: int
    evolution_instance_name: str
    status: str
    phone_number: Optional[str] = None
    qr_code: Optional[str] = None
    webhook_url: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone_number: str
    contact_name: Optional[str] = None
    content: str
    direction: str
    status: str
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
