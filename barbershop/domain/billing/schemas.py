"""Billing domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

FINANCIAL_RECORD_STATUSES = {"pending", "paid", "overdue"}
PAYMENT_METHODS = {"cash", "card", "credit_card", "debit_card", "pix", "transfer"}


class CommissionStats(BaseModel):
    totalRevenue: float
    totalCommissions: float
    totalSales: int
    averageTicket: float


class ProviderRanking(BaseModel):
    providerId: int
    providerName: Optional[str] = None
    totalCommissions: float
    totalRevenue: float
    totalSales: int
    position: int


class CommissionRow(BaseModel):
    commandId: int
    itemId: int
    itemName: str
    providerId: Optional[int] = None
    providerName: Optional[str] = None
    clientName: Optional[str] = None
    commissionAmount: float
    date: Optional[str] = None


class CommissionReportResponse(BaseModel):
    stats: CommissionStats
    rankings: list[ProviderRanking]
    commissions: list[CommissionRow]
    generatedAt: Optional[str] = None
    fromCache: bool = False
    stale: bool = False


class FinancialRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    amount: float
    commission_amount: float
    net_amount: float
    due_date: date
    status: str
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    client_name: Optional[str] = None
    plan_name: Optional[str] = None
    provider_name: Optional[str] = None


class BillingStatusUpdate(BaseModel):
    """Schema for marking a billing record paid or pending"""

    status: str
    payment_method: Optional[str] = None
    payment_date: Optional[date] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in FINANCIAL_RECORD_STATUSES:
            raise ValueError(f"status must be one of {sorted(FINANCIAL_RECORD_STATUSES)}")
        return v

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {sorted(PAYMENT_METHODS)}")
        return v


class BillingNotesUpdate(BaseModel):
    notes: str


class SubscriptionStatsResponse(BaseModel):
    totalSubscriptions: int
    activeSubscriptions: int
    monthlyRevenue: float
    servicesUsed: int
    averageTicket: float
