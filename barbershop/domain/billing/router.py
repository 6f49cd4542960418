"""Billing router - FastAPI endpoints for commissions and subscription billing"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_admin, get_current_user
from ...cache import Cache, get_cache
from ...database import get_db
from ...models import Profile
from ...rate_limiter import RateLimiter, get_rate_limiter
from .billing_service import BillingService
from .commission_service import CommissionService
from .schemas import (
    BillingNotesUpdate,
    BillingStatusUpdate,
    CommissionReportResponse,
    FinancialRecordResponse,
    SubscriptionStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_commission_service(
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> CommissionService:
    """Dependency injection for CommissionService"""
    return CommissionService(db, cache, limiter)


def get_billing_service(db: Session = Depends(get_db)) -> BillingService:
    """Dependency injection for BillingService"""
    return BillingService(db)


# ============================================================================
# COMMISSIONS
# ============================================================================


@router.get("/commissions", response_model=CommissionReportResponse)
async def get_commission_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    provider_id: Optional[int] = None,
    refresh: bool = False,
    user: Profile = Depends(get_current_user),
    service: CommissionService = Depends(get_commission_service),
):
    """Totals and provider ranking over closed commands.

    Barbers only ever see their own numbers.
    """
    if user.role == "barber":
        provider_id = user.id
    return service.get_report(user.barbershop_id, start_date, end_date, provider_id, force_refresh=refresh)


# ============================================================================
# SUBSCRIPTION BILLING
# ============================================================================


@router.get("/subscription-records", response_model=list[FinancialRecordResponse])
async def list_subscription_billings(
    status: Optional[str] = Query(None, pattern="^(pending|paid|overdue)$"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    provider_id: Optional[int] = None,
    user: Profile = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.list_billings(user.barbershop_id, status, start_date, end_date, provider_id)


@router.patch("/subscription-records/{record_id}/status", response_model=FinancialRecordResponse)
async def update_billing_status(
    record_id: int,
    body: BillingStatusUpdate,
    user: Profile = Depends(get_current_admin),
    service: BillingService = Depends(get_billing_service),
):
    return service.update_billing_status(user.barbershop_id, record_id, body)


@router.patch("/subscription-records/{record_id}/notes", response_model=FinancialRecordResponse)
async def add_billing_notes(
    record_id: int,
    body: BillingNotesUpdate,
    user: Profile = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.add_notes(user.barbershop_id, record_id, body.notes)


@router.get("/subscription-stats", response_model=SubscriptionStatsResponse)
async def get_subscription_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: Profile = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.get_subscription_stats(user.barbershop_id, start_date, end_date)
