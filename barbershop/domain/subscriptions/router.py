"""Subscription router - FastAPI endpoints for plans, subscriptions and redemption"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_admin, get_current_user
from ...database import get_db
from ...models import Profile
from .schemas import (
    PlanCreate,
    PlanResponse,
    PlanUpdate,
    ServiceUsageValidation,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionSummary,
    UseServiceRequest,
    UseServiceResponse,
    ValidateServiceRequest,
)
from .service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])
plans_router = APIRouter(prefix="/subscription-plans", tags=["Subscriptions"])


def get_subscription_service(db: Session = Depends(get_db)) -> SubscriptionService:
    """Dependency injection for SubscriptionService"""
    return SubscriptionService(db)


# ============================================================================
# PLANS
# ============================================================================


@plans_router.get("", response_model=list[PlanResponse])
async def list_plans(
    provider_id: Optional[int] = None,
    active_only: bool = False,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.list_plans(user.barbershop_id, provider_id, active_only)


@plans_router.post("", response_model=PlanResponse, status_code=201)
async def create_plan(
    body: PlanCreate,
    user: Profile = Depends(get_current_admin),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.create_plan(user.barbershop_id, body)


@plans_router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: int,
    body: PlanUpdate,
    user: Profile = Depends(get_current_admin),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.update_plan(user.barbershop_id, plan_id, body)


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    status: Optional[str] = Query(None, pattern="^(active|cancelled|expired|pending_payment)$"),
    client_id: Optional[int] = None,
    provider_id: Optional[int] = None,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.list_subscriptions(user.barbershop_id, status, client_id, provider_id)


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    body: SubscriptionCreate,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.create_subscription(user.barbershop_id, body)


@router.post("/validate-usage", response_model=ServiceUsageValidation)
async def validate_service_usage(
    body: ValidateServiceRequest,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Check whether a service can be checked out at zero price"""
    return service.validate_service_usage(user.barbershop_id, body.client_id, body.service_id, body.provider_id)


@router.get("/{subscription_id}/summary", response_model=SubscriptionSummary)
async def get_subscription_summary(
    subscription_id: int,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.get_summary(user.barbershop_id, subscription_id)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: int,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.cancel_subscription(user.barbershop_id, subscription_id)


@router.post("/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    subscription_id: int,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.renew_subscription(user.barbershop_id, subscription_id)


@router.post("/{subscription_id}/use", response_model=UseServiceResponse)
async def use_subscription_service(
    subscription_id: int,
    body: UseServiceRequest,
    user: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.use_service(
        user.barbershop_id, subscription_id, body.service_id, body.command_id, body.original_price
    )
