"""Subscription service - Business logic for client subscriptions to provider plans"""

import logging
from datetime import date, datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models_subscription import ClientSubscription, ProviderSubscriptionPlan, SubscriptionUsage
from ...services.status_automation import validate_status_transition
from .repository import SubscriptionRepository
from .schemas import PlanCreate, PlanUpdate, SubscriptionCreate, SubscriptionResponse

logger = logging.getLogger(__name__)

DUPLICATE_ACTIVE_MESSAGE = "Client already has an active subscription with this provider"


class SubscriptionService:
    """Service for plans, subscriptions and service redemption"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SubscriptionRepository()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def list_plans(
        self, barbershop_id: int, provider_id: Optional[int] = None, active_only: bool = False
    ) -> list[ProviderSubscriptionPlan]:
        return self.repo.list_plans(self.db, barbershop_id, provider_id, active_only)

    def get_plan(self, barbershop_id: int, plan_id: int) -> ProviderSubscriptionPlan:
        plan = self.repo.get_plan(self.db, plan_id, barbershop_id)
        if not plan:
            raise HTTPException(status_code=404, detail="Subscription plan not found")
        return plan

    def create_plan(self, barbershop_id: int, data: PlanCreate) -> ProviderSubscriptionPlan:
        if not self.repo.get_provider(self.db, data.provider_id, barbershop_id):
            raise HTTPException(status_code=404, detail="Provider not found")

        plan = ProviderSubscriptionPlan(barbershop_id=barbershop_id, **data.model_dump())
        self.db.add(plan)
        self.db.commit()
        self.db.refresh(plan)
        logger.info(f"✅ Created subscription plan {plan.id} ({plan.name}) for provider {plan.provider_id}")
        return plan

    def update_plan(self, barbershop_id: int, plan_id: int, data: PlanUpdate) -> ProviderSubscriptionPlan:
        plan = self.get_plan(barbershop_id, plan_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(plan, field, value)
        self.db.commit()
        self.db.refresh(plan)
        logger.info(f"✅ Updated subscription plan {plan.id}")
        return plan

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def list_subscriptions(
        self,
        barbershop_id: int,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> list[ClientSubscription]:
        return self.repo.list_subscriptions(self.db, barbershop_id, status, client_id, provider_id)

    def get_subscription(self, barbershop_id: int, subscription_id: int) -> ClientSubscription:
        subscription = self.repo.get_subscription(self.db, subscription_id, barbershop_id)
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return subscription

    def create_subscription(
        self, barbershop_id: int, data: SubscriptionCreate, today: Optional[date] = None
    ) -> ClientSubscription:
        """Subscribe a client to a plan and stage the first billing period"""
        plan = self.get_plan(barbershop_id, data.plan_id)
        if not plan.is_active:
            raise HTTPException(status_code=400, detail="Subscription plan is not active")

        client = self.repo.get_client(self.db, data.client_id, barbershop_id)
        if not client:
            raise HTTPException(status_code=404, detail="Client not found")

        if self.repo.get_active_subscription(self.db, client.id, plan.provider_id):
            logger.warning(f"⚠️ Client {client.id} already subscribed to provider {plan.provider_id}")
            raise HTTPException(status_code=409, detail=DUPLICATE_ACTIVE_MESSAGE)

        start_date = data.start_date or today or date.today()
        end_date = start_date + relativedelta(months=1)

        subscription = ClientSubscription(
            barbershop_id=barbershop_id,
            client_id=client.id,
            provider_id=plan.provider_id,
            plan_id=plan.id,
            status="active",
            remaining_services=plan.included_services_count,
            start_date=start_date,
            end_date=end_date,
            next_billing_date=end_date,
            last_reset_date=start_date,
            notes=data.notes,
        )
        self.db.add(subscription)
        try:
            self.db.flush()
            self.repo.add_financial_record(
                self.db,
                subscription,
                plan,
                due_date=end_date,
                description=f"Assinatura {plan.name} - {client.name}",
            )
            self.db.commit()
        except IntegrityError as e:
            # Concurrent creation lost the race against the partial unique index
            self.db.rollback()
            raise HTTPException(status_code=409, detail=DUPLICATE_ACTIVE_MESSAGE) from e

        self.db.refresh(subscription)
        logger.info(f"✅ Created subscription {subscription.id} for client {client.id} (plan {plan.id})")
        return subscription

    def cancel_subscription(self, barbershop_id: int, subscription_id: int) -> ClientSubscription:
        subscription = self.get_subscription(barbershop_id, subscription_id)
        if not validate_status_transition(subscription.status, "cancelled"):
            raise HTTPException(
                status_code=400, detail=f"Cannot cancel a subscription with status '{subscription.status}'"
            )

        subscription.status = "cancelled"
        subscription.cancelled_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"✅ Cancelled subscription {subscription.id}")
        return subscription

    def renew_subscription(self, barbershop_id: int, subscription_id: int) -> ClientSubscription:
        """Extend end_date by one calendar month and bill the new period"""
        subscription = self.get_subscription(barbershop_id, subscription_id)
        if not validate_status_transition(subscription.status, "active"):
            raise HTTPException(
                status_code=400, detail=f"Cannot renew a subscription with status '{subscription.status}'"
            )

        plan = subscription.plan
        new_end_date = subscription.end_date + relativedelta(months=1)

        subscription.end_date = new_end_date
        subscription.next_billing_date = new_end_date
        subscription.status = "active"
        subscription.remaining_services = plan.included_services_count
        subscription.last_reset_date = date.today()
        self.repo.add_financial_record(
            self.db,
            subscription,
            plan,
            due_date=new_end_date,
            description=f"Renovação {plan.name} - {subscription.client.name if subscription.client else ''}",
        )
        try:
            self.db.commit()
        except IntegrityError as e:
            # Reactivating an expired subscription while another one is active for the provider
            self.db.rollback()
            raise HTTPException(status_code=409, detail=DUPLICATE_ACTIVE_MESSAGE) from e

        self.db.refresh(subscription)
        logger.info(f"✅ Renewed subscription {subscription.id} until {new_end_date}")
        return subscription

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def use_service(
        self,
        barbershop_id: int,
        subscription_id: int,
        service_id: int,
        command_id: Optional[int] = None,
        original_price: Optional[float] = None,
        command_item_id: Optional[int] = None,
        commit: bool = True,
    ) -> dict:
        """
        Redeem one covered service: decrement and ledger row commit together.

        With commit=False the work is only flushed and the caller owns the
        transaction, committing or rolling back every redemption at once.
        """
        subscription = self.get_subscription(barbershop_id, subscription_id)

        already_recorded = (command_id is not None or command_item_id is not None) and self.repo.find_usage(
            self.db, subscription.id, command_id, service_id, command_item_id
        )
        if already_recorded:
            logger.info(f"ℹ️ Usage already recorded for subscription {subscription.id}, command {command_id}")
            return {
                "success": True,
                "subscriptionId": subscription.id,
                "remainingServices": subscription.remaining_services,
                "alreadyRecorded": True,
            }

        if subscription.status != "active":
            raise HTTPException(status_code=400, detail="Subscription is not active")
        if subscription.remaining_services <= 0:
            raise HTTPException(status_code=400, detail="No remaining services in this subscription")
        if service_id not in (subscription.plan.enabled_service_ids or []):
            raise HTTPException(status_code=400, detail="Service not included in subscription plan")

        if original_price is None:
            service = self.repo.get_service(self.db, service_id, barbershop_id)
            original_price = service.price if service else 0.0

        try:
            if self.repo.decrement_remaining(self.db, subscription.id) == 0:
                if commit:
                    self.db.rollback()
                raise HTTPException(status_code=400, detail="No remaining services in this subscription")

            self.db.add(
                SubscriptionUsage(
                    subscription_id=subscription.id,
                    service_id=service_id,
                    command_id=command_id,
                    command_item_id=command_item_id,
                    original_price=original_price,
                )
            )
            if commit:
                self.db.commit()
            else:
                self.db.flush()
        except IntegrityError:
            if not commit:
                raise
            # Same redemption recorded concurrently; the decrement was rolled back with it
            self.db.rollback()
            self.db.refresh(subscription)
            return {
                "success": True,
                "subscriptionId": subscription.id,
                "remainingServices": subscription.remaining_services,
                "alreadyRecorded": True,
            }

        self.db.refresh(subscription)
        logger.info(
            f"✅ Service {service_id} redeemed on subscription {subscription.id} "
            f"({subscription.remaining_services} remaining)"
        )
        return {
            "success": True,
            "subscriptionId": subscription.id,
            "remainingServices": subscription.remaining_services,
            "alreadyRecorded": False,
        }

    def validate_service_usage(
        self,
        barbershop_id: int,
        client_id: int,
        service_id: int,
        provider_id: Optional[int] = None,
    ) -> dict:
        """Whether the client can check out `service_id` at zero price"""
        service = self.repo.get_service(self.db, service_id, barbershop_id)
        original_price = service.price if service else None

        subscriptions = self.repo.get_active_subscriptions_for_client(
            self.db, client_id, barbershop_id, provider_id
        )
        if not subscriptions:
            return {
                "isValid": False,
                "canUseService": False,
                "remainingServices": 0,
                "discountedPrice": original_price,
                "originalPrice": original_price,
                "subscriptionId": None,
                "reason": "Client has no active subscription",
            }

        covering = [s for s in subscriptions if service_id in (s.plan.enabled_service_ids or [])]
        if not covering:
            return {
                "isValid": True,
                "canUseService": False,
                "remainingServices": subscriptions[0].remaining_services,
                "discountedPrice": original_price,
                "originalPrice": original_price,
                "subscriptionId": subscriptions[0].id,
                "reason": "Service not included in subscription plan",
            }

        usable = next((s for s in covering if s.remaining_services > 0), None)
        if usable is None:
            return {
                "isValid": True,
                "canUseService": False,
                "remainingServices": 0,
                "discountedPrice": original_price,
                "originalPrice": original_price,
                "subscriptionId": covering[0].id,
                "reason": "No remaining services in this subscription",
            }

        return {
            "isValid": True,
            "canUseService": True,
            "remainingServices": usable.remaining_services,
            "discountedPrice": 0.0,
            "originalPrice": original_price,
            "subscriptionId": usable.id,
            "reason": None,
        }

    def get_summary(self, barbershop_id: int, subscription_id: int, today: Optional[date] = None) -> dict:
        subscription = self.get_subscription(barbershop_id, subscription_id)
        plan = subscription.plan
        today = today or date.today()
        history = self.repo.get_usage_history(self.db, subscription.id)

        return {
            "subscription": SubscriptionResponse.model_validate(subscription),
            "planName": plan.name,
            "monthlyPrice": plan.monthly_price,
            "includedServices": plan.included_services_count,
            "remainingServices": subscription.remaining_services,
            "usedServices": max(0, plan.included_services_count - subscription.remaining_services),
            "daysRemaining": max(0, (subscription.end_date - today).days),
            "usageHistory": [
                {
                    "id": usage.id,
                    "service_id": usage.service_id,
                    "command_id": usage.command_id,
                    "original_price": usage.original_price,
                    "used_at": usage.used_at.isoformat() if usage.used_at else None,
                }
                for usage in history
            ],
        }
