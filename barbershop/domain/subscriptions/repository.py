"""Subscription repository - Database operations for plans, subscriptions and usage"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Client, Profile, Service
from ...models_subscription import (
    ClientSubscription,
    ProviderSubscriptionPlan,
    SubscriptionFinancialRecord,
    SubscriptionUsage,
)


def calculate_financials(monthly_price: float, commission_percentage: float) -> tuple[float, float, float]:
    """(amount, commission_amount, net_amount) for one billing period"""
    amount = round(monthly_price or 0.0, 2)
    commission = round(amount * (commission_percentage or 0.0) / 100, 2)
    return amount, commission, round(amount - commission, 2)


class SubscriptionRepository:
    """Repository for subscription database operations"""

    # Plans

    @staticmethod
    def get_plan(db: Session, plan_id: int, barbershop_id: int) -> Optional[ProviderSubscriptionPlan]:
        return (
            db.query(ProviderSubscriptionPlan)
            .filter(
                ProviderSubscriptionPlan.id == plan_id,
                ProviderSubscriptionPlan.barbershop_id == barbershop_id,
            )
            .first()
        )

    @staticmethod
    def list_plans(
        db: Session, barbershop_id: int, provider_id: Optional[int] = None, active_only: bool = False
    ) -> list[ProviderSubscriptionPlan]:
        query = db.query(ProviderSubscriptionPlan).filter(
            ProviderSubscriptionPlan.barbershop_id == barbershop_id
        )
        if provider_id:
            query = query.filter(ProviderSubscriptionPlan.provider_id == provider_id)
        if active_only:
            query = query.filter(ProviderSubscriptionPlan.is_active.is_(True))
        return query.order_by(ProviderSubscriptionPlan.monthly_price.asc()).all()

    @staticmethod
    def get_provider(db: Session, provider_id: int, barbershop_id: int) -> Optional[Profile]:
        return (
            db.query(Profile)
            .filter(Profile.id == provider_id, Profile.barbershop_id == barbershop_id)
            .first()
        )

    # Clients / services

    @staticmethod
    def get_client(db: Session, client_id: int, barbershop_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.barbershop_id == barbershop_id).first()

    @staticmethod
    def get_service(db: Session, service_id: int, barbershop_id: int) -> Optional[Service]:
        return (
            db.query(Service)
            .filter(Service.id == service_id, Service.barbershop_id == barbershop_id)
            .first()
        )

    # Subscriptions

    @staticmethod
    def get_subscription(db: Session, subscription_id: int, barbershop_id: int) -> Optional[ClientSubscription]:
        return (
            db.query(ClientSubscription)
            .filter(
                ClientSubscription.id == subscription_id,
                ClientSubscription.barbershop_id == barbershop_id,
            )
            .first()
        )

    @staticmethod
    def get_active_subscription(db: Session, client_id: int, provider_id: int) -> Optional[ClientSubscription]:
        return (
            db.query(ClientSubscription)
            .filter(
                ClientSubscription.client_id == client_id,
                ClientSubscription.provider_id == provider_id,
                ClientSubscription.status == "active",
            )
            .first()
        )

    @staticmethod
    def get_active_subscriptions_for_client(
        db: Session, client_id: int, barbershop_id: int, provider_id: Optional[int] = None
    ) -> list[ClientSubscription]:
        query = db.query(ClientSubscription).filter(
            ClientSubscription.client_id == client_id,
            ClientSubscription.barbershop_id == barbershop_id,
            ClientSubscription.status == "active",
        )
        if provider_id:
            query = query.filter(ClientSubscription.provider_id == provider_id)
        return query.order_by(ClientSubscription.end_date.asc()).all()

    @staticmethod
    def list_subscriptions(
        db: Session,
        barbershop_id: int,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> list[ClientSubscription]:
        query = db.query(ClientSubscription).filter(ClientSubscription.barbershop_id == barbershop_id)
        if status:
            query = query.filter(ClientSubscription.status == status)
        if client_id:
            query = query.filter(ClientSubscription.client_id == client_id)
        if provider_id:
            query = query.filter(ClientSubscription.provider_id == provider_id)
        return query.order_by(ClientSubscription.created_at.desc()).all()

    @staticmethod
    def add_financial_record(
        db: Session,
        subscription: ClientSubscription,
        plan: ProviderSubscriptionPlan,
        due_date: date,
        description: str,
    ) -> SubscriptionFinancialRecord:
        """Stage a pending billing row for one period (caller commits)"""
        amount, commission, net = calculate_financials(plan.monthly_price, plan.commission_percentage)
        record = SubscriptionFinancialRecord(
            subscription_id=subscription.id,
            amount=amount,
            commission_amount=commission,
            net_amount=net,
            due_date=due_date,
            status="pending",
            description=description,
        )
        db.add(record)
        return record

    @staticmethod
    def count_financial_records(db: Session, subscription_id: int) -> int:
        return (
            db.query(SubscriptionFinancialRecord)
            .filter(SubscriptionFinancialRecord.subscription_id == subscription_id)
            .count()
        )

    # Usage ledger

    @staticmethod
    def decrement_remaining(db: Session, subscription_id: int) -> int:
        """Conditional decrement; returns 0 when nothing is left or the subscription is not active"""
        return (
            db.query(ClientSubscription)
            .filter(
                ClientSubscription.id == subscription_id,
                ClientSubscription.status == "active",
                ClientSubscription.remaining_services > 0,
            )
            .update(
                {ClientSubscription.remaining_services: ClientSubscription.remaining_services - 1},
                synchronize_session=False,
            )
        )

    @staticmethod
    def find_usage(
        db: Session,
        subscription_id: int,
        command_id: int,
        service_id: int,
        command_item_id: Optional[int] = None,
    ) -> Optional[SubscriptionUsage]:
        """Redemption already recorded for this command line (or command/service without a line)"""
        query = db.query(SubscriptionUsage).filter(SubscriptionUsage.subscription_id == subscription_id)
        if command_item_id is not None:
            query = query.filter(SubscriptionUsage.command_item_id == command_item_id)
        else:
            query = query.filter(
                SubscriptionUsage.command_id == command_id,
                SubscriptionUsage.service_id == service_id,
                SubscriptionUsage.command_item_id.is_(None),
            )
        return query.first()

    @staticmethod
    def get_usage_history(db: Session, subscription_id: int, limit: int = 50) -> list[SubscriptionUsage]:
        return (
            db.query(SubscriptionUsage)
            .filter(SubscriptionUsage.subscription_id == subscription_id)
            .order_by(SubscriptionUsage.used_at.desc(), SubscriptionUsage.id.desc())
            .limit(limit)
            .all()
        )
