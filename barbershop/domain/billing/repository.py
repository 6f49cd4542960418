"""Billing repository - Database operations for commissions and subscription billing"""

from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import Profile
from ...models_command import Command, CommandItem
from ...models_subscription import (
    ClientSubscription,
    ProviderSubscriptionPlan,
    SubscriptionFinancialRecord,
    SubscriptionUsage,
)

# Upper bound for IN (...) lists when loading command items
ITEM_BATCH_SIZE = 200


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def next_day_start(value: date) -> datetime:
    return datetime.combine(value + timedelta(days=1), time.min)


class BillingRepository:
    """Repository for billing database operations"""

    @staticmethod
    def get_closed_commands(
        db: Session,
        barbershop_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        provider_id: Optional[int] = None,
    ) -> list[Command]:
        """Closed commands in range; the end date is inclusive"""
        query = (
            db.query(Command)
            .options(joinedload(Command.client))
            .filter(Command.barbershop_id == barbershop_id, Command.status == "closed")
        )
        if start_date:
            query = query.filter(Command.created_at >= day_start(start_date))
        if end_date:
            query = query.filter(Command.created_at < next_day_start(end_date))
        if provider_id:
            query = query.filter(Command.barber_id == provider_id)
        return query.order_by(Command.created_at.desc()).all()

    @staticmethod
    def get_items_for_commands(db: Session, command_ids: list[int]) -> list[CommandItem]:
        """Load items in batches of ITEM_BATCH_SIZE ids"""
        items: list[CommandItem] = []
        for offset in range(0, len(command_ids), ITEM_BATCH_SIZE):
            batch = command_ids[offset : offset + ITEM_BATCH_SIZE]
            items.extend(db.query(CommandItem).filter(CommandItem.command_id.in_(batch)).all())
        return items

    @staticmethod
    def get_providers(db: Session, barbershop_id: int) -> list[Profile]:
        return (
            db.query(Profile)
            .filter(Profile.barbershop_id == barbershop_id, Profile.role == "barber")
            .all()
        )

    @staticmethod
    def get_profiles_by_ids(db: Session, profile_ids: list[int]) -> list[Profile]:
        if not profile_ids:
            return []
        return db.query(Profile).filter(Profile.id.in_(profile_ids)).all()

    # ------------------------------------------------------------------
    # Subscription billing
    # ------------------------------------------------------------------

    @staticmethod
    def list_financial_records(
        db: Session,
        barbershop_id: int,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        provider_id: Optional[int] = None,
    ) -> list[SubscriptionFinancialRecord]:
        query = (
            db.query(SubscriptionFinancialRecord)
            .join(ClientSubscription, SubscriptionFinancialRecord.subscription_id == ClientSubscription.id)
            .options(
                joinedload(SubscriptionFinancialRecord.subscription).joinedload(ClientSubscription.client),
                joinedload(SubscriptionFinancialRecord.subscription).joinedload(ClientSubscription.plan),
                joinedload(SubscriptionFinancialRecord.subscription).joinedload(ClientSubscription.provider),
            )
            .filter(ClientSubscription.barbershop_id == barbershop_id)
        )
        if status:
            query = query.filter(SubscriptionFinancialRecord.status == status)
        if start_date:
            query = query.filter(SubscriptionFinancialRecord.due_date >= start_date)
        if end_date:
            query = query.filter(SubscriptionFinancialRecord.due_date <= end_date)
        if provider_id:
            query = query.filter(ClientSubscription.provider_id == provider_id)
        return query.order_by(SubscriptionFinancialRecord.due_date.desc()).all()

    @staticmethod
    def get_financial_record(
        db: Session, record_id: int, barbershop_id: int
    ) -> Optional[SubscriptionFinancialRecord]:
        return (
            db.query(SubscriptionFinancialRecord)
            .join(ClientSubscription, SubscriptionFinancialRecord.subscription_id == ClientSubscription.id)
            .filter(
                SubscriptionFinancialRecord.id == record_id,
                ClientSubscription.barbershop_id == barbershop_id,
            )
            .first()
        )

    @staticmethod
    def count_subscriptions(db: Session, barbershop_id: int, status: Optional[str] = None) -> int:
        query = db.query(ClientSubscription).filter(ClientSubscription.barbershop_id == barbershop_id)
        if status:
            query = query.filter(ClientSubscription.status == status)
        return query.count()

    @staticmethod
    def sum_active_plan_prices(db: Session, barbershop_id: int) -> float:
        total = (
            db.query(func.coalesce(func.sum(ProviderSubscriptionPlan.monthly_price), 0.0))
            .join(ClientSubscription, ClientSubscription.plan_id == ProviderSubscriptionPlan.id)
            .filter(
                ClientSubscription.barbershop_id == barbershop_id,
                ClientSubscription.status == "active",
            )
            .scalar()
        )
        return float(total or 0.0)

    @staticmethod
    def count_usages(
        db: Session,
        barbershop_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> int:
        query = (
            db.query(SubscriptionUsage)
            .join(ClientSubscription, SubscriptionUsage.subscription_id == ClientSubscription.id)
            .filter(ClientSubscription.barbershop_id == barbershop_id)
        )
        if start_date:
            query = query.filter(SubscriptionUsage.used_at >= day_start(start_date))
        if end_date:
            query = query.filter(SubscriptionUsage.used_at < next_day_start(end_date))
        return query.count()
