"""
Automated status transitions for client subscriptions and their billing rows
Handles active → expired, pending → overdue, monthly service resets and
recurring billing generation
"""

import logging
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session, joinedload

from ..models_subscription import ClientSubscription, SubscriptionFinancialRecord
from ..domain.subscriptions.repository import SubscriptionRepository

logger = logging.getLogger(__name__)

AUTOMATION_ACTIONS = ("reset_monthly_services", "process_overdue", "generate_financial_records")


def reset_monthly_services(db: Session, today: Optional[date] = None) -> dict:
    """Refill remaining_services for active subscriptions whose monthly cycle has rolled over"""
    today = today or date.today()
    summary = {"reset": 0}

    try:
        subscriptions = (
            db.query(ClientSubscription)
            .options(joinedload(ClientSubscription.plan))
            .filter(ClientSubscription.status == "active")
            .all()
        )
        for subscription in subscriptions:
            anchor = subscription.last_reset_date or subscription.start_date
            if anchor + relativedelta(months=1) > today:
                continue
            subscription.remaining_services = subscription.plan.included_services_count
            subscription.last_reset_date = today
            summary["reset"] += 1
            logger.info(f"🔄 Subscription {subscription.id} services reset to {subscription.remaining_services}")

        if summary["reset"]:
            db.commit()
        return summary
    except Exception as e:
        logger.error(f"❌ Error resetting monthly services: {str(e)}")
        db.rollback()
        raise


def process_overdue(db: Session, today: Optional[date] = None) -> dict:
    """
    Pending billing rows past due → overdue
    Active subscriptions past end_date → expired
    """
    today = today or date.today()
    summary = {"records_overdue": 0, "subscriptions_expired": 0}

    try:
        overdue_records = (
            db.query(SubscriptionFinancialRecord)
            .filter(
                SubscriptionFinancialRecord.status == "pending",
                SubscriptionFinancialRecord.due_date < today,
            )
            .all()
        )
        for record in overdue_records:
            record.status = "overdue"
            summary["records_overdue"] += 1
            logger.info(f"✅ Billing record {record.id} transitioned: pending → overdue")

        expired = (
            db.query(ClientSubscription)
            .filter(ClientSubscription.status == "active", ClientSubscription.end_date < today)
            .all()
        )
        for subscription in expired:
            subscription.status = "expired"
            summary["subscriptions_expired"] += 1
            logger.info(f"✅ Subscription {subscription.id} transitioned: active → expired")

        if summary["records_overdue"] or summary["subscriptions_expired"]:
            db.commit()
        return summary
    except Exception as e:
        logger.error(f"❌ Error processing overdue subscriptions: {str(e)}")
        db.rollback()
        raise


def generate_financial_records(db: Session, today: Optional[date] = None) -> dict:
    """Bill active subscriptions whose next_billing_date has arrived, then advance it one month"""
    today = today or date.today()
    summary = {"generated": 0, "failed": 0}
    repo = SubscriptionRepository()

    subscriptions = (
        db.query(ClientSubscription)
        .options(joinedload(ClientSubscription.plan), joinedload(ClientSubscription.client))
        .filter(
            ClientSubscription.status == "active",
            ClientSubscription.next_billing_date.isnot(None),
            ClientSubscription.next_billing_date <= today,
        )
        .all()
    )

    for subscription in subscriptions:
        try:
            plan = subscription.plan
            client_name = subscription.client.name if subscription.client else ""
            repo.add_financial_record(
                db,
                subscription,
                plan,
                due_date=subscription.next_billing_date,
                description=f"Cobrança mensal - {plan.name} - {client_name}",
            )
            subscription.next_billing_date = subscription.next_billing_date + relativedelta(months=1)
            db.commit()
            summary["generated"] += 1
            logger.info(f"💰 Billing generated for subscription {subscription.id}")
        except Exception as e:
            db.rollback()
            summary["failed"] += 1
            logger.error(f"❌ Failed to bill subscription {subscription.id}: {str(e)}")

    return summary


def run_subscription_automation(db: Session, action: str, today: Optional[date] = None) -> dict:
    if action == "reset_monthly_services":
        return reset_monthly_services(db, today)
    if action == "process_overdue":
        return process_overdue(db, today)
    if action == "generate_financial_records":
        return generate_financial_records(db, today)
    raise ValueError(f"Unknown automation action: {action}")


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if a subscription status transition is allowed

    - 'cancelled' is terminal
    - 'expired' is automatic only, a renewal reactivates it
    """
    valid_transitions = {
        "pending_payment": ["active", "cancelled"],
        "active": ["active", "cancelled", "expired"],  # active → active is a renewal
        "expired": ["active"],
        "cancelled": [],
    }
    return new_status in valid_transitions.get(current_status, [])
