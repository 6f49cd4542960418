"""Billing service - subscription financial records and subscription revenue stats"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models_subscription import SubscriptionFinancialRecord
from .repository import BillingRepository
from .schemas import BillingStatusUpdate

logger = logging.getLogger(__name__)


def serialize_financial_record(record: SubscriptionFinancialRecord) -> dict:
    subscription = record.subscription
    return {
        "id": record.id,
        "subscription_id": record.subscription_id,
        "amount": record.amount,
        "commission_amount": record.commission_amount,
        "net_amount": record.net_amount,
        "due_date": record.due_date,
        "status": record.status,
        "payment_date": record.payment_date,
        "payment_method": record.payment_method,
        "description": record.description,
        "notes": record.notes,
        "client_name": subscription.client.name if subscription and subscription.client else None,
        "plan_name": subscription.plan.name if subscription and subscription.plan else None,
        "provider_name": subscription.provider.full_name if subscription and subscription.provider else None,
    }


class BillingService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = BillingRepository()

    def list_billings(
        self,
        barbershop_id: int,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        provider_id: Optional[int] = None,
    ) -> list[dict]:
        records = self.repo.list_financial_records(
            self.db, barbershop_id, status, start_date, end_date, provider_id
        )
        return [serialize_financial_record(r) for r in records]

    def _get_record(self, barbershop_id: int, record_id: int) -> SubscriptionFinancialRecord:
        record = self.repo.get_financial_record(self.db, record_id, barbershop_id)
        if not record:
            raise HTTPException(status_code=404, detail="Billing record not found")
        return record

    def update_billing_status(self, barbershop_id: int, record_id: int, data: BillingStatusUpdate) -> dict:
        """paid stamps payment date/method; pending clears them"""
        record = self._get_record(barbershop_id, record_id)

        if data.status == "paid":
            record.payment_date = data.payment_date or date.today()
            record.payment_method = data.payment_method
        elif data.status == "pending":
            record.payment_date = None
            record.payment_method = None
        record.status = data.status

        self.db.commit()
        self.db.refresh(record)
        logger.info(f"✅ Billing record {record.id} marked {record.status}")
        return serialize_financial_record(record)

    def add_notes(self, barbershop_id: int, record_id: int, notes: str) -> dict:
        record = self._get_record(barbershop_id, record_id)
        record.notes = notes
        self.db.commit()
        self.db.refresh(record)
        return serialize_financial_record(record)

    def get_subscription_stats(
        self,
        barbershop_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> dict:
        total = self.repo.count_subscriptions(self.db, barbershop_id)
        active = self.repo.count_subscriptions(self.db, barbershop_id, status="active")
        monthly_revenue = self.repo.sum_active_plan_prices(self.db, barbershop_id)
        services_used = self.repo.count_usages(self.db, barbershop_id, start_date, end_date)

        return {
            "totalSubscriptions": total,
            "activeSubscriptions": active,
            "monthlyRevenue": round(monthly_revenue, 2),
            "servicesUsed": services_used,
            "averageTicket": round(monthly_revenue / active, 2) if active else 0.0,
        }
