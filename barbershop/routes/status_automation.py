"""
API endpoint for subscription status automation and analytics
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import get_current_super_admin, get_current_user
from ..database import get_db
from ..models import Profile
from ..models_subscription import ClientSubscription
from ..services.status_automation import AUTOMATION_ACTIONS, run_subscription_automation

router = APIRouter(prefix="/status", tags=["status"])


class StatusSummary(BaseModel):
    pending_payment: int
    active: int
    expired: int
    cancelled: int


class AutomationRequest(BaseModel):
    action: str
    today: Optional[date] = None

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        if v not in AUTOMATION_ACTIONS:
            raise ValueError(f"action must be one of: {', '.join(AUTOMATION_ACTIONS)}")
        return v


@router.get("/subscriptions", response_model=StatusSummary)
async def get_subscription_status_analytics(
    current_user: Profile = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Get count of client subscriptions by status for the current barbershop"""

    status_counts = (
        db.query(ClientSubscription.status, func.count(ClientSubscription.id).label("count"))
        .filter(ClientSubscription.barbershop_id == current_user.barbershop_id)
        .group_by(ClientSubscription.status)
        .all()
    )

    summary = {"pending_payment": 0, "active": 0, "expired": 0, "cancelled": 0}
    for status, count in status_counts:
        if status in summary:
            summary[status] = count

    return StatusSummary(**summary)


@router.post("/automation/run")
async def run_status_automation(
    body: AutomationRequest,
    current_user: Profile = Depends(get_current_super_admin),
    db: Session = Depends(get_db),
):
    """
    Manually trigger one subscription automation step
    (the arq worker runs these daily)
    """
    try:
        result = run_subscription_automation(db, body.action, body.today)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"action": body.action, **result}
