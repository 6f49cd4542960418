"""Automation router - rule management and execution history"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_admin, get_current_user
from ...database import get_db
from ...models import Profile
from ...services.evolution_service import EvolutionAPIService, get_evolution_service
from .schemas import ExecutionResponse, RuleCreate, RuleResponse, RuleUpdate
from .service import AutomationDispatcher

router = APIRouter(prefix="/automations", tags=["Automations"])


def get_automation_dispatcher(
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
) -> AutomationDispatcher:
    """Dependency injection for AutomationDispatcher"""
    return AutomationDispatcher(db, evolution)


@router.get("/rules", response_model=list[RuleResponse])
async def list_rules(
    user: Profile = Depends(get_current_user),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    return dispatcher.list_rules(user.barbershop_id)


@router.post("/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    body: RuleCreate,
    user: Profile = Depends(get_current_admin),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    return dispatcher.create_rule(user.barbershop_id, body)


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    user: Profile = Depends(get_current_user),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    return dispatcher.get_rule(user.barbershop_id, rule_id)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    body: RuleUpdate,
    user: Profile = Depends(get_current_admin),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    return dispatcher.update_rule(user.barbershop_id, rule_id, body)


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    user: Profile = Depends(get_current_admin),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    dispatcher.delete_rule(user.barbershop_id, rule_id)


@router.get("/executions", response_model=list[ExecutionResponse])
async def list_executions(
    rule_id: Optional[int] = None,
    limit: int = 100,
    user: Profile = Depends(get_current_user),
    dispatcher: AutomationDispatcher = Depends(get_automation_dispatcher),
):
    return dispatcher.list_executions(user.barbershop_id, rule_id, min(limit, 500))
