"""
Automation Dispatcher
Rule-based WhatsApp messaging: candidate selection, template rendering and
an execution log row per attempt (pending -> sent | failed)
"""

import logging
from datetime import date, timedelta
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Appointment
from ...models_automation import AutomationExecution, AutomationRule
from ...services.evolution_service import EvolutionAPIService
from ..whatsapp.service import WhatsAppService
from .repository import AutomationRepository
from .schemas import RuleCreate, RuleUpdate
from .templates import DEFAULT_PROMOTION_DETAILS, render_template

logger = logging.getLogger(__name__)

DEFAULT_FOLLOW_UP_DAYS = 3
DEFAULT_CHURN_DAYS = 30
REMINDER_TRIGGER = "appointment_reminder"


def appointment_candidate(appointment: Appointment) -> dict[str, Any]:
    client = appointment.client
    return {
        "client_id": appointment.client_id,
        "client_name": client.name if client else None,
        "phone": client.phone if client else None,
        "appointment_id": appointment.id,
        "appointment_date": appointment.appointment_date,
        "appointment_time": appointment.start_time,
        "service_name": appointment.service.name if appointment.service else None,
    }


def condition_days(rule: AutomationRule, default: int) -> int:
    conditions = rule.trigger_conditions or {}
    try:
        days = int(conditions.get("days_after_last_visit", default))
    except (TypeError, ValueError):
        return default
    return days if days > 0 else default


class AutomationDispatcher:
    def __init__(self, db: Session, evolution: EvolutionAPIService):
        self.db = db
        self.repo = AutomationRepository()
        self.whatsapp = WhatsAppService(db, evolution)

    # ========================================
    # CANDIDATES
    # ========================================

    def find_candidates(self, rule: AutomationRule, today: date) -> list[dict[str, Any]]:
        barbershop_id = rule.barbershop_id

        if rule.type == "reminder":
            tomorrow = today + timedelta(days=1)
            return [appointment_candidate(a) for a in self.repo.appointments_on(self.db, barbershop_id, tomorrow)]

        if rule.type == "follow_up":
            visit_day = today - timedelta(days=condition_days(rule, DEFAULT_FOLLOW_UP_DAYS))
            return [
                {**appointment_candidate(a), "last_visit": a.appointment_date}
                for a in self.repo.completed_appointments_on(self.db, barbershop_id, visit_day)
            ]

        if rule.type == "churn_alert":
            cutoff = today - timedelta(days=condition_days(rule, DEFAULT_CHURN_DAYS))
            return [
                {
                    "client_id": client.id,
                    "client_name": client.name,
                    "phone": client.phone,
                    "last_visit": last_visit,
                    "days_since_visit": (today - last_visit).days,
                }
                for client, last_visit in self.repo.clients_last_visit_before(self.db, barbershop_id, cutoff)
            ]

        if rule.type == "promotion":
            details = rule.promotion_details or DEFAULT_PROMOTION_DETAILS
            return [
                {
                    "client_id": client.id,
                    "client_name": client.name,
                    "phone": client.phone,
                    "promotion_details": details,
                }
                for client in self.repo.clients_with_appointments(self.db, barbershop_id)
            ]

        logger.warning(f"⚠️ Unknown automation type '{rule.type}' on rule {rule.id}")
        return []

    # ========================================
    # DISPATCH
    # ========================================

    async def execute(
        self,
        rule: AutomationRule,
        candidate: dict[str, Any],
        barbershop_name: Optional[str],
        today: date,
        trigger_type: Optional[str] = None,
    ) -> AutomationExecution:
        """Run one rule for one candidate; failures are recorded on the execution row"""
        message = render_template(rule.message_template, candidate, barbershop_name, today)
        execution = AutomationExecution(
            barbershop_id=rule.barbershop_id,
            rule_id=rule.id,
            client_id=candidate.get("client_id"),
            appointment_id=candidate.get("appointment_id"),
            trigger_type=trigger_type or rule.trigger_type,
            message=message,
            status="pending",
        )
        self.db.add(execution)
        self.db.commit()

        try:
            if rule.send_whatsapp:
                if not candidate.get("phone"):
                    raise ValueError("Client has no phone number")
                await self.whatsapp.send_message(rule.barbershop_id, candidate["phone"], message)
            if rule.notify_staff:
                staff = self.repo.count_staff(self.db, rule.barbershop_id)
                logger.info(
                    f"🔔 Staff notification: rule '{rule.name}', client {candidate.get('client_name')}, "
                    f"{staff} staff members"
                )
            execution.status = "sent"
        except (HTTPException, ValueError) as e:
            execution.status = "failed"
            execution.error_message = e.detail if isinstance(e, HTTPException) else str(e)
            logger.error(
                f"❌ Automation rule {rule.id} failed for client {candidate.get('client_id')}: "
                f"{execution.error_message}"
            )
        except Exception as e:
            self.db.rollback()
            execution.status = "failed"
            execution.error_message = f"Unexpected error: {e}"
            logger.exception(f"❌ Automation rule {rule.id} crashed for client {candidate.get('client_id')}")

        self.db.commit()
        return execution

    async def _execute_isolated(self, rule: AutomationRule, *args, **kwargs) -> Optional[AutomationExecution]:
        """execute(), but an error before the execution row exists only costs this candidate"""
        try:
            return await self.execute(rule, *args, **kwargs)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Automation error on rule {rule.id}: {e}")
            return None

    async def process(self, barbershop_id: int, today: Optional[date] = None) -> dict[str, Any]:
        """Run every active rule of a barbershop against its date-window candidates"""
        today = today or date.today()
        # Rules with a trigger_type only fire on their event
        rules = [r for r in self.repo.list_rules(self.db, barbershop_id, active_only=True) if not r.trigger_type]
        if not rules:
            return {"executed": 0, "failed": 0, "message": "No active rules found"}

        barbershop = self.repo.get_barbershop(self.db, barbershop_id)
        barbershop_name = barbershop.name if barbershop else None

        executed = 0
        failed = 0
        for rule in rules:
            candidates = self.find_candidates(rule, today)
            logger.info(f"📋 Rule '{rule.name}' ({rule.type}): {len(candidates)} candidates")
            for candidate in candidates:
                execution = await self._execute_isolated(rule, candidate, barbershop_name, today)
                if execution is not None and execution.status == "sent":
                    executed += 1
                else:
                    failed += 1

        logger.info(f"✅ Automations for barbershop {barbershop_id}: {executed} sent, {failed} failed")
        return {"executed": executed, "failed": failed}

    async def process_all(self, today: Optional[date] = None) -> dict[str, Any]:
        totals = {"barbershops": 0, "executed": 0, "failed": 0}
        for barbershop_id in self.repo.list_barbershops_with_active_rules(self.db):
            result = await self.process(barbershop_id, today)
            totals["barbershops"] += 1
            totals["executed"] += result["executed"]
            totals["failed"] += result["failed"]
        return totals

    async def dispatch_for_appointment(self, appointment_id: int, trigger_type: str) -> dict[str, Any]:
        """Event-triggered dispatch: active rules whose trigger_type matches, for one appointment"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")

        barbershop = self.repo.get_barbershop(self.db, appointment.barbershop_id)
        candidate = appointment_candidate(appointment)
        today = date.today()

        results = []
        for rule in self.repo.list_rules_for_trigger(self.db, appointment.barbershop_id, trigger_type):
            execution = await self._execute_isolated(
                rule, candidate, barbershop.name if barbershop else None, today, trigger_type
            )
            results.append(
                {
                    "ruleId": rule.id,
                    "phone": candidate["phone"],
                    "status": execution.status if execution else "failed",
                    "error": execution.error_message if execution else "Unexpected error",
                }
            )
        return {"appointmentId": appointment_id, "triggerType": trigger_type, "results": results}

    async def send_appointment_reminders(self, today: Optional[date] = None) -> dict[str, int]:
        """Daily sweep: reminder rules for tomorrow's appointments, at most once per appointment"""
        today = today or date.today()
        tomorrow = today + timedelta(days=1)
        sent = 0
        skipped = 0
        failed = 0

        for rule in self.repo.list_active_rules_by_trigger(self.db, REMINDER_TRIGGER):
            barbershop = self.repo.get_barbershop(self.db, rule.barbershop_id)
            for appointment in self.repo.appointments_on(self.db, rule.barbershop_id, tomorrow):
                if self.repo.execution_exists(self.db, rule.id, appointment.id):
                    skipped += 1
                    continue
                execution = await self._execute_isolated(
                    rule,
                    appointment_candidate(appointment),
                    barbershop.name if barbershop else None,
                    today,
                    REMINDER_TRIGGER,
                )
                if execution is not None and execution.status == "sent":
                    sent += 1
                else:
                    failed += 1

        logger.info(f"⏰ Appointment reminders: {sent} sent, {skipped} already sent, {failed} failed")
        return {"sent": sent, "skipped": skipped, "failed": failed}

    # ========================================
    # RULES
    # ========================================

    def list_rules(self, barbershop_id: int) -> list[AutomationRule]:
        return self.repo.list_rules(self.db, barbershop_id)

    def get_rule(self, barbershop_id: int, rule_id: int) -> AutomationRule:
        rule = self.repo.get_rule(self.db, rule_id, barbershop_id)
        if not rule:
            raise HTTPException(status_code=404, detail="Automation rule not found")
        return rule

    def create_rule(self, barbershop_id: int, data: RuleCreate) -> AutomationRule:
        rule = AutomationRule(barbershop_id=barbershop_id, **data.model_dump())
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"✅ Automation rule '{rule.name}' created for barbershop {barbershop_id}")
        return rule

    def update_rule(self, barbershop_id: int, rule_id: int, data: RuleUpdate) -> AutomationRule:
        rule = self.get_rule(barbershop_id, rule_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(rule, field, value)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, barbershop_id: int, rule_id: int) -> None:
        rule = self.get_rule(barbershop_id, rule_id)
        self.db.delete(rule)
        self.db.commit()

    def list_executions(
        self, barbershop_id: int, rule_id: Optional[int] = None, limit: int = 100
    ) -> list[AutomationExecution]:
        return self.repo.list_executions(self.db, barbershop_id, rule_id, limit)
