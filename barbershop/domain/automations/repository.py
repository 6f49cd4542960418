"""Automation repository - rule lookups and candidate selection queries"""

from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, Barbershop, Client, Profile
from ...models_automation import AutomationExecution, AutomationRule

STAFF_ROLES = ("admin", "receptionist")
PROMOTION_CANDIDATE_LIMIT = 10


class AutomationRepository:
    @staticmethod
    def get_barbershop(db: Session, barbershop_id: int) -> Optional[Barbershop]:
        return db.query(Barbershop).filter(Barbershop.id == barbershop_id).first()

    @staticmethod
    def get_rule(db: Session, rule_id: int, barbershop_id: int) -> Optional[AutomationRule]:
        return (
            db.query(AutomationRule)
            .filter(AutomationRule.id == rule_id, AutomationRule.barbershop_id == barbershop_id)
            .first()
        )

    @staticmethod
    def list_rules(db: Session, barbershop_id: int, active_only: bool = False) -> list[AutomationRule]:
        query = db.query(AutomationRule).filter(AutomationRule.barbershop_id == barbershop_id)
        if active_only:
            query = query.filter(AutomationRule.is_active.is_(True))
        return query.order_by(AutomationRule.id.asc()).all()

    @staticmethod
    def list_rules_for_trigger(db: Session, barbershop_id: int, trigger_type: str) -> list[AutomationRule]:
        return (
            db.query(AutomationRule)
            .filter(
                AutomationRule.barbershop_id == barbershop_id,
                AutomationRule.trigger_type == trigger_type,
                AutomationRule.is_active.is_(True),
            )
            .order_by(AutomationRule.id.asc())
            .all()
        )

    @staticmethod
    def list_active_rules_by_trigger(db: Session, trigger_type: str) -> list[AutomationRule]:
        """Across all barbershops; used by the daily reminder sweep"""
        return (
            db.query(AutomationRule)
            .filter(AutomationRule.trigger_type == trigger_type, AutomationRule.is_active.is_(True))
            .order_by(AutomationRule.barbershop_id.asc(), AutomationRule.id.asc())
            .all()
        )

    @staticmethod
    def list_barbershops_with_active_rules(db: Session) -> list[int]:
        rows = (
            db.query(AutomationRule.barbershop_id)
            .filter(AutomationRule.is_active.is_(True))
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.client), joinedload(Appointment.service))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def list_executions(
        db: Session, barbershop_id: int, rule_id: Optional[int] = None, limit: int = 100
    ) -> list[AutomationExecution]:
        query = db.query(AutomationExecution).filter(AutomationExecution.barbershop_id == barbershop_id)
        if rule_id:
            query = query.filter(AutomationExecution.rule_id == rule_id)
        return query.order_by(AutomationExecution.id.desc()).limit(limit).all()

    @staticmethod
    def execution_exists(db: Session, rule_id: int, appointment_id: int) -> bool:
        return (
            db.query(AutomationExecution.id)
            .filter(
                AutomationExecution.rule_id == rule_id,
                AutomationExecution.appointment_id == appointment_id,
                AutomationExecution.status == "sent",
            )
            .first()
            is not None
        )

    @staticmethod
    def count_staff(db: Session, barbershop_id: int) -> int:
        return (
            db.query(Profile)
            .filter(Profile.barbershop_id == barbershop_id, Profile.role.in_(STAFF_ROLES))
            .count()
        )

    # ========================================
    # CANDIDATE SELECTION
    # ========================================

    @staticmethod
    def appointments_on(db: Session, barbershop_id: int, on_date: date) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.client), joinedload(Appointment.service))
            .filter(
                Appointment.barbershop_id == barbershop_id,
                Appointment.appointment_date == on_date,
                Appointment.status != "cancelled",
            )
            .order_by(Appointment.start_time.asc(), Appointment.id.asc())
            .all()
        )

    @staticmethod
    def completed_appointments_on(db: Session, barbershop_id: int, on_date: date) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.client), joinedload(Appointment.service))
            .filter(
                Appointment.barbershop_id == barbershop_id,
                Appointment.appointment_date == on_date,
                Appointment.status == "completed",
            )
            .order_by(Appointment.id.asc())
            .all()
        )

    @staticmethod
    def clients_last_visit_before(db: Session, barbershop_id: int, cutoff: date) -> list[tuple[Client, date]]:
        """Clients whose most recent completed visit is strictly before `cutoff`"""
        last_visit = (
            db.query(
                Appointment.client_id.label("client_id"),
                func.max(Appointment.appointment_date).label("last_visit"),
            )
            .filter(Appointment.barbershop_id == barbershop_id, Appointment.status == "completed")
            .group_by(Appointment.client_id)
            .subquery()
        )
        return (
            db.query(Client, last_visit.c.last_visit)
            .join(last_visit, last_visit.c.client_id == Client.id)
            .filter(Client.barbershop_id == barbershop_id, last_visit.c.last_visit < cutoff)
            .order_by(Client.id.asc())
            .all()
        )

    @staticmethod
    def clients_with_appointments(
        db: Session, barbershop_id: int, limit: int = PROMOTION_CANDIDATE_LIMIT
    ) -> list[Client]:
        client_ids = select(Appointment.client_id).where(Appointment.barbershop_id == barbershop_id)
        return (
            db.query(Client)
            .filter(Client.barbershop_id == barbershop_id, Client.id.in_(client_ids))
            .order_by(Client.id.asc())
            .limit(limit)
            .all()
        )
