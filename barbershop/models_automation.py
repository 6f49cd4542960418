"""
Automation Models
Messaging rules and the log of every dispatch attempt
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(30), nullable=False)  # reminder, follow_up, churn_alert, promotion
    # Event name for event-triggered rules (e.g. appointment_created, appointment_reminder)
    trigger_type = Column(String(50), nullable=True, index=True)
    trigger_conditions = Column(JSON, default=dict, nullable=False)  # {"days_after_last_visit": 30}
    message_template = Column(Text, nullable=False)
    promotion_details = Column(Text, nullable=True)

    # Actions
    send_whatsapp = Column(Boolean, default=True, nullable=False)
    notify_staff = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    executions = relationship("AutomationExecution", back_populates="rule", cascade="all, delete-orphan")


class AutomationExecution(Base):
    """One row per candidate per run: pending -> sent | failed"""

    __tablename__ = "automation_executions"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("automation_rules.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    trigger_type = Column(String(50), nullable=True)

    message = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False)
    error_message = Column(Text, nullable=True)
    executed_at = Column(DateTime, server_default=func.now())

    rule = relationship("AutomationRule", back_populates="executions")
