"""
Subscription Models
Provider plans, client subscriptions, the usage ledger and per-period billing rows
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class ProviderSubscriptionPlan(Base):
    """Monthly plan a provider (barber) sells to clients"""

    __tablename__ = "provider_subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    monthly_price = Column(Float, nullable=False, default=0.0)
    included_services_count = Column(Integer, nullable=False, default=0)
    commission_percentage = Column(Float, nullable=False, default=0.0)
    enabled_service_ids = Column(JSON, default=list, nullable=False)  # list[int]
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    provider = relationship("Profile")


class ClientSubscription(Base):
    __tablename__ = "client_subscriptions"
    __table_args__ = (
        # At most one active subscription per (client, provider)
        Index(
            "uq_client_subscriptions_active_pair",
            "client_id",
            "provider_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("provider_subscription_plans.id"), nullable=False)

    status = Column(String(20), default="active", nullable=False)
    # active, cancelled, expired, pending_payment
    remaining_services = Column(Integer, nullable=False, default=0)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    next_billing_date = Column(Date, nullable=True)
    last_reset_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime, nullable=True)

    plan = relationship("ProviderSubscriptionPlan")
    client = relationship("Client")
    provider = relationship("Profile")
    financial_records = relationship("SubscriptionFinancialRecord", back_populates="subscription")
    usages = relationship("SubscriptionUsage", back_populates="subscription")


class SubscriptionUsage(Base):
    """Append-only ledger of redeemed services"""

    __tablename__ = "subscription_usage_history"
    __table_args__ = (
        UniqueConstraint("subscription_id", "command_item_id", name="uq_subscription_usage_item"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("client_subscriptions.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    command_id = Column(Integer, ForeignKey("commands.id"), nullable=True)
    # One row per redeemed command line; NULL for redemptions made outside a command
    command_item_id = Column(Integer, ForeignKey("command_items.id"), nullable=True)
    original_price = Column(Float, nullable=False, default=0.0)
    used_at = Column(DateTime, server_default=func.now(), nullable=False)

    subscription = relationship("ClientSubscription", back_populates="usages")


class SubscriptionFinancialRecord(Base):
    """One billing row per subscription period"""

    __tablename__ = "subscription_financial_records"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("client_subscriptions.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False, default=0.0)
    net_amount = Column(Float, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, paid, overdue
    payment_date = Column(Date, nullable=True)
    payment_method = Column(String(30), nullable=True)
    description = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    subscription = relationship("ClientSubscription", back_populates="financial_records")
