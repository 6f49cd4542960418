"""
Point-of-sale models
A command is an open tab for a client; it is closed at checkout
"""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Command(Base):
    __tablename__ = "commands"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    barber_id = Column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    status = Column(String(20), default="open", nullable=False, index=True)  # open, closed, cancelled
    payment_status = Column(String(20), default="pending", nullable=False)  # pending, paid
    payment_method = Column(String(30), nullable=True)  # cash, card, pix

    total_amount = Column(Float, default=0.0, nullable=False)
    discount_amount = Column(Float, default=0.0, nullable=False)
    final_amount = Column(Float, default=0.0, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    closed_at = Column(DateTime, nullable=True)

    items = relationship("CommandItem", back_populates="command", cascade="all, delete-orphan")
    client = relationship("Client")
    barber = relationship("Profile")


class CommandItem(Base):
    __tablename__ = "command_items"

    id = Column(Integer, primary_key=True, index=True)
    command_id = Column(Integer, ForeignKey("commands.id"), nullable=False, index=True)
    item_type = Column(String(20), default="service", nullable=False)  # service, product
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    name = Column(String(255), nullable=False)

    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Float, default=0.0, nullable=False)
    total_price = Column(Float, default=0.0, nullable=False)
    commission_rate = Column(Float, default=0.0, nullable=False)
    commission_amount = Column(Float, default=0.0, nullable=False)

    # Set when the service is redeemed through a client subscription (zero-price checkout)
    subscription_id = Column(Integer, ForeignKey("client_subscriptions.id"), nullable=True)
    original_price = Column(Float, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    command = relationship("Command", back_populates="items")
