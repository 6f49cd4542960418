"""
WhatsApp Integration Models
Gateway instance per barbershop, conversations and message log
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class WhatsAppInstance(Base):
    """Connection to the Evolution API gateway"""

    __tablename__ = "whatsapp_instances"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, unique=True)

    evolution_instance_name = Column(String(255), unique=True, index=True, nullable=False)
    instance_token = Column(String(255), nullable=True)
    webhook_url = Column(String(500), nullable=True)

    # disconnected, connecting, awaiting_qr_scan, connected
    status = Column(String(30), default="disconnected", nullable=False)
    phone_number = Column(String(30), nullable=True)
    qr_code = Column(Text, nullable=True)
    last_connected_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    barbershop = relationship("Barbershop", back_populates="whatsapp_instance")


class WhatsAppConversation(Base):
    __tablename__ = "whatsapp_conversations"
    __table_args__ = (UniqueConstraint("barbershop_id", "client_phone", name="uq_conversation_phone"),)

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    client_phone = Column(String(30), nullable=False)
    client_name = Column(String(255), nullable=True)
    human_takeover = Column(Boolean, default=False, nullable=False)
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    messages = relationship("WhatsAppMessage", back_populates="conversation")


class WhatsAppMessage(Base):
    """Track messages sent and received via the gateway"""

    __tablename__ = "whatsapp_messages"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    instance_id = Column(Integer, ForeignKey("whatsapp_instances.id"), nullable=True)
    conversation_id = Column(Integer, ForeignKey("whatsapp_conversations.id"), nullable=True)

    phone_number = Column(String(30), nullable=False)
    contact_name = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    message_type = Column(String(30), default="text", nullable=False)
    direction = Column(String(10), nullable=False)  # incoming, outgoing
    status = Column(String(20), nullable=False)  # pending, sent, failed, received
    external_id = Column(String(255), nullable=True, index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    conversation = relationship("WhatsAppConversation", back_populates="messages")
