from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Barbershop(Base):
    __tablename__ = "barbershops"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    profiles = relationship("Profile", back_populates="barbershop")
    clients = relationship("Client", back_populates="barbershop")
    services = relationship("Service", back_populates="barbershop")
    whatsapp_instance = relationship("WhatsAppInstance", back_populates="barbershop", uselist=False)


class Profile(Base):
    """Staff member of a barbershop. Barbers are the providers that earn commissions."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=True, index=True)
    auth_user_id = Column(String(255), unique=True, index=True, nullable=False)  # JWT "sub"
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    role = Column(String(30), default="barber", nullable=False)  # super_admin, admin, barber, receptionist
    commission_rate = Column(Float, default=0.0, nullable=False)  # default % for command items
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    barbershop = relationship("Barbershop", back_populates="profiles")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    barbershop = relationship("Barbershop", back_populates="clients")
    appointments = relationship("Appointment", back_populates="client")


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    duration_minutes = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    barbershop = relationship("Barbershop", back_populates="services")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    barbershop_id = Column(Integer, ForeignKey("barbershops.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    barber_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    appointment_date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=True)  # "HH:MM"
    status = Column(String(20), default="scheduled", nullable=False)
    # scheduled, confirmed, completed, cancelled, no_show
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    client = relationship("Client", back_populates="appointments")
    barber = relationship("Profile")
    service = relationship("Service")
