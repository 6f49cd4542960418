"""WhatsApp repository - Database operations for instances, conversations and messages"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Barbershop
from ...models_whatsapp import WhatsAppConversation, WhatsAppInstance, WhatsAppMessage


class WhatsAppRepository:
    @staticmethod
    def get_barbershop(db: Session, barbershop_id: int) -> Optional[Barbershop]:
        return db.query(Barbershop).filter(Barbershop.id == barbershop_id).first()

    @staticmethod
    def get_instance_by_barbershop(db: Session, barbershop_id: int) -> Optional[WhatsAppInstance]:
        return db.query(WhatsAppInstance).filter(WhatsAppInstance.barbershop_id == barbershop_id).first()

    @staticmethod
    def get_instance_by_name(db: Session, instance_name: str) -> Optional[WhatsAppInstance]:
        return (
            db.query(WhatsAppInstance)
            .filter(WhatsAppInstance.evolution_instance_name == instance_name)
            .first()
        )

    @staticmethod
    def list_instances(db: Session) -> list[WhatsAppInstance]:
        return db.query(WhatsAppInstance).order_by(WhatsAppInstance.id.asc()).all()

    @staticmethod
    def upsert_conversation(
        db: Session, barbershop_id: int, client_phone: str, client_name: Optional[str]
    ) -> WhatsAppConversation:
        conversation = (
            db.query(WhatsAppConversation)
            .filter(
                WhatsAppConversation.barbershop_id == barbershop_id,
                WhatsAppConversation.client_phone == client_phone,
            )
            .first()
        )
        if conversation is None:
            conversation = WhatsAppConversation(barbershop_id=barbershop_id, client_phone=client_phone)
            db.add(conversation)
        if client_name:
            conversation.client_name = client_name
        conversation.last_message_at = datetime.utcnow()
        db.flush()
        return conversation

    @staticmethod
    def get_message_by_external_id(db: Session, external_id: str) -> Optional[WhatsAppMessage]:
        return db.query(WhatsAppMessage).filter(WhatsAppMessage.external_id == external_id).first()

    @staticmethod
    def recent_messages(
        db: Session, barbershop_id: int, direction: Optional[str] = None, limit: int = 10
    ) -> list[WhatsAppMessage]:
        query = db.query(WhatsAppMessage).filter(WhatsAppMessage.barbershop_id == barbershop_id)
        if direction:
            query = query.filter(WhatsAppMessage.direction == direction)
        return query.order_by(WhatsAppMessage.created_at.desc(), WhatsAppMessage.id.desc()).limit(limit).all()

