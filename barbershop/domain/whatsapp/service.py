"""
WhatsApp service - instance lifecycle, reconciliation against the gateway,
webhook event handling and outgoing messages
"""

import asyncio
import logging
import re
import secrets
from datetime import datetime
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import (
    EVOLUTION_WEBHOOK_URL,
    WHATSAPP_CONNECT_POLL_SECONDS,
    WHATSAPP_CONNECT_TIMEOUT_SECONDS,
)
from ...models_whatsapp import WhatsAppInstance, WhatsAppMessage
from ...services.evolution_service import (
    EvolutionAPIError,
    EvolutionAPIService,
    format_phone_number,
    phone_from_jid,
)
from .repository import WhatsAppRepository

logger = logging.getLogger(__name__)

STATUS_CONNECTED = "connected"
STATUS_CONNECTING = "connecting"
STATUS_AWAITING_QR = "awaiting_qr_scan"
STATUS_DISCONNECTED = "disconnected"

# Gateway connection states mapped onto local instance status
GATEWAY_STATE_STATUS = {
    "open": STATUS_CONNECTED,
    "connecting": STATUS_CONNECTING,
    "close": STATUS_DISCONNECTED,
}


def build_instance_name(barbershop_id: int, slug: Optional[str]) -> str:
    cleaned = re.sub(r"[^a-z0-9]", "", (slug or "").lower())
    return f"barber_{cleaned or 'shop'}_{barbershop_id}"


def normalize_event_name(event: Optional[str]) -> str:
    """'connection.update' and 'CONNECTION_UPDATE' are the same event"""
    return (event or "").upper().replace(".", "_")


def extract_message_text(message: Optional[dict]) -> str:
    if not isinstance(message, dict):
        return "Media message"
    if message.get("conversation"):
        return message["conversation"]
    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict) and extended.get("text"):
        return extended["text"]
    return "Media message"


def serialize_instance(instance: WhatsAppInstance) -> dict:
    return {
        "id": instance.id,
        "barbershopId": instance.barbershop_id,
        "instanceName": instance.evolution_instance_name,
        "status": instance.status,
        "phoneNumber": instance.phone_number,
        "qrCode": instance.qr_code,
        "webhookUrl": instance.webhook_url,
        "lastConnectedAt": instance.last_connected_at.isoformat() if instance.last_connected_at else None,
        "lastCheckedAt": instance.last_checked_at.isoformat() if instance.last_checked_at else None,
    }


class WhatsAppService:
    def __init__(self, db: Session, evolution: EvolutionAPIService):
        self.db = db
        self.evolution = evolution
        self.repo = WhatsAppRepository()

    # ========================================
    # INSTANCE LIFECYCLE
    # ========================================

    def get_instance(self, barbershop_id: int) -> WhatsAppInstance:
        instance = self.repo.get_instance_by_barbershop(self.db, barbershop_id)
        if not instance:
            raise HTTPException(status_code=404, detail="WhatsApp instance not found")
        return instance

    async def create_instance(self, barbershop_id: int) -> WhatsAppInstance:
        barbershop = self.repo.get_barbershop(self.db, barbershop_id)
        if not barbershop:
            raise HTTPException(status_code=404, detail="Barbershop not found")
        if self.repo.get_instance_by_barbershop(self.db, barbershop_id):
            raise HTTPException(status_code=409, detail="Barbershop already has a WhatsApp instance")

        instance_name = build_instance_name(barbershop_id, barbershop.slug)
        token = secrets.token_hex(16)

        try:
            result = await self.evolution.create_instance(instance_name, token, EVOLUTION_WEBHOOK_URL)
        except EvolutionAPIError as e:
            raise HTTPException(status_code=502, detail=f"Failed to create WhatsApp instance: {e}")

        qr_code = None
        qrcode = result.get("qrcode") if isinstance(result, dict) else None
        if isinstance(qrcode, dict):
            qr_code = qrcode.get("base64") or qrcode.get("code")

        instance = WhatsAppInstance(
            barbershop_id=barbershop_id,
            evolution_instance_name=instance_name,
            instance_token=token,
            webhook_url=EVOLUTION_WEBHOOK_URL,
            status=STATUS_AWAITING_QR if qr_code else STATUS_CONNECTING,
            qr_code=qr_code,
        )
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        logger.info(f"📱 WhatsApp instance {instance_name} created for barbershop {barbershop_id}")
        return instance

    async def delete_instance(self, barbershop_id: int) -> None:
        instance = self.get_instance(barbershop_id)
        try:
            await self.evolution.delete_instance(instance.evolution_instance_name)
        except EvolutionAPIError as e:
            # A 404 means the gateway already forgot the instance
            if e.status_code != 404:
                raise HTTPException(status_code=502, detail=f"Failed to delete WhatsApp instance: {e}")
        self.db.delete(instance)
        self.db.commit()
        logger.info(f"🗑️ WhatsApp instance removed for barbershop {barbershop_id}")

    async def refresh_qr_code(self, barbershop_id: int) -> WhatsAppInstance:
        instance = self.get_instance(barbershop_id)
        if instance.status == STATUS_CONNECTED:
            raise HTTPException(status_code=400, detail="WhatsApp is already connected")
        try:
            qr_code = await self.evolution.get_qr_code(instance.evolution_instance_name)
        except EvolutionAPIError as e:
            raise HTTPException(status_code=502, detail=f"Failed to fetch QR code: {e}")
        instance.qr_code = qr_code
        if qr_code:
            instance.status = STATUS_AWAITING_QR
        self.db.commit()
        self.db.refresh(instance)
        return instance

    # ========================================
    # RECONCILIATION
    # ========================================

    async def reconcile(self, instance: WhatsAppInstance, regenerate_qr: bool = True) -> dict[str, Any]:
        """
        Bring the local record in line with the gateway session.

        A session reporting "open" without a paired device is a ghost: it is
        logged out before a fresh QR code is requested, otherwise the gateway
        keeps handing back the dead session.
        """
        name = instance.evolution_instance_name
        previous_status = instance.status
        fixes: list[str] = []
        ghost = False
        qr_code = None

        try:
            gateway_state = await self.evolution.get_connection_state(name)
            phone = await self.evolution.get_connected_phone(name) if gateway_state == "open" else None
        except EvolutionAPIError as e:
            logger.error(f"❌ Reconcile failed for {name}: {e}")
            return {
                "success": False,
                "instanceName": name,
                "status": instance.status,
                "error": str(e),
            }

        if gateway_state == "open" and not phone:
            ghost = True
            logger.warning(f"👻 Ghost connection on {name}: gateway open without a device")
            instance.status = STATUS_DISCONNECTED
            instance.phone_number = None
            try:
                await self.evolution.logout_instance(name)
                fixes.append("ghost_connection_reset")
            except EvolutionAPIError as e:
                logger.error(f"❌ Failed to log out ghost session {name}: {e}")

        if phone:
            if instance.status != STATUS_CONNECTED or instance.phone_number != phone:
                fixes.append("status_synced")
            instance.status = STATUS_CONNECTED
            instance.phone_number = phone
            instance.qr_code = None
            if previous_status != STATUS_CONNECTED or instance.last_connected_at is None:
                instance.last_connected_at = datetime.utcnow()
        else:
            if not ghost and instance.status == STATUS_CONNECTED:
                fixes.append("status_synced")
                instance.phone_number = None
            if regenerate_qr:
                try:
                    qr_code = await self.evolution.get_qr_code(name)
                except EvolutionAPIError as e:
                    logger.error(f"❌ QR regeneration failed for {name}: {e}")
                if qr_code:
                    instance.qr_code = qr_code
                    fixes.append("qr_regenerated")
            # A reset ghost stays disconnected until the new QR code is scanned
            if not ghost:
                if qr_code:
                    instance.status = STATUS_AWAITING_QR
                elif gateway_state == "connecting":
                    instance.status = STATUS_CONNECTING
                else:
                    instance.status = STATUS_DISCONNECTED

        if fixes and EVOLUTION_WEBHOOK_URL:
            try:
                await self.evolution.set_webhook(name, EVOLUTION_WEBHOOK_URL)
                instance.webhook_url = EVOLUTION_WEBHOOK_URL
                fixes.append("webhook_configured")
            except EvolutionAPIError as e:
                logger.error(f"❌ Webhook registration failed for {name}: {e}")

        instance.last_checked_at = datetime.utcnow()
        self.db.commit()

        if fixes:
            logger.info(f"🔧 Reconciled {name}: {previous_status} -> {instance.status} ({', '.join(fixes)})")

        return {
            "success": True,
            "instanceName": name,
            "gatewayState": gateway_state,
            "previousStatus": previous_status,
            "status": instance.status,
            "phoneNumber": instance.phone_number,
            "ghostConnection": ghost,
            "qrCode": qr_code,
            "fixes": fixes,
        }

    async def reconcile_barbershop(self, barbershop_id: int) -> dict[str, Any]:
        return await self.reconcile(self.get_instance(barbershop_id))

    async def sweep_instances(self) -> dict[str, int]:
        """Periodic fallback for missed webhooks; never regenerates QR codes"""
        checked = 0
        changed = 0
        failed = 0
        for instance in self.repo.list_instances(self.db):
            result = await self.reconcile(instance, regenerate_qr=False)
            checked += 1
            if not result["success"]:
                failed += 1
            elif result["fixes"]:
                changed += 1
        logger.info(f"📊 WhatsApp sweep: {checked} checked, {changed} changed, {failed} failed")
        return {"checked": checked, "changed": changed, "failed": failed}

    async def wait_for_connection(
        self,
        barbershop_id: int,
        timeout_seconds: int = WHATSAPP_CONNECT_TIMEOUT_SECONDS,
        poll_seconds: float = WHATSAPP_CONNECT_POLL_SECONDS,
    ) -> bool:
        """Poll the gateway until the QR code is scanned or the timeout passes"""
        instance = self.get_instance(barbershop_id)
        name = instance.evolution_instance_name
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while True:
            phone = None
            try:
                if await self.evolution.get_connection_state(name) == "open":
                    phone = await self.evolution.get_connected_phone(name)
            except EvolutionAPIError as e:
                logger.warning(f"⚠️ Connection poll failed for {name}: {e}")

            if phone:
                instance.status = STATUS_CONNECTED
                instance.phone_number = phone
                instance.qr_code = None
                instance.last_connected_at = datetime.utcnow()
                self.db.commit()
                logger.info(f"✅ WhatsApp connected for barbershop {barbershop_id}: {phone}")
                return True

            if loop.time() + poll_seconds > deadline:
                logger.warning(f"⏱️ Timed out waiting for WhatsApp connection on {name}")
                return False
            await asyncio.sleep(poll_seconds)

    # ========================================
    # MESSAGING
    # ========================================

    async def send_message(
        self,
        barbershop_id: int,
        phone: str,
        text: str,
        conversation_id: Optional[int] = None,
    ) -> WhatsAppMessage:
        instance = self.get_instance(barbershop_id)
        if instance.status != STATUS_CONNECTED:
            raise HTTPException(status_code=400, detail="WhatsApp is not connected")

        try:
            number = format_phone_number(phone)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        message = WhatsAppMessage(
            barbershop_id=barbershop_id,
            instance_id=instance.id,
            conversation_id=conversation_id,
            phone_number=number,
            content=text,
            message_type="text",
            direction="outgoing",
            status="pending",
        )
        self.db.add(message)

        try:
            result = await self.evolution.send_text(instance.evolution_instance_name, number, text)
        except EvolutionAPIError as e:
            message.status = "failed"
            message.error_message = str(e)
            self.db.commit()
            raise HTTPException(status_code=502, detail=f"Failed to send WhatsApp message: {e}")

        key = result.get("key") if isinstance(result, dict) else None
        message.external_id = key.get("id") if isinstance(key, dict) else None
        message.status = "sent"
        self.db.commit()
        self.db.refresh(message)
        logger.info(f"📤 WhatsApp message sent to {number} for barbershop {barbershop_id}")
        return message

    # ========================================
    # GATEWAY WEBHOOKS
    # ========================================

    def handle_webhook(self, payload: dict) -> dict[str, Any]:
        event = normalize_event_name(payload.get("event"))
        instance_name = payload.get("instance")
        if isinstance(instance_name, dict):
            instance_name = instance_name.get("instanceName")
        data = payload.get("data") or {}
        # MESSAGES_UPSERT may carry a list of messages; every other event carries an object
        if not isinstance(data, dict) and not (event == "MESSAGES_UPSERT" and isinstance(data, list)):
            logger.warning(f"⚠️ Webhook {event} with unsupported payload: {type(data).__name__}")
            return {"handled": False, "event": event, "reason": "unsupported payload"}

        instance = self.repo.get_instance_by_name(self.db, instance_name) if instance_name else None
        if not instance:
            logger.warning(f"⚠️ Webhook {event} for unknown instance {instance_name}")
            return {"handled": False, "event": event, "reason": "unknown instance"}

        if event == "QRCODE_UPDATED":
            qrcode = data.get("qrcode") if isinstance(data.get("qrcode"), dict) else data
            instance.qr_code = qrcode.get("base64") or qrcode.get("code")
            instance.status = STATUS_AWAITING_QR
        elif event == "CONNECTION_UPDATE":
            self._apply_connection_update(instance, data)
        elif event == "MESSAGES_UPSERT":
            stored = self._store_incoming_messages(instance, data)
            self.db.commit()
            return {"handled": True, "event": event, "stored": stored}
        elif event == "SEND_MESSAGE":
            key = data.get("key") or {}
            message = self.repo.get_message_by_external_id(self.db, key.get("id")) if key.get("id") else None
            if message:
                message.status = "sent"
        else:
            logger.debug(f"Ignoring webhook event {event}")
            return {"handled": False, "event": event, "reason": "unsupported event"}

        self.db.commit()
        return {"handled": True, "event": event, "status": instance.status}

    def _apply_connection_update(self, instance: WhatsAppInstance, data: dict) -> None:
        state = data.get("state")
        status = GATEWAY_STATE_STATUS.get(state)
        if status is None:
            return
        if status == STATUS_CONNECTED:
            user = data.get("user") or {}
            instance.phone_number = phone_from_jid(user.get("id") or data.get("wuid")) or instance.phone_number
            instance.qr_code = None
            instance.last_connected_at = datetime.utcnow()
        elif status == STATUS_DISCONNECTED:
            instance.phone_number = None
        instance.status = status
        logger.info(f"🔄 {instance.evolution_instance_name} is now {status}")

    def _store_incoming_messages(self, instance: WhatsAppInstance, data: Any) -> int:
        if isinstance(data, list):
            messages = data
        else:
            messages = data.get("messages") if "messages" in data else [data]
        stored = 0
        for item in messages:
            if not isinstance(item, dict):
                continue
            key = item.get("key") or {}
            if key.get("fromMe"):
                continue
            phone = phone_from_jid(key.get("remoteJid"))
            if not phone:
                continue
            if key.get("id") and self.repo.get_message_by_external_id(self.db, key["id"]):
                continue
            contact_name = item.get("pushName")
            conversation = self.repo.upsert_conversation(self.db, instance.barbershop_id, phone, contact_name)
            self.db.add(
                WhatsAppMessage(
                    barbershop_id=instance.barbershop_id,
                    instance_id=instance.id,
                    conversation_id=conversation.id,
                    phone_number=phone,
                    contact_name=contact_name,
                    content=extract_message_text(item.get("message")),
                    message_type=item.get("messageType") or "text",
                    direction="incoming",
                    status="received",
                    external_id=key.get("id"),
                )
            )
            stored += 1
        return stored
