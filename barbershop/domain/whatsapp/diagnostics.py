"""Gateway diagnostics for the WhatsApp integration"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...config import EVOLUTION_WEBHOOK_URL
from ...services.evolution_service import WEBHOOK_EVENTS, EvolutionAPIError, EvolutionAPIService
from .repository import WhatsAppRepository

logger = logging.getLogger(__name__)


class WhatsAppDiagnostics:
    """Runs one or all connectivity checks and reports each as success/failure"""

    def __init__(self, db: Session, evolution: EvolutionAPIService):
        self.db = db
        self.evolution = evolution
        self.repo = WhatsAppRepository()

    async def run(self, barbershop_id: int, test_type: str = "all") -> dict[str, Any]:
        checks = {
            "api_connectivity": self.check_api_connectivity,
            "database_instance": self.check_database_instance,
            "evolution_instance": self.check_evolution_instance,
            "webhook_test": self.check_webhook,
            "webhook_logs": self.check_webhook_logs,
        }
        selected = list(checks) if test_type == "all" else [test_type]

        results = {}
        for name in selected:
            results[name] = await checks[name](barbershop_id)

        return {
            "barbershopId": barbershop_id,
            "testType": test_type,
            "timestamp": datetime.utcnow().isoformat(),
            "results": results,
            "healthy": all(result["success"] for result in results.values()),
        }

    async def check_api_connectivity(self, barbershop_id: int) -> dict[str, Any]:
        try:
            info = await self.evolution.get_server_info()
        except EvolutionAPIError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "baseUrl": self.evolution.base_url, "server": info}

    async def check_database_instance(self, barbershop_id: int) -> dict[str, Any]:
        instance = self.repo.get_instance_by_barbershop(self.db, barbershop_id)
        if not instance:
            return {"success": False, "error": "No WhatsApp instance registered for this barbershop"}
        return {
            "success": True,
            "instanceName": instance.evolution_instance_name,
            "status": instance.status,
            "phoneNumber": instance.phone_number,
            "hasQrCode": bool(instance.qr_code),
        }

    async def check_evolution_instance(self, barbershop_id: int) -> dict[str, Any]:
        instance = self.repo.get_instance_by_barbershop(self.db, barbershop_id)
        if not instance:
            return {"success": False, "error": "No WhatsApp instance registered for this barbershop"}

        name = instance.evolution_instance_name
        try:
            state = await self.evolution.get_connection_state(name)
            phone = await self.evolution.get_connected_phone(name)
        except EvolutionAPIError as e:
            return {"success": False, "error": str(e)}

        gateway_connected = state == "open" and bool(phone)
        in_sync = gateway_connected == (instance.status == "connected") and (
            not gateway_connected or phone == instance.phone_number
        )
        return {
            "success": True,
            "gatewayState": state,
            "gatewayPhone": phone,
            "localStatus": instance.status,
            "localPhone": instance.phone_number,
            "ghostConnection": state == "open" and not phone,
            "inSync": in_sync,
        }

    async def check_webhook(self, barbershop_id: int) -> dict[str, Any]:
        instance = self.repo.get_instance_by_barbershop(self.db, barbershop_id)
        if not instance:
            return {"success": False, "error": "No WhatsApp instance registered for this barbershop"}

        try:
            webhook = await self.evolution.find_webhook(instance.evolution_instance_name)
        except EvolutionAPIError as e:
            return {"success": False, "error": str(e)}

        webhook = webhook.get("webhook", webhook) if isinstance(webhook, dict) else {}
        url: Optional[str] = webhook.get("url")
        events = webhook.get("events") or []
        missing = [event for event in WEBHOOK_EVENTS if event not in events]
        return {
            "success": bool(url) and not missing and webhook.get("enabled", True) is not False,
            "url": url,
            "expectedUrl": EVOLUTION_WEBHOOK_URL,
            "urlMatches": url == EVOLUTION_WEBHOOK_URL if EVOLUTION_WEBHOOK_URL else None,
            "events": events,
            "missingEvents": missing,
        }

    async def check_webhook_logs(self, barbershop_id: int) -> dict[str, Any]:
        messages = self.repo.recent_messages(self.db, barbershop_id, direction="incoming", limit=10)
        return {
            "success": True,
            "count": len(messages),
            "messages": [
                {
                    "phoneNumber": m.phone_number,
                    "content": m.content,
                    "status": m.status,
                    "createdAt": m.created_at.isoformat() if m.created_at else None,
                }
                for m in messages
            ],
        }
