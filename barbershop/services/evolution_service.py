"""
Evolution API Service
Thin async client for the WhatsApp gateway REST API
"""

import logging
import re
from typing import Any, Optional

import httpx

from ..config import EVOLUTION_API_KEY, EVOLUTION_API_URL, EVOLUTION_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Events every instance webhook is registered for
WEBHOOK_EVENTS = ["QRCODE_UPDATED", "CONNECTION_UPDATE", "MESSAGES_UPSERT", "SEND_MESSAGE"]

COUNTRY_CODE = "55"


class EvolutionAPIError(Exception):
    """Raised when the gateway is unreachable or answers with an error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def format_phone_number(phone: str) -> str:
    """Digits only, with the Brazilian country code prefixed when missing"""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValueError("Phone number is empty")
    if not digits.startswith(COUNTRY_CODE):
        digits = f"{COUNTRY_CODE}{digits}"
    return digits


def to_whatsapp_jid(phone: str) -> str:
    return f"{format_phone_number(phone)}@s.whatsapp.net"


def phone_from_jid(jid: Optional[str]) -> Optional[str]:
    if not jid:
        return None
    return jid.split("@")[0].split(":")[0] or None


class EvolutionAPIService:
    """Service for Evolution API operations"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = EVOLUTION_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or EVOLUTION_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else EVOLUTION_API_KEY
        self.timeout = timeout
        self.transport = transport

        if not self.api_key:
            logger.warning("EVOLUTION_API_KEY not set; WhatsApp endpoints will fail until configured")

    def is_available(self) -> bool:
        """Check if the gateway client is configured"""
        return bool(self.base_url and self.api_key)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        if not self.is_available():
            raise EvolutionAPIError("Evolution API not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(f"❌ Evolution API {method} {path} failed: {e}")
            raise EvolutionAPIError(f"Evolution API unreachable: {e}") from e

        logger.debug(f"📡 Evolution API {method} {path} -> {response.status_code}")
        if response.status_code >= 400:
            body = response.text[:500]
            logger.error(f"❌ Evolution API error [{response.status_code}] {method} {path}: {body}")
            raise EvolutionAPIError(
                f"Evolution API error [{response.status_code}]: {body}", status_code=response.status_code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    # ------------------------------------------------------------------
    # Instance state
    # ------------------------------------------------------------------

    async def get_server_info(self) -> dict:
        """Root endpoint; used as a connectivity check"""
        return await self._request("GET", "/")

    async def get_connection_state(self, instance_name: str) -> Optional[str]:
        """'open', 'connecting', 'close', ... as reported by the gateway"""
        data = await self._request("GET", f"/instance/connectionState/{instance_name}")
        instance = data.get("instance") if isinstance(data, dict) else None
        if isinstance(instance, dict):
            return instance.get("state")
        return data.get("state") if isinstance(data, dict) else None

    async def fetch_instance(self, instance_name: str) -> Optional[dict]:
        data = await self._request("GET", "/instance/fetchInstances", params={"instanceName": instance_name})
        entries = data if isinstance(data, list) else [data] if data else []
        for entry in entries:
            instance = entry.get("instance", entry) if isinstance(entry, dict) else None
            if not instance:
                continue
            if instance.get("instanceName", instance.get("name")) in (None, instance_name):
                return instance
        return None

    async def get_connected_phone(self, instance_name: str) -> Optional[str]:
        """Phone of the paired device, None when no device is attached"""
        instance = await self.fetch_instance(instance_name)
        if not instance:
            return None
        return phone_from_jid(instance.get("wuid") or instance.get("ownerJid") or instance.get("owner"))

    async def get_qr_code(self, instance_name: str) -> Optional[str]:
        data = await self._request("GET", f"/instance/connect/{instance_name}")
        if not isinstance(data, dict):
            return None
        qrcode = data.get("qrcode")
        if isinstance(qrcode, dict):
            return qrcode.get("base64") or qrcode.get("code")
        return data.get("base64") or qrcode or data.get("code")

    # ------------------------------------------------------------------
    # Instance lifecycle
    # ------------------------------------------------------------------

    async def create_instance(self, instance_name: str, token: str, webhook_url: Optional[str]) -> dict:
        payload = {
            "instanceName": instance_name,
            "token": token,
            "qrcode": True,
            "integration": "WHATSAPP-BAILEYS",
        }
        if webhook_url:
            payload.update({"webhook": webhook_url, "webhook_by_events": False, "events": WEBHOOK_EVENTS})
        result = await self._request("POST", "/instance/create", json=payload)
        logger.info(f"✅ Evolution instance created: {instance_name}")
        return result

    async def delete_instance(self, instance_name: str) -> dict:
        result = await self._request("DELETE", f"/instance/delete/{instance_name}")
        logger.info(f"🗑️ Evolution instance deleted: {instance_name}")
        return result

    async def restart_instance(self, instance_name: str) -> dict:
        return await self._request("PUT", f"/instance/restart/{instance_name}")

    async def logout_instance(self, instance_name: str) -> dict:
        result = await self._request("DELETE", f"/instance/logout/{instance_name}")
        logger.info(f"🔌 Evolution instance logged out: {instance_name}")
        return result

    async def set_webhook(self, instance_name: str, webhook_url: str) -> dict:
        return await self._request(
            "POST",
            f"/webhook/set/{instance_name}",
            json={
                "url": webhook_url,
                "enabled": True,
                "webhook_by_events": False,
                "events": WEBHOOK_EVENTS,
            },
        )

    async def find_webhook(self, instance_name: str) -> dict:
        return await self._request("GET", f"/webhook/find/{instance_name}")

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_text(self, instance_name: str, phone: str, text: str) -> dict:
        return await self._request(
            "POST",
            f"/message/sendText/{instance_name}",
            json={"number": to_whatsapp_jid(phone), "text": text},
        )


# Singleton instance
evolution_service = EvolutionAPIService()


def get_evolution_service() -> EvolutionAPIService:
    """Dependency injection for the gateway client"""
    return evolution_service
