"""
Webhook Security Module

Verification for inbound gateway webhooks. The Evolution API echoes the
shared token configured on the instance in the "apikey" field of each event.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when webhook verification fails"""

    pass


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def verify_evolution_webhook(
    payload: dict, header_token: Optional[str], expected_token: Optional[str]
) -> bool:
    """
    Verify an Evolution API webhook.

    The token may arrive in the payload ("apikey") or in the apikey header.
    When no token is configured, verification is skipped with a warning.

    Raises:
        WebhookSignatureError: If a token is configured and none matches
    """
    if not expected_token:
        logger.warning("⚠️ EVOLUTION_WEBHOOK_TOKEN not configured - accepting unverified webhook")
        return True

    candidates = [payload.get("apikey"), header_token]
    if any(constant_time_compare(candidate, expected_token) for candidate in candidates):
        return True

    logger.warning(f"🚫 Evolution webhook rejected for instance {payload.get('instance')}")
    raise WebhookSignatureError("Invalid webhook token")
