"""
Function endpoints
JSON POST operations invoked by the dashboard, schedulers and the WhatsApp gateway.
Every response is {"success": true, ...} or {"success": false, "error": "..."}.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import ensure_barbershop_access, get_current_super_admin, get_current_user
from ..config import EVOLUTION_WEBHOOK_TOKEN
from ..database import get_db
from ..domain.automations.repository import AutomationRepository
from ..domain.automations.schemas import AppointmentTriggerRequest, ProcessAutomationsRequest
from ..domain.automations.service import AutomationDispatcher
from ..domain.whatsapp.diagnostics import WhatsAppDiagnostics
from ..domain.whatsapp.router import reconcile_limit
from ..domain.whatsapp.schemas import DiagnosticsRequest, ReconcileRequest, SendMessageRequest
from ..domain.whatsapp.service import WhatsAppService
from ..models import Profile
from ..services.evolution_service import EvolutionAPIService, get_evolution_service
from ..services.status_automation import run_subscription_automation
from ..webhook_security import WebhookSignatureError, verify_evolution_webhook
from .status_automation import AutomationRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["Functions"])


# ============================================================================
# AUTOMATIONS
# ============================================================================


@router.post("/process-automations")
async def process_automations(
    body: ProcessAutomationsRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    logger.info(f"🤖 Processing automations for barbershop {barbershop_id}")
    result = await AutomationDispatcher(db, evolution).process(barbershop_id)
    return {"success": True, **result}


@router.post("/whatsapp-automations")
async def whatsapp_automations(
    body: AppointmentTriggerRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    appointment = AutomationRepository.get_appointment(db, body.appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    ensure_barbershop_access(user, appointment.barbershop_id)

    result = await AutomationDispatcher(db, evolution).dispatch_for_appointment(
        body.appointment_id, body.trigger_type
    )
    return {"success": True, **result}


@router.post("/subscription-automations")
async def subscription_automations(
    body: AutomationRequest,
    user: Profile = Depends(get_current_super_admin),
    db: Session = Depends(get_db),
):
    try:
        result = run_subscription_automation(db, body.action, body.today)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "action": body.action, **result}


# ============================================================================
# WHATSAPP
# ============================================================================


@router.post("/send-whatsapp-message")
async def send_whatsapp_message(
    body: SendMessageRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    message = await WhatsAppService(db, evolution).send_message(
        barbershop_id, body.phone, body.message, body.conversation_id
    )
    return {
        "success": True,
        "messageId": message.id,
        "externalId": message.external_id,
        "phone": message.phone_number,
        "status": message.status,
    }


@router.post("/whatsapp-reconcile")
async def whatsapp_reconcile(
    body: ReconcileRequest,
    _: None = Depends(reconcile_limit),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    result = await WhatsAppService(db, evolution).reconcile_barbershop(barbershop_id)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error") or "Gateway unavailable")
    return result


@router.post("/test-evolution-api")
async def test_evolution_api(
    body: DiagnosticsRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    report = await WhatsAppDiagnostics(db, evolution).run(barbershop_id, body.testType)
    return {"success": True, **report}


@router.post("/evolution-webhook")
async def evolution_webhook(
    request: Request,
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    """Gateway events. Authenticated by the shared webhook token, not a user session."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    try:
        verify_evolution_webhook(payload, request.headers.get("apikey"), EVOLUTION_WEBHOOK_TOKEN)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=401, detail=str(e))

    logger.info(f"📨 Evolution webhook: {payload.get('event')} for {payload.get('instance')}")
    result = WhatsAppService(db, evolution).handle_webhook(payload)
    return {"success": True, **result}
