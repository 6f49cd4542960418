"""WhatsApp router - instance management, messaging and diagnostics"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import ensure_barbershop_access, get_current_admin, get_current_user
from ...database import get_db
from ...models import Profile
from ...rate_limiter import create_rate_limiter
from ...services.evolution_service import EvolutionAPIService, get_evolution_service
from ...worker import enqueue_task
from .diagnostics import WhatsAppDiagnostics
from .repository import WhatsAppRepository
from .schemas import (
    DiagnosticsRequest,
    InstanceResponse,
    MessageResponse,
    SendMessageRequest,
    WaitForConnectionRequest,
)
from .service import WhatsAppService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["WhatsApp"])

reconcile_limit = create_rate_limiter(limit=5, window_seconds=60, key_prefix="whatsapp_reconcile")


def get_whatsapp_service(
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
) -> WhatsAppService:
    """Dependency injection for WhatsAppService"""
    return WhatsAppService(db, evolution)


# ============================================================================
# INSTANCE
# ============================================================================


@router.get("/instance", response_model=InstanceResponse)
async def get_instance(
    user: Profile = Depends(get_current_user),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return service.get_instance(user.barbershop_id)


@router.post("/instance", response_model=InstanceResponse, status_code=201)
async def create_instance(
    user: Profile = Depends(get_current_admin),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return await service.create_instance(user.barbershop_id)


@router.delete("/instance", status_code=204)
async def delete_instance(
    user: Profile = Depends(get_current_admin),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    await service.delete_instance(user.barbershop_id)


@router.post("/instance/qr-code", response_model=InstanceResponse)
async def refresh_qr_code(
    user: Profile = Depends(get_current_user),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return await service.refresh_qr_code(user.barbershop_id)


@router.post("/instance/wait-connection", status_code=202)
async def wait_for_connection(
    body: Optional[WaitForConnectionRequest] = None,
    user: Profile = Depends(get_current_user),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    """Queue a background poll that flips the instance to connected once the QR code is scanned"""
    service.get_instance(user.barbershop_id)
    timeout = body.timeout_seconds if body else None
    job_id = await enqueue_task("wait_for_whatsapp_connection_task", user.barbershop_id, timeout)
    if job_id is None:
        raise HTTPException(status_code=503, detail="Background worker unavailable")
    return {"jobId": job_id}


@router.post("/instance/reconcile")
async def reconcile_instance(
    _: None = Depends(reconcile_limit),
    user: Profile = Depends(get_current_user),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    return await service.reconcile_barbershop(user.barbershop_id)


# ============================================================================
# MESSAGES
# ============================================================================


@router.post("/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    body: SendMessageRequest,
    user: Profile = Depends(get_current_user),
    service: WhatsAppService = Depends(get_whatsapp_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    return await service.send_message(barbershop_id, body.phone, body.message, body.conversation_id)


@router.get("/messages", response_model=list[MessageResponse])
async def list_messages(
    direction: Optional[str] = None,
    limit: int = 50,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return WhatsAppRepository.recent_messages(db, user.barbershop_id, direction=direction, limit=min(limit, 200))


# ============================================================================
# DIAGNOSTICS
# ============================================================================


@router.post("/diagnostics")
async def run_diagnostics(
    body: DiagnosticsRequest,
    user: Profile = Depends(get_current_admin),
    db: Session = Depends(get_db),
    evolution: EvolutionAPIService = Depends(get_evolution_service),
):
    barbershop_id = ensure_barbershop_access(user, body.barbershopId)
    return await WhatsAppDiagnostics(db, evolution).run(barbershop_id, body.testType)
