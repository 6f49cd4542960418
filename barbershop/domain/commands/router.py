"""Command router - FastAPI endpoints for the point of sale"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...cache import Cache, get_cache
from ...database import get_db
from ...models import Profile
from .schemas import CommandClose, CommandCreate, CommandItemCreate, CommandResponse
from .service import CommandService

router = APIRouter(prefix="/commands", tags=["Commands"])


def get_command_service(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)) -> CommandService:
    """Dependency injection for CommandService"""
    return CommandService(db, cache)


@router.get("", response_model=list[CommandResponse])
async def list_commands(
    status: Optional[str] = Query(None, pattern="^(open|closed|cancelled)$"),
    on_date: Optional[date] = None,
    barber_id: Optional[int] = None,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.list_commands(user.barbershop_id, status, on_date, barber_id)


@router.post("", response_model=CommandResponse, status_code=201)
async def open_command(
    body: CommandCreate,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.open_command(user.barbershop_id, body)


@router.get("/{command_id}", response_model=CommandResponse)
async def get_command(
    command_id: int,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.get_command(user.barbershop_id, command_id)


@router.post("/{command_id}/items", response_model=CommandResponse, status_code=201)
async def add_command_item(
    command_id: int,
    body: CommandItemCreate,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.add_item(user.barbershop_id, command_id, body)


@router.delete("/{command_id}/items/{item_id}", response_model=CommandResponse)
async def remove_command_item(
    command_id: int,
    item_id: int,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.remove_item(user.barbershop_id, command_id, item_id)


@router.post("/{command_id}/close", response_model=CommandResponse)
async def close_command(
    command_id: int,
    body: CommandClose,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.close_command(user.barbershop_id, command_id, body)


@router.post("/{command_id}/cancel", response_model=CommandResponse)
async def cancel_command(
    command_id: int,
    user: Profile = Depends(get_current_user),
    service: CommandService = Depends(get_command_service),
):
    return service.cancel_command(user.barbershop_id, command_id)
