"""Command repository - Database operations for point-of-sale commands"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import Profile, Service
from ...models_command import Command, CommandItem
from ..billing.repository import day_start, next_day_start


class CommandRepository:
    @staticmethod
    def get_command(db: Session, command_id: int, barbershop_id: int) -> Optional[Command]:
        return (
            db.query(Command)
            .options(selectinload(Command.items))
            .filter(Command.id == command_id, Command.barbershop_id == barbershop_id)
            .first()
        )

    @staticmethod
    def list_commands(
        db: Session,
        barbershop_id: int,
        status: Optional[str] = None,
        on_date: Optional[date] = None,
        barber_id: Optional[int] = None,
    ) -> list[Command]:
        query = (
            db.query(Command)
            .options(selectinload(Command.items))
            .filter(Command.barbershop_id == barbershop_id)
        )
        if status:
            query = query.filter(Command.status == status)
        if on_date:
            query = query.filter(Command.created_at >= day_start(on_date), Command.created_at < next_day_start(on_date))
        if barber_id:
            query = query.filter(Command.barber_id == barber_id)
        return query.order_by(Command.created_at.desc()).all()

    @staticmethod
    def get_item(db: Session, item_id: int, command_id: int) -> Optional[CommandItem]:
        return db.query(CommandItem).filter(CommandItem.id == item_id, CommandItem.command_id == command_id).first()

    @staticmethod
    def get_service(db: Session, service_id: int, barbershop_id: int) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id, Service.barbershop_id == barbershop_id).first()

    @staticmethod
    def get_barber(db: Session, barber_id: int, barbershop_id: int) -> Optional[Profile]:
        return db.query(Profile).filter(Profile.id == barber_id, Profile.barbershop_id == barbershop_id).first()

    @staticmethod
    def recalculate_total(command: Command) -> float:
        command.total_amount = round(sum(item.total_price for item in command.items), 2)
        return command.total_amount
